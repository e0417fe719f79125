"""Step registry: declared update steps and their dependency ordering."""

from __future__ import annotations

import heapq
from typing import Callable, Iterable, Mapping

from .errors import CyclicDependencyError, RegistrationError, UnknownDependencyError
from .models import MigrationStep, StepFn, StepKey


class StepRegistry:
    """Registry of update steps keyed by (module, version).

    Versions are positive integers, strictly increasing in declaration order
    within a module. Modules keep the order in which they were first seen.
    """

    def __init__(self) -> None:
        self._steps: dict[StepKey, MigrationStep] = {}
        self._by_module: dict[str, list[MigrationStep]] = {}

    def register(
        self,
        module: str,
        version: int,
        dependencies: Iterable[StepKey] = (),
        step_fn: StepFn | None = None,
        *,
        description: str = "",
        idempotent: bool = True,
    ) -> MigrationStep:
        """Declare a step.

        Args:
            module: Module namespace the step belongs to
            version: Step version, greater than every earlier version of the module
            dependencies: (module, version) pairs that must be applied first
            step_fn: Callable receiving (context, progress)
            description: Human-readable summary (defaults to the docstring)
            idempotent: Whether the step is safe to re-run after an abort

        Returns:
            The registered MigrationStep

        Raises:
            RegistrationError: If the declaration is inconsistent
        """
        if not module or not isinstance(module, str):
            raise RegistrationError(f"Step module must be a non-empty string, got {module!r}")
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise RegistrationError(
                f"Step version for module '{module}' must be a positive integer, got {version!r}"
            )
        if step_fn is None or not callable(step_fn):
            raise RegistrationError(f"Step {module}:{version} has no callable step function")

        existing = self._by_module.get(module, [])
        if (module, version) in self._steps:
            raise RegistrationError(f"Step {module}:{version} is already registered")
        if existing and version <= existing[-1].version:
            raise RegistrationError(
                f"Step {module}:{version} must be declared after {module}:{existing[-1].version}; "
                "versions are strictly increasing within a module"
            )

        deps: set[StepKey] = set()
        for dep in dependencies:
            dep_module, dep_version = dep
            if (dep_module, dep_version) == (module, version):
                raise RegistrationError(f"Step {module}:{version} cannot depend on itself")
            deps.add((str(dep_module), int(dep_version)))

        if not description:
            doc_lines = (step_fn.__doc__ or "").strip().splitlines()
            description = doc_lines[0] if doc_lines else ""

        step = MigrationStep(
            module=module,
            version=version,
            fn=step_fn,
            description=description,
            dependencies=frozenset(deps),
            idempotent=idempotent,
        )
        self._steps[step.key] = step
        self._by_module.setdefault(module, []).append(step)
        return step

    def step(
        self,
        module: str,
        version: int,
        *,
        depends_on: Iterable[StepKey] = (),
        description: str = "",
        idempotent: bool = True,
    ) -> Callable[[StepFn], StepFn]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: StepFn) -> StepFn:
            self.register(
                module,
                version,
                depends_on,
                fn,
                description=description,
                idempotent=idempotent,
            )
            return fn

        return decorator

    def modules(self) -> list[str]:
        """Module names in declaration order."""
        return list(self._by_module)

    def get(self, module: str, version: int) -> MigrationStep | None:
        return self._steps.get((module, version))

    def steps_for(self, module: str) -> list[MigrationStep]:
        return list(self._by_module.get(module, []))

    def all_steps(self) -> list[MigrationStep]:
        return [step for steps in self._by_module.values() for step in steps]

    def clear(self) -> None:
        """Forget every registered step (for testing)."""
        self._steps.clear()
        self._by_module.clear()

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, key: object) -> bool:
        return key in self._steps

    def pending_steps(self, watermarks: Mapping[str, int]) -> list[MigrationStep]:
        """Return steps above their module's watermark in execution order.

        The order is a topological sort of the dependency graph. Every step
        also depends on the previous pending step of its own module. Among
        ready steps the module declared first runs first; within a module
        versions ascend.

        Raises:
            UnknownDependencyError: If a step depends on an undeclared,
                unapplied step
            CyclicDependencyError: If the pending steps form a cycle
        """
        module_order = {name: index for index, name in enumerate(self._by_module)}
        pending: list[MigrationStep] = [
            step for step in self.all_steps() if step.version > watermarks.get(step.module, 0)
        ]
        edges = self._pending_edges(pending, watermarks)

        indegree = {step.key: len(edges[step.key]) for step in pending}
        dependents: dict[StepKey, list[StepKey]] = {step.key: [] for step in pending}
        for key, deps in edges.items():
            for dep in deps:
                dependents[dep].append(key)

        def sort_key(key: StepKey) -> tuple[int, int, str]:
            module, version = key
            return (module_order[module], version, module)

        ready = [sort_key(key) for key, count in indegree.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[MigrationStep] = []
        while ready:
            _, version, module = heapq.heappop(ready)
            key = (module, version)
            ordered.append(self._steps[key])
            for dependent in dependents[key]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, sort_key(dependent))

        if len(ordered) != len(pending):
            remaining = {key for key, count in indegree.items() if count > 0}
            raise CyclicDependencyError(_find_cycle(remaining, edges))
        return ordered

    def dependency_closure(
        self, key: StepKey, watermarks: Mapping[str, int]
    ) -> set[StepKey]:
        """Pending steps that ``key`` needs, directly or transitively."""
        pending = [step for step in self.all_steps() if step.version > watermarks.get(step.module, 0)]
        edges = self._pending_edges(pending, watermarks)
        seen: set[StepKey] = set()
        stack = list(edges.get(key, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(edges.get(current, ()))
        return seen

    def validate(self) -> None:
        """Check the whole graph, as if nothing was applied yet."""
        self.pending_steps({})

    def _pending_edges(
        self, pending: list[MigrationStep], watermarks: Mapping[str, int]
    ) -> dict[StepKey, set[StepKey]]:
        pending_keys = {step.key for step in pending}
        edges: dict[StepKey, set[StepKey]] = {}
        for step in pending:
            deps: set[StepKey] = set()
            previous = self._previous_in_module(step)
            if previous is not None and previous.key in pending_keys:
                deps.add(previous.key)
            for dep in step.dependencies:
                dep_module, dep_version = dep
                if dep_version <= watermarks.get(dep_module, 0):
                    continue
                if dep not in self._steps:
                    raise UnknownDependencyError(
                        f"Step {step.label} depends on {dep_module}:{dep_version}, "
                        "which is neither registered nor applied"
                    )
                deps.add(dep)
            edges[step.key] = deps
        return edges

    def _previous_in_module(self, step: MigrationStep) -> MigrationStep | None:
        steps = self._by_module[step.module]
        index = steps.index(step)
        return steps[index - 1] if index > 0 else None


def _find_cycle(
    remaining: set[StepKey], edges: Mapping[StepKey, set[StepKey]]
) -> list[StepKey]:
    """Walk dependency edges inside ``remaining`` until a node repeats."""
    start = min(remaining, key=lambda key: (key[1], key[0]))
    path: list[StepKey] = []
    position: dict[StepKey, int] = {}
    current = start
    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = min(
            (dep for dep in edges[current] if dep in remaining),
            key=lambda key: (key[1], key[0]),
        )
    cycle = path[position[current]:]
    cycle.append(current)
    return cycle


default_registry = StepRegistry()


def update_step(
    module: str,
    version: int,
    *,
    depends_on: Iterable[StepKey] = (),
    description: str = "",
    idempotent: bool = True,
) -> Callable[[StepFn], StepFn]:
    """Register a step function in the default registry.

    Step source modules listed in updatekit.yaml use this decorator; they are
    imported by the CLI before pending steps are computed.
    """
    return default_registry.step(
        module,
        version,
        depends_on=depends_on,
        description=description,
        idempotent=idempotent,
    )
