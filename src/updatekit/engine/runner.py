"""Migration runner: applies pending update steps and tracks their progress.

The runner is the only writer of module watermarks. A step advances its
module's watermark once it reports a completion fraction of 1.0; until then
its ProgressState is saved after every invocation so the next call resumes
where the previous one stopped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import PersistenceError, StepError
from .models import (
    MigrationStep,
    ModuleStatus,
    ProgressState,
    StepContext,
    StepResult,
    StepStatus,
    clamp_fraction,
)
from .registry import StepRegistry
from .store import PersistentStore

if TYPE_CHECKING:
    from updatekit.collaborators.config import ConfigStore
    from updatekit.collaborators.entities import EntityStore
    from updatekit.collaborators.modules import ModuleManager

logger = logging.getLogger(__name__)


class MigrationRunner:
    """Drives pending steps of a :class:`StepRegistry` against a store.

    Args:
        registry: Declared steps
        store: Watermark/progress persistence
        config: Configuration store handed to steps (in-memory if omitted)
        entities: Entity store handed to steps (in-memory if omitted)
        modules: Module manager handed to steps (backed by ``config`` if omitted)
    """

    def __init__(
        self,
        registry: StepRegistry,
        store: PersistentStore,
        *,
        config: ConfigStore | None = None,
        entities: EntityStore | None = None,
        modules: ModuleManager | None = None,
    ) -> None:
        from updatekit.collaborators import ConfigModuleManager, MemoryConfigStore, MemoryEntityStore

        self.registry = registry
        self.store = store
        self.config = config if config is not None else MemoryConfigStore()
        self.entities = entities if entities is not None else MemoryEntityStore()
        self.modules = modules if modules is not None else ConfigModuleManager(self.config, available=())

    def watermarks(self) -> dict[str, int]:
        """Current watermark of every known module (0 when nothing applied)."""
        watermarks = self.store.watermarks()
        for module in self.registry.modules():
            watermarks.setdefault(module, 0)
        return watermarks

    def pending(self, module: str | None = None) -> list[MigrationStep]:
        """Pending steps in execution order, optionally for one module.

        Raises:
            CyclicDependencyError: If pending steps depend on each other in a cycle
        """
        steps = self.registry.pending_steps(self.watermarks())
        if module is not None:
            steps = [step for step in steps if step.module == module]
        return steps

    def run_next(self, module: str | None = None) -> StepResult | None:
        """Process one invocation of the first pending step.

        Returns None when nothing is pending. With ``module`` set, a step whose
        dependencies in other modules are not applied yet is reported as
        blocked without being invoked.
        """
        watermarks = self.watermarks()
        steps = self.registry.pending_steps(watermarks)
        if module is not None:
            steps = [step for step in steps if step.module == module]
        if not steps:
            return None

        step = steps[0]
        unmet = self.registry.dependency_closure(step.key, watermarks)
        if unmet:
            return self._blocked(step, unmet, failed=set())
        result = self._invoke(step)
        result.invocations = 1
        return result

    def run_all(
        self, module: str | None = None, step_limit: int | None = None
    ) -> list[StepResult]:
        """Apply pending steps until done, blocked, or out of invocations.

        Batched steps are invoked repeatedly until they complete. A failed
        step blocks every step depending on it for the rest of this run;
        independent steps still run. ``step_limit`` caps the number of step
        invocations, leaving unfinished work saved for the next run. A step
        whose fraction does not increase between two invocations of the same
        run fails, with its progress kept.

        Returns:
            One result per attempted step, in the order first attempted
        """
        if step_limit is not None and step_limit < 0:
            raise ValueError(f"step_limit must be >= 0, got {step_limit}")

        results: dict[tuple[str, int], StepResult] = {}
        failed: set[tuple[str, int]] = set()
        settled: set[tuple[str, int]] = set()
        last_fraction: dict[tuple[str, int], float] = {}
        invocations = 0

        while True:
            watermarks = self.watermarks()
            candidates = [
                step
                for step in self.registry.pending_steps(watermarks)
                if (module is None or step.module == module) and step.key not in settled
            ]
            if not candidates:
                break

            step = candidates[0]
            unmet = self.registry.dependency_closure(step.key, watermarks)
            if unmet:
                results[step.key] = self._blocked(step, unmet, failed)
                settled.add(step.key)
                continue

            if step_limit is not None and invocations >= step_limit:
                logger.info("Step limit of %d invocation(s) reached", step_limit)
                break

            result = self._invoke(step)
            invocations += 1
            previous = results.get(step.key)
            result.invocations = (previous.invocations if previous else 0) + 1
            if result.status is StepStatus.IN_PROGRESS:
                if result.fraction_complete <= last_fraction.get(step.key, -1.0):
                    result = self._stalled(step, result)
                else:
                    last_fraction[step.key] = result.fraction_complete
            results[step.key] = result
            if result.status is StepStatus.FAILED:
                failed.add(step.key)
                settled.add(step.key)

        return list(results.values())

    def status(self) -> list[ModuleStatus]:
        """Watermark, pending versions and saved progress per module."""
        watermarks = self.watermarks()
        saved = self.store.saved_progress()
        statuses: dict[str, ModuleStatus] = {
            module: ModuleStatus(module=module, watermark=watermarks[module])
            for module in self.registry.modules()
        }
        for module, watermark in watermarks.items():
            statuses.setdefault(module, ModuleStatus(module=module, watermark=watermark))
        for step in self.registry.all_steps():
            if step.version > watermarks[step.module]:
                statuses[step.module].pending.append(step.version)
        for (module, version), progress in saved.items():
            statuses.setdefault(module, ModuleStatus(module=module, watermark=watermarks.get(module, 0)))
            statuses[module].in_flight[version] = progress.fraction_complete
        return list(statuses.values())

    def _context(self, step: MigrationStep) -> StepContext:
        return StepContext(
            module=step.module,
            version=step.version,
            config=self.config,
            entities=self.entities,
            modules=self.modules,
        )

    def _invoke(self, step: MigrationStep) -> StepResult:
        progress = self.store.load_progress(step.module, step.version)
        if progress is None:
            progress = ProgressState()
            logger.info("Running %s: %s", step.label, step.description or "(no description)")
        else:
            logger.info("Resuming %s at %.0f%%", step.label, progress.fraction_complete * 100)

        try:
            returned = step.fn(self._context(step), progress)
        except PersistenceError:
            raise
        except StepError as exc:
            self.store.save_progress(step.module, step.version, progress)
            logger.error("Step %s failed: %s", step.label, exc)
            return self._failed(step, progress, str(exc))
        except Exception as exc:
            self.store.save_progress(step.module, step.version, progress)
            logger.exception("Step %s raised an unexpected error", step.label)
            return self._failed(step, progress, f"{type(exc).__name__}: {exc}")

        try:
            fraction = 1.0 if returned is None else clamp_fraction(returned)
        except (TypeError, ValueError):
            self.store.save_progress(step.module, step.version, progress)
            message = f"Step returned {returned!r} instead of a completion fraction"
            logger.error("Step %s failed: %s", step.label, message)
            return self._failed(step, progress, message)

        progress.fraction_complete = fraction
        if progress.is_complete:
            self.store.complete_step(step.module, step.version)
            logger.info("Completed %s", step.label)
            return StepResult(
                module=step.module,
                version=step.version,
                status=StepStatus.COMPLETED,
                description=step.description,
                fraction_complete=1.0,
            )

        self.store.save_progress(step.module, step.version, progress)
        logger.debug("Step %s at %.1f%%", step.label, fraction * 100)
        return StepResult(
            module=step.module,
            version=step.version,
            status=StepStatus.IN_PROGRESS,
            description=step.description,
            fraction_complete=fraction,
        )

    @staticmethod
    def _failed(step: MigrationStep, progress: ProgressState, error: str) -> StepResult:
        return StepResult(
            module=step.module,
            version=step.version,
            status=StepStatus.FAILED,
            description=step.description,
            fraction_complete=progress.fraction_complete,
            error=error,
        )

    @staticmethod
    def _stalled(step: MigrationStep, result: StepResult) -> StepResult:
        message = f"Step made no progress (stuck at {result.fraction_complete:.0%})"
        logger.error("Step %s failed: %s", step.label, message)
        return StepResult(
            module=step.module,
            version=step.version,
            status=StepStatus.FAILED,
            description=step.description,
            fraction_complete=result.fraction_complete,
            error=message,
            invocations=result.invocations,
        )

    def _blocked(
        self,
        step: MigrationStep,
        unmet: set[tuple[str, int]],
        failed: set[tuple[str, int]],
    ) -> StepResult:
        culprits = sorted(unmet & failed) or sorted(unmet)
        waiting_on = ", ".join(f"{module}:{version}" for module, version in culprits)
        reason = "failed" if unmet & failed else "unapplied"
        logger.warning("Skipping %s: depends on %s step(s) %s", step.label, reason, waiting_on)
        return StepResult(
            module=step.module,
            version=step.version,
            status=StepStatus.BLOCKED,
            description=step.description,
            error=f"Depends on {reason} step(s): {waiting_on}",
        )
