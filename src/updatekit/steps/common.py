"""Step builders for module installs, configuration, permissions and content."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from updatekit.engine.batch import BatchQueue, ItemHandler, ItemSource
from updatekit.engine.errors import StepError
from updatekit.engine.models import ProgressState, StepContext, StepFn

logger = logging.getLogger(__name__)


def install_modules_step(*names: str) -> StepFn:
    """Install auxiliary modules; already installed ones are skipped."""
    if not names:
        raise ValueError("install_modules_step needs at least one module name")

    def step(context: StepContext, progress: ProgressState) -> float:
        added = context.modules.install_modules(names)
        progress["installed"] = added
        return 1.0

    step.__doc__ = f"Install modules: {', '.join(names)}"
    return step


def set_config_step(name: str, values: Mapping[str, Any]) -> StepFn:
    """Merge *values* into the configuration object *name*."""

    def step(context: StepContext, progress: ProgressState) -> float:
        context.config.update(name, dict(values))
        return 1.0

    step.__doc__ = f"Update configuration '{name}'"
    return step


def patch_config_step(name: str, patch: Callable[[dict[str, Any]], dict[str, Any] | None]) -> StepFn:
    """Apply *patch* to the configuration object *name*.

    The patch may modify the dict in place and return None, or return a
    replacement dict.
    """

    def step(context: StepContext, progress: ProgressState) -> float:
        data = context.config.get(name)
        replaced = patch(data)
        context.config.set(name, replaced if replaced is not None else data)
        return 1.0

    step.__doc__ = f"Patch configuration '{name}'"
    return step


def role_config_name(role: str) -> str:
    return f"user.role.{role}"


def grant_permissions_step(role: str, permissions: Iterable[str]) -> StepFn:
    """Add *permissions* to *role*, keeping the list sorted and unique."""
    granted = list(permissions)

    def step(context: StepContext, progress: ProgressState) -> float:
        config_name = role_config_name(role)
        data = context.config.get(config_name)
        if not data:
            raise StepError(f"Role '{role}' does not exist")
        data["permissions"] = sorted(set(data.get("permissions", [])) | set(granted))
        context.config.set(config_name, data)
        return 1.0

    step.__doc__ = f"Grant {len(granted)} permission(s) to role '{role}'"
    return step


def seed_content_step(entity_type: str, records: Iterable[Mapping[str, Any]], key: str) -> StepFn:
    """Create records of *entity_type* unless one with the same *key* exists.

    Created ids are remembered in progress so a retried step skips records it
    already wrote even before its key is queryable.
    """
    seeds = [dict(record) for record in records]
    for record in seeds:
        if key not in record:
            raise ValueError(f"Seed record for '{entity_type}' lacks key field '{key}': {record}")

    def step(context: StepContext, progress: ProgressState) -> float:
        created: dict[str, int] = progress.setdefault("created", {})
        for record in seeds:
            marker = str(record[key])
            if marker in created:
                continue
            if context.entities.query(entity_type, **{key: record[key]}):
                logger.debug("Skipping existing %s with %s=%s", entity_type, key, marker)
                continue
            created[marker] = context.entities.save(entity_type, dict(record))
        return 1.0

    step.__doc__ = f"Seed {len(seeds)} '{entity_type}' record(s)"
    return step


def batch_step(
    sources: Mapping[str, ItemSource],
    handlers: Mapping[str, ItemHandler],
    batch_size: int = 1,
) -> StepFn:
    """Process items from several categories, ``batch_size`` per invocation."""
    return BatchQueue(sources, handlers, batch_size=batch_size)
