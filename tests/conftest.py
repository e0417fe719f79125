from __future__ import annotations

from typing import Iterator

import pytest

from updatekit.collaborators import ConfigModuleManager, MemoryConfigStore, MemoryEntityStore
from updatekit.engine import MemoryStore, MigrationRunner, StepRegistry, default_registry


@pytest.fixture()
def registry() -> StepRegistry:
    return StepRegistry()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def config_store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture()
def entities() -> MemoryEntityStore:
    return MemoryEntityStore()


@pytest.fixture()
def runner(registry, store, config_store, entities) -> MigrationRunner:
    return MigrationRunner(
        registry,
        store,
        config=config_store,
        entities=entities,
        modules=ConfigModuleManager(config_store, available=["media_crop", "album"]),
    )


@pytest.fixture()
def registry_restore() -> Iterator[StepRegistry]:
    """Snapshot the default registry and restore it after the test."""
    steps = dict(default_registry._steps)
    by_module = {module: list(steps_) for module, steps_ in default_registry._by_module.items()}
    default_registry.clear()
    yield default_registry
    default_registry.clear()
    default_registry._steps.update(steps)
    default_registry._by_module.update(by_module)
