"""Versioned update-step engine.

Public API surface -- step sources and the CLI import from this package.
"""

from .batch import BatchQueue, ItemHandler, ItemSource
from .errors import (
    CyclicDependencyError,
    ModuleInstallError,
    PersistenceError,
    RegistrationError,
    SettingsError,
    StepError,
    UnknownDependencyError,
    UpdateKitError,
)
from .models import (
    MigrationStep,
    ModuleStatus,
    ProgressState,
    StepContext,
    StepFn,
    StepKey,
    StepResult,
    StepStatus,
)
from .registry import StepRegistry, default_registry, update_step
from .runner import MigrationRunner
from .store import MemoryStore, PersistentStore, SqliteStore

__all__ = [
    "BatchQueue",
    "ItemHandler",
    "ItemSource",
    "CyclicDependencyError",
    "ModuleInstallError",
    "PersistenceError",
    "RegistrationError",
    "SettingsError",
    "StepError",
    "UnknownDependencyError",
    "UpdateKitError",
    "MigrationStep",
    "ModuleStatus",
    "ProgressState",
    "StepContext",
    "StepFn",
    "StepKey",
    "StepResult",
    "StepStatus",
    "StepRegistry",
    "default_registry",
    "update_step",
    "MigrationRunner",
    "MemoryStore",
    "PersistentStore",
    "SqliteStore",
]
