"""updatekit: versioned, resumable update steps for site distributions."""

from __future__ import annotations

from updatekit.engine import (
    BatchQueue,
    MigrationRunner,
    ProgressState,
    StepContext,
    StepError,
    StepRegistry,
    StepResult,
    StepStatus,
    update_step,
)

__version__ = "0.3.0"

__all__ = [
    "BatchQueue",
    "MigrationRunner",
    "ProgressState",
    "StepContext",
    "StepError",
    "StepRegistry",
    "StepResult",
    "StepStatus",
    "update_step",
    "__version__",
]
