"""Data types for versioned update steps and their resumable progress.

Defines StepStatus, MigrationStep, ProgressState, StepResult and the
StepContext handed to every step function.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Iterator

if TYPE_CHECKING:
    from updatekit.collaborators.config import ConfigStore
    from updatekit.collaborators.entities import EntityStore
    from updatekit.collaborators.modules import ModuleManager

StepKey = tuple[str, int]


class StepStatus(StrEnum):
    """Outcome of one step in a run."""

    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    BLOCKED = "blocked"


def clamp_fraction(value: float) -> float:
    """Clamp a completion fraction into [0, 1]."""
    return min(1.0, max(0.0, float(value)))


@dataclass
class ProgressState:
    """Resumable cursor owned by the step currently executing.

    Behaves like a mapping for the step's own keys (counters, queues,
    totals). ``fresh`` is True only on the first invocation of a step and
    is never persisted.
    """

    data: dict[str, Any] = field(default_factory=dict)
    fraction_complete: float = 0.0
    fresh: bool = True

    def __post_init__(self) -> None:
        self.fraction_complete = clamp_fraction(self.fraction_complete)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def setdefault(self, key: str, default: Any) -> Any:
        return self.data.setdefault(key, default)

    @property
    def is_complete(self) -> bool:
        return self.fraction_complete >= 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "fraction_complete": self.fraction_complete,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressState:
        return cls(
            data=dict(data.get("data") or {}),
            fraction_complete=data.get("fraction_complete", 0.0),
            fresh=False,
        )


@dataclass
class StepContext:
    """Collaborators injected into a step function."""

    module: str
    version: int
    config: ConfigStore
    entities: EntityStore
    modules: ModuleManager


StepFn = Callable[[StepContext, ProgressState], "float | None"]


@dataclass(frozen=True)
class MigrationStep:
    """One named, versioned unit of update work."""

    module: str
    version: int
    fn: StepFn = field(compare=False, repr=False)
    description: str = ""
    dependencies: frozenset[StepKey] = frozenset()
    idempotent: bool = True

    @property
    def key(self) -> StepKey:
        return (self.module, self.version)

    @property
    def label(self) -> str:
        return f"{self.module}:{self.version}"


@dataclass
class StepResult:
    """What happened to one step during a run."""

    module: str
    version: int
    status: StepStatus
    description: str = ""
    fraction_complete: float = 0.0
    error: str | None = None
    invocations: int = 0

    @property
    def label(self) -> str:
        return f"{self.module}:{self.version}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "version": self.version,
            "status": str(self.status),
            "description": self.description,
            "fraction_complete": round(self.fraction_complete, 4),
            "error": self.error,
            "invocations": self.invocations,
        }


@dataclass
class ModuleStatus:
    """Applied/pending summary for one module namespace."""

    module: str
    watermark: int
    pending: list[int] = field(default_factory=list)
    in_flight: dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "watermark": self.watermark,
            "pending": list(self.pending),
            "in_flight": {str(version): round(fraction, 4) for version, fraction in self.in_flight.items()},
        }
