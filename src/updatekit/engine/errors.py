"""Exception hierarchy for the update-step engine."""

from __future__ import annotations


class UpdateKitError(RuntimeError):
    """Base class for all updatekit errors."""


class RegistrationError(UpdateKitError):
    """Raised when steps are declared inconsistently.

    This is a configuration error: it is never retried.
    """


class CyclicDependencyError(RegistrationError):
    """Raised when pending steps depend on each other in a cycle."""

    def __init__(self, cycle: list[tuple[str, int]]) -> None:
        self.cycle = cycle
        path = " -> ".join(f"{module}:{version}" for module, version in cycle)
        super().__init__(f"Cyclic step dependencies detected: {path}")


class UnknownDependencyError(RegistrationError):
    """Raised when a step depends on a step that was never declared."""


class StepError(UpdateKitError):
    """Raised by a step function to report a recoverable failure.

    The watermark is left untouched and saved progress is kept, so the
    step is retried on the next run.
    """


class ModuleInstallError(StepError):
    """Raised when one or more requested modules are unavailable."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Unable to install unavailable module(s): {', '.join(missing)}")


class PersistenceError(UpdateKitError):
    """Raised when the watermark/progress store cannot be read or written."""


class SettingsError(UpdateKitError):
    """Raised when updatekit.yaml cannot be parsed or validated."""
