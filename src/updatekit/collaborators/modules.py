"""Module-lifecycle collaborator: installs auxiliary modules on demand."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from updatekit.engine.errors import ModuleInstallError

from .config import ConfigStore

logger = logging.getLogger(__name__)

EXTENSION_CONFIG = "core.extension"


class ModuleManager(ABC):
    @abstractmethod
    def install_modules(self, names: Iterable[str]) -> list[str]:
        """Install *names*, returning the ones that were newly installed.

        Idempotent. Raises ModuleInstallError, installing nothing, if any
        name is unavailable.
        """

    @abstractmethod
    def is_installed(self, name: str) -> bool: ...

    @abstractmethod
    def installed(self) -> list[str]: ...


class ConfigModuleManager(ModuleManager):
    """Tracks installed modules in the ``core.extension`` config object.

    ``available`` lists the modules that can be installed; installing
    anything else fails.
    """

    def __init__(self, config: ConfigStore, available: Iterable[str]) -> None:
        self._config = config
        self._available = set(available)

    def install_modules(self, names: Iterable[str]) -> list[str]:
        requested = list(dict.fromkeys(names))
        missing = [name for name in requested if name not in self._available]
        if missing:
            raise ModuleInstallError(missing)

        extension = self._config.get(EXTENSION_CONFIG)
        current = list(extension.get("modules", []))
        added = [name for name in requested if name not in current]
        if added:
            extension["modules"] = sorted(current + added)
            self._config.set(EXTENSION_CONFIG, extension)
            logger.info("Installed modules: %s", ", ".join(added))
        return added

    def is_installed(self, name: str) -> bool:
        return name in self.installed()

    def installed(self) -> list[str]:
        return list(self._config.get(EXTENSION_CONFIG).get("modules", []))
