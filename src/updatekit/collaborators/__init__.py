"""Collaborators injected into step functions.

Steps never reach for global state: configuration objects, content records
and module installation all go through these interfaces.
"""

from .config import ConfigStore, MemoryConfigStore, SqliteConfigStore
from .entities import EntityStore, MemoryEntityStore, SqliteEntityStore
from .modules import EXTENSION_CONFIG, ConfigModuleManager, ModuleManager

__all__ = [
    "ConfigStore",
    "MemoryConfigStore",
    "SqliteConfigStore",
    "EntityStore",
    "MemoryEntityStore",
    "SqliteEntityStore",
    "EXTENSION_CONFIG",
    "ConfigModuleManager",
    "ModuleManager",
]
