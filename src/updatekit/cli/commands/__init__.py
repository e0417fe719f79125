"""CLI command modules for updatekit."""

from .init_cmd import init
from .run import run
from .status import status

__all__ = ["init", "run", "status"]
