"""Reusable step functions for common update shapes.

Each builder returns a step function ready for ``StepRegistry.register`` or
the ``update_step`` decorator. All of them are safe to re-run.
"""

from .common import (
    batch_step,
    grant_permissions_step,
    install_modules_step,
    patch_config_step,
    role_config_name,
    seed_content_step,
    set_config_step,
)

__all__ = [
    "batch_step",
    "grant_permissions_step",
    "install_modules_step",
    "patch_config_step",
    "role_config_name",
    "seed_content_step",
    "set_config_step",
]
