"""Configuration package for psi-runner.

Re-exports the settings symbols so that callers can write::

    from psi_runner.config import get_settings
"""

from __future__ import annotations

from psi_runner.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
