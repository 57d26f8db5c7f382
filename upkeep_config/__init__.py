"""
upkeep_config -- single public entrypoint for keeper configuration.

``get_active_config()`` is the only way runtime code obtains configuration.
It reads the file named by ``path``, else by the ``UPKEEP_CONFIG_PATH``
environment variable, else the packaged ``defaults.yaml``.

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from upkeep_config.loader import load_config
from upkeep_config.schema import (
    KeeperConfig,
    ManagerConfig,
    RegistryConfig,
    SchedulerConfig,
    WatchdogConfig,
)

_logger = logging.getLogger("upkeep_kernel.config")

CONFIG_PATH_ENV = "UPKEEP_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> KeeperConfig:
    """Load and validate the active keeper configuration."""
    selected = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_config(selected)
    _logger.info(
        "config_loaded",
        extra={
            "path": str(selected),
            "manager_count": len(config.managers),
            "watchdog_count": len(config.watchdogs),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "KeeperConfig",
    "ManagerConfig",
    "RegistryConfig",
    "SchedulerConfig",
    "WatchdogConfig",
    "get_active_config",
]
