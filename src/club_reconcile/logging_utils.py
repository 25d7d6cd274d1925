from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import ReconcileConfig

LOG_LEVEL_ENV = "CLUB_RECONCILE_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(level_name: str) -> int:
    """
    Convert a case-insensitive logging level string to its numeric value.

    Unknown names fall back to ``logging.WARNING``.
    """
    normalized = (level_name or "WARNING").strip().upper()
    if normalized.isdigit():
        return int(normalized)
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(config: ReconcileConfig, level_override: Optional[str] = None) -> None:
    """
    Configure the root logger according to precedence:

    1. ``CLUB_RECONCILE_LOG_LEVEL`` environment variable (if set)
    2. ``level_override`` provided by the caller (e.g., CLI flag)
    3. ``config.logging.level`` from ``config.yaml``
    4. Default ``WARNING`` level
    """
    env_level = os.getenv(LOG_LEVEL_ENV)
    effective_level_name = env_level or level_override or config.logging.level or "WARNING"
    level_value = _resolve_level(effective_level_name)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)
