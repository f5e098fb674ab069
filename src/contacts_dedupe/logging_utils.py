from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import EngineConfig

LOG_LEVEL_ENV = "CONTACTS_DEDUPE_LOG_LEVEL"


def _resolve_level(level_name: Optional[str], default: int = logging.WARNING) -> int:
    """Map a level name or number (``"debug"``, ``"10"``) to a logging level."""
    if not level_name:
        return default
    normalized = str(level_name).strip().upper()
    if normalized.isdigit():
        return int(normalized)
    value = logging.getLevelName(normalized)
    return value if isinstance(value, int) else default


def configure_logging(config: EngineConfig, level_override: Optional[str] = None) -> int:
    """
    Set up logging for the scan and merge commands and return the level used.

    The level comes from, in order: the ``CONTACTS_DEDUPE_LOG_LEVEL``
    environment variable, ``level_override`` (the ``--log-level`` flag), then
    ``config.logging.level``. When the root logger already has handlers (an
    embedding application or pytest), only the level is changed; otherwise a
    stream handler is installed with ``config.logging.format``, which names the
    thread so records from background scans can be told apart.
    """
    level_value = _resolve_level(
        os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level
    )

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=config.logging.format)
    return level_value
