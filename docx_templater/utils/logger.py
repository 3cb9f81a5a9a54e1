"""Central logging configuration for the templating library."""
from __future__ import annotations

import logging
import os
from typing import Optional

_DEFAULT_LEVEL = logging.INFO
_LEVEL_ENV_VAR = "DOCX_TEMPLATER_LOG_LEVEL"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configured_level() -> int:
    name = os.environ.get(_LEVEL_ENV_VAR, "").strip().upper()
    if not name:
        return _DEFAULT_LEVEL
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else _DEFAULT_LEVEL


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-level logger, installing a root handler on first use."""
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=_configured_level(), format=_FORMAT)
    return logger
