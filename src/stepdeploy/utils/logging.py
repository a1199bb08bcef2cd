"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGING_CONFIGURED = False
_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


def get_logger(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=getattr(logging, (level or "INFO").upper(), logging.INFO),
            format=_LOG_FORMAT,
        )
        _LOGGING_CONFIGURED = True
    elif level:
        # 已经初始化过，只调整根 logger 级别
        logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
    return logging.getLogger(name)
