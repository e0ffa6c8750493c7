"""
Logging setup.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(log_path: Optional[str], log_level: str) -> None:
    """Log to stderr, and to `log_path` when one is given."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.insert(0, logging.FileHandler(log_path))

    level = log_level.upper() if log_level.upper() in VALID_LOG_LEVELS else "INFO"
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # urllib3 logs every model download request at DEBUG/INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
