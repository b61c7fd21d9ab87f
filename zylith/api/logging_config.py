# api/logging_config.py
from __future__ import annotations

import logging
import sys

from zylith.api.config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_configured = False


def setup_logging(level: str = LOG_LEVEL) -> None:
    global _configured
    root = logging.getLogger("zylith")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``zylith`` hierarchy; configures the shared handler on first use."""
    setup_logging()
    return logging.getLogger(name if name.startswith("zylith") else f"zylith.{name}")
