"""Process-wide logging setup."""

import logging
import sys

from gridbot.config import settings

_NOISY_LOGGERS = ("ccxt", "websockets", "httpx", "apscheduler", "telegram")


def setup_logging():
    """Configure the root logger once. Safe to call repeatedly."""
    root = logging.getLogger()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root.setLevel(level)

    if not any(getattr(h, "_gridbot", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
        handler._gridbot = True
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
