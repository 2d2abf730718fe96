# medkit/core/logging.py
import logging
import sys

from medkit.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def configure_logging(level: str = None) -> None:
    """
    Install a single stdout handler on the root logger.
    Safe to call more than once (uvicorn reload, tests).
    """
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)

    for h in root.handlers:
        if getattr(h, "_medkit", False):
            return

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S"))
    ch._medkit = True
    root.addHandler(ch)
