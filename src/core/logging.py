"""
Structured logging for the analysis pipeline.

Every module logs through a child of the ``src`` logger; the handler and
level are attached once, on that root, so stage logs from planning,
execution and narrative share one stream and one format.
"""
from __future__ import annotations

import logging
import sys

from src.core.config import get_settings

_ROOT = "src"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        root.propagate = False
    root.setLevel(getattr(logging, get_settings().log_level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    root = _configure_root()
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    # scripts and tests outside the package still land under the shared root
    return root.getChild(name)
