from __future__ import annotations

import logging
import os
import sys


def configure_logging() -> None:
    """Configure stdout logging for the sample backend.

    A single handler and formatter is enough here; the level can be raised or
    lowered with LOG_LEVEL. Calling this more than once is a no-op.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)
    level_name = (os.getenv("LOG_LEVEL") or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
