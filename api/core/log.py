"""
Process-wide logging setup.

Modules log via `logging.getLogger(__name__)` with `event key=value` messages;
this only installs the root handler and is called once from `main.run()`.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper() or "INFO")
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    # Idempotent: a second call only adjusts the level.
    if any(getattr(h, "_cube_server", False) for h in root.handlers):
        return None
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._cube_server = True  # type: ignore[attr-defined]
    root.addHandler(handler)
