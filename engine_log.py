from __future__ import annotations

from typing import Callable, Optional

# -----------------------------------------------------------------------------
# Simple logger hook
# -----------------------------------------------------------------------------
# app.py can call set_logger(my_ui_logger). If you do nothing, we print().
_LOGGER = None  # type: Optional[Callable[[str], None]]


def set_logger(fn: Optional[Callable[[str], None]]) -> None:
    """Allow the UI to inject a logger callback: fn(text: str). None resets to print()."""
    global _LOGGER
    _LOGGER = fn


def log(msg: str) -> None:
    """Log to UI if available; otherwise print. Keep messages simple."""
    if _LOGGER:
        try:
            _LOGGER(msg)
            return
        except Exception:
            # UI callback failed; fall back to print
            pass
    print(msg)
