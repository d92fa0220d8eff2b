"""Provider interfaces for pglitectl."""
from __future__ import annotations

from .control import ControlError, ServerControl
from .log_tail import LogTail

__all__ = [
    "ControlError",
    "LogTail",
    "ServerControl",
]
