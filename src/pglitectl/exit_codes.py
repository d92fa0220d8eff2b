"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Failures of the wrapped server binaries propagate their own return code
    instead of one of these values.
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
