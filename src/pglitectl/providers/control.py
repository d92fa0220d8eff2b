"""Provider wrapping the engine's control, init and shell binaries."""
from __future__ import annotations

import logging
import os
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, NoReturn

from ..exit_codes import ExitCode
from ..personality import Personality

if TYPE_CHECKING:
    from ..instance import InstancePaths

LOGGER = logging.getLogger(__name__)

RUNNING_MARKER = "server is running"
MAINTENANCE_DATABASE = "template1"


class ControlError(RuntimeError):
    """Raised when an engine binary fails or cannot be found."""

    def __init__(self, message: str, *, returncode: int = ExitCode.PROVIDER) -> None:
        """Store *message* together with the exit code to propagate."""
        super().__init__(message)
        self.returncode = int(returncode)


@dataclass(slots=True)
class ServerControl:
    """Run the personality's binaries against one instance directory."""

    personality: Personality
    paths: InstancePaths
    locale: str = "en_US.UTF-8"

    def environment(self) -> dict[str, str]:
        """Return the subprocess environment with the locale forced."""
        env = dict(os.environ)
        env["LC_ALL"] = self.locale
        env["LANG"] = self.locale
        return env

    def initdb(self) -> subprocess.CompletedProcess[str]:
        """Create the cluster directory with trust authentication."""
        args = [
            self.personality.init_command,
            "-D",
            str(self.paths.db),
            "--auth=trust",
            f"--locale={self.locale}",
            "--encoding=UTF8",
        ]
        return self._run_command(args, check=True, capture_output=False)

    def start(self, *, wait: bool = True) -> subprocess.CompletedProcess[str]:
        """Start the server, blocking until it accepts connections."""
        return self._ctl("start", wait=wait)

    def stop(
        self,
        *,
        mode: str | None = None,
        wait: bool = True,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Stop the server, optionally with an explicit shutdown *mode*."""
        extra = ["-m", mode] if mode else []
        return self._ctl("stop", *extra, wait=wait, check=check)

    def status(self) -> subprocess.CompletedProcess[str]:
        """Return the captured status output; never raises on non-zero exit."""
        args = [self.personality.control_command, "-D", str(self.paths.db), "status"]
        return self._run_command(args, check=False, capture_output=True)

    def run(self, verb: str, extra: Sequence[str] = ()) -> subprocess.CompletedProcess[str]:
        """Invoke *verb* with passthrough arguments and inherited stdio."""
        args = [
            self.personality.control_command,
            "-D",
            str(self.paths.db),
            "-l",
            str(self.paths.log),
            verb,
            *extra,
        ]
        return self._run_command(args, check=False, capture_output=False)

    def is_running(self) -> bool:
        """Return ``True`` only when the status output reports a live server."""
        result = self.status()
        if result.returncode != 0:
            return False
        return RUNNING_MARKER in (result.stdout or "")

    def execute_sql(
        self,
        sql: str,
        *,
        database: str = MAINTENANCE_DATABASE,
    ) -> subprocess.CompletedProcess[str]:
        """Feed *sql* to the shell over the instance socket, stopping on error."""
        args = [
            self.personality.shell_command,
            "-X",
            "-q",
            "-v",
            "ON_ERROR_STOP=1",
            "-h",
            str(self.paths.root),
            "-d",
            database,
        ]
        return self._run_command(args, check=True, capture_output=True, input_text=sql)

    def shell_argv(self, role: str, database: str, extra: Sequence[str] = ()) -> list[str]:
        """Return the argv for an interactive client session."""
        return [
            self.personality.shell_command,
            "-h",
            str(self.paths.root),
            "-U",
            role,
            "-d",
            database,
            *extra,
        ]

    def exec_shell(self, argv: Sequence[str]) -> NoReturn:
        """Replace the current process with the client shell."""
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            os.execvpe(argv[0], list(argv), self.environment())  # noqa: S606
        except OSError as exc:
            raise ControlError(
                f"{argv[0]} could not be executed: {exc}",
                returncode=ExitCode.ENVIRONMENT,
            ) from exc

    # ------------------------------------------------------------------
    def _ctl(
        self,
        verb: str,
        *extra: str,
        wait: bool = True,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args = [
            self.personality.control_command,
            "-D",
            str(self.paths.db),
            "-l",
            str(self.paths.log),
        ]
        if wait:
            args.append("-w")
        args.extend(extra)
        args.append(verb)
        return self._run_command(
            args,
            check=check,
            capture_output=True,
            error_prefix=f"{self.personality.control_command} {verb}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        capture_output: bool,
        error_prefix: str | None = None,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=capture_output,
                input=input_text,
                text=True,
                check=False,
                env=self.environment(),
            )
        except FileNotFoundError as exc:
            raise ControlError(
                f"{args[0]} not found: {exc}",
                returncode=ExitCode.ENVIRONMENT,
            ) from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ControlError(
                f"{error_prefix or args[0]} failed (exit {result.returncode}): {message}",
                returncode=result.returncode,
            )
        return result


__all__ = ["ControlError", "MAINTENANCE_DATABASE", "RUNNING_MARKER", "ServerControl"]
