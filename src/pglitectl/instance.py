"""Lifecycle controller for a single on-disk database instance.

The instance directory holds the cluster (``db/``), the server ``log`` and the
``personality`` marker. Its existence is the only signal that ``setup`` ran.
Every operation that starts the server or the log follower runs inside
:meth:`Instance.supervise`, whose ``finally`` block fast-stops the server and
stops the follower regardless of how the operation ends.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .config import AppConfig
from .personality import Personality, persist
from .providers import ControlError, LogTail, ServerControl

LOGGER = logging.getLogger(__name__)

BOOTSTRAP_SQL = """\
CREATE ROLE "{role}" SUPERUSER LOGIN REPLICATION;
CREATE DATABASE "{database}" OWNER "{role}";
"""


@dataclass(frozen=True)
class InstancePaths:
    """Filesystem paths associated with an instance."""

    root: Path
    db: Path
    log: Path
    personality_file: Path

    @classmethod
    def from_root(cls, root: Path) -> InstancePaths:
        """Derive the standard layout beneath *root*."""
        return cls(
            root=root,
            db=root / "db",
            log=root / "log",
            personality_file=root / "personality",
        )

    def config_file(self, personality: Personality) -> Path:
        """Return the server config file path for *personality*."""
        return self.db / personality.config_filename


def _config_rules(socket_dir: Path, timezone: str) -> tuple[tuple[re.Pattern[str], str], ...]:
    # Each rule only fires on the stock line written by the init utility.
    return (
        (re.compile(r"^#unix_socket_directory = ''"), f"unix_socket_directory = '{socket_dir}'"),
        (
            re.compile(r"^#unix_socket_directories = '[^']*'"),
            f"unix_socket_directories = '{socket_dir}'",
        ),
        (re.compile(r"^#listen_addresses = 'localhost'"), "listen_addresses = ''"),
        (re.compile(r"^datestyle = '[^']*'"), "datestyle = 'iso, ymd'"),
        (re.compile(r"^#intervalstyle = 'postgres'"), "intervalstyle = 'iso_8601'"),
        (re.compile(r"^timezone = '[^']*'"), f"timezone = '{timezone}'"),
    )


def rewrite_config(path: Path, *, socket_dir: Path, timezone: str) -> int:
    """Bind the server to a socket in *socket_dir* by rewriting stock directives.

    Lines that do not match their expected default are left untouched. Returns
    the number of lines changed.
    """
    rules = _config_rules(socket_dir, timezone)
    changed = 0
    fd, scratch_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    scratch = Path(scratch_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as out, path.open(encoding="utf-8") as src:
            for line in src:
                for pattern, replacement in rules:
                    updated = pattern.sub(lambda _match, text=replacement: text, line, count=1)
                    if updated != line:
                        line = updated
                        changed += 1
                        break
                out.write(line)
        shutil.copyfile(scratch, path)
    finally:
        scratch.unlink(missing_ok=True)
    return changed


class Instance:
    """Create, supervise and remove one local database instance."""

    def __init__(
        self,
        config: AppConfig,
        personality: Personality,
        *,
        control: ServerControl | None = None,
        log_stream: TextIO | None = None,
    ) -> None:
        """Bind the controller to ``config.root_dir`` using *personality*."""
        self.config = config
        self.personality = personality
        self.paths = InstancePaths.from_root(config.root_dir)
        self.control = control or ServerControl(
            personality=personality,
            paths=self.paths,
            locale=config.locale,
        )
        self._log_stream = log_stream

    @property
    def exists(self) -> bool:
        """Return ``True`` once ``setup`` has created the instance directory."""
        return self.paths.root.exists()

    def url(self) -> str:
        """Return the connection URL for the instance socket."""
        return f"postgres://{self.config.role}@[{self.paths.root}]/{self.config.database}"

    def setup(self) -> bool:
        """Initialise the instance unless it already exists.

        Returns ``True`` when a new instance was created.
        """
        if self.exists:
            LOGGER.info("Instance already present at %s", self.paths.root)
            return False
        self.initialize()
        return True

    def initialize(self) -> None:
        """Create the cluster, bind it to the socket and create the role.

        The server is left stopped on success.
        """
        tail = LogTail(
            self.paths.log,
            stream=self._log_stream,
            poll_interval=self.config.log_poll_interval,
        )
        with self.supervise(tail):
            self.paths.root.mkdir(parents=True, exist_ok=True)
            self.control.initdb()
            changed = rewrite_config(
                self.paths.config_file(self.personality),
                socket_dir=self.paths.root,
                timezone=self.config.timezone,
            )
            LOGGER.debug("Rewrote %d config directives", changed)
            persist(self.paths, self.personality)

            self.paths.log.touch(exist_ok=True)
            tail.start()
            self.control.start()
            self.control.execute_sql(
                BOOTSTRAP_SQL.format(role=self.config.role, database=self.config.database)
            )
            self.control.stop()
            tail.stop()

    @contextmanager
    def supervise(self, tail: LogTail | None = None) -> Iterator[None]:
        """Guarantee a fast server stop and tail shutdown when the block exits."""
        try:
            yield
        finally:
            self._finalize(tail)

    def control_action(self, verb: str, extra: Sequence[str] = ()) -> int:
        """Forward *verb* to the control utility and return its exit code."""
        return self.control.run(verb, extra).returncode

    def is_running(self) -> bool:
        """Return ``True`` when the control utility reports a live server."""
        return self.control.is_running()

    def connect(
        self,
        extra: Sequence[str] = (),
        *,
        before_exec: Callable[[list[str]], None] | None = None,
    ) -> None:
        """Start the server if needed, then hand the process to the client shell."""
        argv = self.control.shell_argv(self.config.role, self.config.database, extra)
        with self.supervise():
            if not self.is_running():
                self.control.start()
            if before_exec is not None:
                before_exec(argv)
            self.control.exec_shell(argv)

    def clean(self) -> bool:
        """Remove the instance directory. Returns ``False`` if it was absent."""
        if not self.exists:
            return False
        shutil.rmtree(self.paths.root)
        return True

    def _finalize(self, tail: LogTail | None) -> None:
        try:
            self.control.stop(mode="fast", check=False)
        except ControlError as exc:
            LOGGER.debug("Ignoring failed fast stop: %s", exc)
        if tail is not None:
            tail.stop()


__all__ = ["BOOTSTRAP_SQL", "Instance", "InstancePaths", "rewrite_config"]
