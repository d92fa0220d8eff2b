"""Background follower that mirrors a server log file onto a stream."""
from __future__ import annotations

import codecs
import logging
import sys
import threading
from pathlib import Path
from typing import TextIO

LOGGER = logging.getLogger(__name__)


class LogTail:
    """Copy bytes appended to *path* onto *stream* until stopped.

    The follower starts at the current end of the file, so only content
    written after :meth:`start` is forwarded. :meth:`stop` is idempotent and
    drains whatever was written before it returns.
    """

    def __init__(
        self,
        path: Path,
        *,
        stream: TextIO | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        """Prepare a follower for *path*; nothing runs until :meth:`start`."""
        self.path = path
        self.poll_interval = poll_interval
        self._stream = stream
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._offset = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def running(self) -> bool:
        """Return ``True`` while the follower thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start following in a daemon thread."""
        if self.running:
            LOGGER.warning("Log tail already running for %s", self.path)
            return
        self.path.touch(exist_ok=True)
        self._offset = self.path.stat().st_size
        self._decoder.reset()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="LogTail")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop following and wait for the thread to exit."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=timeout)
        if thread.is_alive():
            LOGGER.warning("Log tail thread for %s did not exit cleanly", self.path)
            return
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._pump():
                self._stop_event.wait(self.poll_interval)
        self._pump(final=True)

    def _pump(self, *, final: bool = False) -> bool:
        # Multibyte characters may straddle two reads; the decoder holds the
        # partial sequence until the rest arrives.
        try:
            with self.path.open("rb") as handle:
                handle.seek(self._offset)
                chunk = handle.read()
        except FileNotFoundError:
            chunk = b""
        self._offset += len(chunk)
        text = self._decoder.decode(chunk, final=final)
        if text:
            stream = self._stream or sys.stderr
            stream.write(text)
            stream.flush()
        return bool(chunk)


__all__ = ["LogTail"]
