"""Structured operation logging for pglitectl.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps taken and a single result, then appends one JSON record to
``operations.jsonl`` under the configured logs directory. Logging problems
never break a command: when the directory or file is unusable the logger
disables itself and keeps going silently.
"""
from __future__ import annotations

import json
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects the steps and outcome of a single CLI operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        op: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for operation *op*."""
        self._logger = logger
        self.op = op
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started_at = datetime.now(UTC)
        self._started = time.monotonic()
        self._flushed: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a step performed while the operation runs."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, context=context)

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            errors=list(errors or [message]),
            rc=rc,
            context=context,
        )

    def flush(self) -> None:
        """Write the record now instead of when the scope closes."""
        if self.result is None or self.result is self._flushed:
            return
        self._flushed = self.result
        self._logger.write(self._record())

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
        }
        if errors:
            result["errors"] = list(errors)
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def _record(self) -> dict[str, object]:
        return {
            "ts": self._started_at.isoformat(),
            "op": self.op,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": list(self.steps),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "result": self.result,
        }


class StructuredLogger:
    """Append JSON operation records to ``<logs_dir>/operations.jsonl``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*, disabling the logger if it is unusable."""
        self.logs_dir = logs_dir
        self._operations_log_path = logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @contextmanager
    def operation(
        self,
        op: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(self, op, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            scope.flush()

    def write(self, record: Mapping[str, object]) -> None:
        """Append *record* as a single JSON line."""
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "OPERATIONS_LOG_NAME"]
