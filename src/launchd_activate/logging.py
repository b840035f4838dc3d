"""Structured operations logging.

Every CLI invocation is recorded as one JSON line in ``operations.jsonl`` and
one human-readable line in ``launchd-activate.log`` inside the configured logs
directory. Logging is best effort: when the directory cannot be created or a
write fails the logger disables itself instead of interrupting the command.
"""
from __future__ import annotations

import getpass
import json
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "launchd-activate.log"


def _sanitize(value: object) -> object:
    """Convert *value* into JSON-safe primitives."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


def _iso_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass(slots=True)
class OperationScope:
    """Accumulates steps and the final result of a single operation."""

    command: str
    args: dict[str, object]
    target: dict[str, object]
    started_at: str = field(default_factory=_iso_now)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
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
        self._set_result("success", message, changed=changed, rc=0, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        rc: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            rc=rc,
            warnings=list(warnings or [message]),
            errors=list(errors or []),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=changed,
            rc=rc,
            errors=list(errors or [message]),
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        rc: int,
        warnings: list[str] | None = None,
        errors: list[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "rc": rc,
        }
        if warnings:
            result["warnings"] = warnings
        if errors:
            result["errors"] = errors
        if context:
            result["context"] = _sanitize(dict(context))
        self.result = result


class StructuredLogger:
    """Append operation records to the logs directory."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the logs directory, disabling logging when it is unusable."""
        self.logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._human_log_path = self.logs_dir / HUMAN_LOG
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
        else:
            self._enabled = True

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Record the operation executed inside the ``with`` block."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        start = time.perf_counter()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope, duration_ms=int((time.perf_counter() - start) * 1000))

    # ------------------------------------------------------------------
    def _write(self, scope: OperationScope, *, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "id": scope.op_id,
            "timestamp": scope.started_at,
            "command": scope.command,
            "args": _sanitize(scope.args),
            "target": _sanitize(scope.target),
            "steps": _sanitize(scope.steps),
            "result": scope.result,
            "duration_ms": duration_ms,
            "context": {
                "launchd_activate_version": __version__,
                "user": _current_user(),
                "pid": os.getpid(),
            },
        }
        result = scope.result or {}
        human = (
            f"{scope.started_at} [{str(result.get('status', 'unknown')).upper()}] "
            f"{scope.command}: {result.get('message', '')} ({duration_ms} ms)\n"
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(human)
        except OSError:
            self._enabled = False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


__all__ = ["OperationScope", "StructuredLogger"]
