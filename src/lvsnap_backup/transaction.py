"""Structured transaction log for backup runs.

Each record is one JSON object per line, appended to the file configured with
set_transaction_log(). Logging is disabled until a path is set, and a failing
write is reported through the normal logger without interrupting the backup.
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_transaction_log_path: Optional[Path] = None
_lock = threading.Lock()


def set_transaction_log(path: Path | str | None) -> None:
    """Set (or clear, with None) the transaction log file."""
    global _transaction_log_path

    if path is None:
        _transaction_log_path = None
        return

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    _transaction_log_path = path
    logger.debug("Transaction log: %s", path)


def log_transaction(
    action: str,
    status: str,
    target: Optional[str] = None,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    snapshot: Optional[str] = None,
    size_bytes: Optional[int] = None,
    duration_seconds: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append one record to the transaction log, if enabled.

    Args:
        action: What happened (backup, cleanup, ...)
        status: started, completed or failed
        target: Backup target name
        source: Directory that was backed up
        destination: Archive written by the run
        snapshot: Snapshot device used by the run
        size_bytes: Size of the archive
        duration_seconds: Wall-clock duration, rounded to milliseconds
        error: Error text for failed runs
        details: Any additional JSON-serializable data
    """
    path = _transaction_log_path
    if path is None:
        return

    record: dict[str, Any] = {
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "pid": os.getpid(),
        "action": action,
        "status": status,
        "target": target,
        "source": source,
        "destination": destination,
        "snapshot": snapshot,
        "size_bytes": size_bytes,
        "duration_seconds": (
            round(duration_seconds, 3) if duration_seconds is not None else None
        ),
        "error": error,
        "details": details,
    }
    record = {key: value for key, value in record.items() if value is not None}

    line = json.dumps(record, sort_keys=False)
    with _lock:
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("Could not write transaction log %s: %s", path, e)


class TransactionContext:
    """Log ``started`` on entry and ``completed``/``failed`` on exit.

    Example:
        with TransactionContext("backup", target="production") as tx:
            tx.set_destination(archive)
    """

    def __init__(self, action: str, **fields: Any) -> None:
        self.action = action
        self.fields = fields
        self.details: dict[str, Any] = {}
        self._start = 0.0
        self._failed_error: Optional[str] = None

    def __enter__(self) -> "TransactionContext":
        self._start = time.monotonic()
        log_transaction(self.action, "started", **self.fields)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        duration = time.monotonic() - self._start
        details = self.details or None
        if exc is not None or self._failed_error is not None:
            error = self._failed_error or f"{exc_type.__name__}: {exc}"
            log_transaction(
                self.action,
                "failed",
                duration_seconds=duration,
                error=error,
                details=details,
                **self.fields,
            )
        else:
            log_transaction(
                self.action,
                "completed",
                duration_seconds=duration,
                details=details,
                **self.fields,
            )
        return False

    def set_destination(self, destination: Path | str) -> None:
        self.fields["destination"] = str(destination)

    def set_size(self, size_bytes: int) -> None:
        self.fields["size_bytes"] = size_bytes

    def add_detail(self, key: str, value: Any) -> None:
        self.details[key] = value

    def fail(self, error: str) -> None:
        """Mark the transaction failed without raising."""
        self._failed_error = error


def read_transaction_log(
    path: Path | str | None = None,
    limit: Optional[int] = None,
    action_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Read records from the transaction log, oldest first.

    Args:
        path: Log file (default: the currently configured one)
        limit: Only return the last ``limit`` matching records
        action_filter: Only records with this action
        status_filter: Only records with this status
    """
    path = Path(path) if path is not None else _transaction_log_path
    if path is None or not path.exists():
        return []

    records = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping invalid transaction log line: %r", line)
                continue
            if action_filter and record.get("action") != action_filter:
                continue
            if status_filter and record.get("status") != status_filter:
                continue
            records.append(record)

    if limit is not None:
        records = records[-limit:] if limit > 0 else []
    return records


def get_transaction_stats(path: Path | str | None = None) -> dict[str, Any]:
    """Summarize the transaction log."""
    records = read_transaction_log(path)
    stats: dict[str, Any] = {
        "total_records": len(records),
        "backups": {"completed": 0, "failed": 0},
        "cleanups": {"completed": 0, "failed": 0},
        "total_bytes_archived": 0,
    }
    for record in records:
        action = record.get("action")
        status = record.get("status")
        bucket = {"backup": "backups", "cleanup": "cleanups"}.get(action)
        if bucket and status in ("completed", "failed"):
            stats[bucket][status] += 1
        if action == "backup" and status == "completed":
            stats["total_bytes_archived"] += record.get("size_bytes", 0) or 0
    return stats
