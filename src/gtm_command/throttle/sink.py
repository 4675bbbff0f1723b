# throttle/sink.py
"""Instrumentation sink for throttle events.

Rejections are appended to a capped, session-scoped log held in a pluggable
``LogStorage``. Logging is best-effort: storage failures are absorbed here and
never reach the guarded action.
"""

import json
import math
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..logging_utils import get_logger
from .models import RejectionReason, ThrottleLogEntry, retry_seconds

DEFAULT_MAX_ENTRIES = 100


class LogStorage(ABC):
    """Storage capability backing the throttle log."""

    @abstractmethod
    def load(self) -> List[Dict[str, Any]]:
        """Return the stored entries, oldest first."""

    @abstractmethod
    def save(self, entries: List[Dict[str, Any]]) -> None:
        """Replace the stored entries."""


class MemoryLogStorage(LogStorage):
    """Session-scoped storage living for the lifetime of the process."""

    def __init__(self):
        self._entries: List[Dict[str, Any]] = []

    def load(self) -> List[Dict[str, Any]]:
        return [dict(entry) for entry in self._entries]

    def save(self, entries: List[Dict[str, Any]]) -> None:
        self._entries = [dict(entry) for entry in entries]


class JsonFileLogStorage(LogStorage):
    """Storage backed by a JSON array in a file.

    A missing file reads as an empty log.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        if not isinstance(data, list):
            raise ValueError(f"Throttle log at {self.path} is not a JSON array")
        return data

    def save(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries), encoding="utf-8")


class ThrottleLogSink:
    """Appends throttle events to a capped log, evicting the oldest first.

    Attributes:
        storage: The ``LogStorage`` holding the entries.
        max_entries: Maximum number of retained entries.

    Example:
        >>> sink = ThrottleLogSink(max_entries=2)
        >>> sink.record("data:read", RejectionReason.LIMIT_REACHED, 1200)
        >>> sink.get_log()[0].retry_after_sec
        2
    """

    def __init__(
        self,
        storage: Optional[LogStorage] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.logger = get_logger(__name__)
        self.storage = storage if storage is not None else MemoryLogStorage()
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def record(
        self,
        action_id: str,
        reason: RejectionReason,
        retry_after_ms: Union[int, float],
    ) -> None:
        """Record one rejection. Never raises."""
        wait_ms = max(0, int(math.ceil(retry_after_ms)))
        entry = ThrottleLogEntry(
            action_id=action_id,
            reason=reason,
            retry_after_ms=wait_ms,
            retry_after_sec=retry_seconds(wait_ms),
        )

        self.logger.warning(
            "Throttling triggered",
            extra={
                "action_id": action_id,
                "reason": reason.value,
                "retry_after_ms": wait_ms,
                "retry_after_sec": entry.retry_after_sec,
            }
        )

        try:
            with self._lock:
                entries = self.storage.load()
                entries.append(entry.model_dump(mode="json"))
                if len(entries) > self.max_entries:
                    entries = entries[-self.max_entries:]
                self.storage.save(entries)
        except Exception as e:
            self.logger.debug(f"Throttle log storage unavailable: {e}")

    def get_log(self) -> List[ThrottleLogEntry]:
        """Return the retained entries, oldest first, without mutating them."""
        try:
            with self._lock:
                raw_entries = self.storage.load()
            return [ThrottleLogEntry.model_validate(raw) for raw in raw_entries]
        except Exception as e:
            self.logger.debug(f"Throttle log could not be read: {e}")
            return []

    def clear(self) -> None:
        """Discard all retained entries."""
        try:
            with self._lock:
                self.storage.save([])
        except Exception as e:
            self.logger.debug(f"Throttle log could not be cleared: {e}")
