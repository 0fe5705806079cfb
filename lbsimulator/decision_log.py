"""Bounded, most-recent-first log of dispatcher decisions.

This is the observability side channel the UI reads. It keeps the latest
``capacity`` records and silently discards older ones. Every record is also
emitted on the ``lbsimulator.decision_log`` logger.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10


class RecordKind(Enum):
    INFO = "info"
    ASSIGNED = "assigned"
    DROPPED = "dropped"
    RESOLVED = "resolved"
    HEALTH = "health"
    BATCH = "batch"


_LEVELS = {
    RecordKind.DROPPED: logging.WARNING,
}


@dataclass(frozen=True)
class DecisionRecord:
    """A single human-readable log entry.

    Attributes:
        seq: Position in the engine's overall record sequence.
        kind: Category of the entry.
        message: Text shown to the operator.
        request_id: Request involved, if any.
        server_id: Server involved, if any.
    """

    seq: int
    kind: RecordKind
    message: str
    request_id: str | None = None
    server_id: int | None = None


class DecisionLog:
    """Fixed-capacity record buffer, newest first.

    Args:
        capacity: Maximum number of records retained. Must be >= 1.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._records: deque[DecisionRecord] = deque(maxlen=capacity)
        self._seq = 0

    @property
    def capacity(self) -> int:
        return self._records.maxlen

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def record(
        self,
        message: str,
        kind: RecordKind = RecordKind.INFO,
        *,
        request_id: str | None = None,
        server_id: int | None = None,
    ) -> DecisionRecord:
        entry = DecisionRecord(
            seq=self._seq,
            kind=kind,
            message=message,
            request_id=request_id,
            server_id=server_id,
        )
        self._seq += 1
        self._records.appendleft(entry)
        logger.log(_LEVELS.get(kind, logging.INFO), "%s", message)
        return entry

    def messages(self) -> list[str]:
        """Record texts, newest first."""
        return [r.message for r in self._records]

    def records(self) -> tuple[DecisionRecord, ...]:
        return tuple(self._records)

    def filter_by_kind(self, kind: RecordKind) -> list[DecisionRecord]:
        return [r for r in self._records if r.kind is kind]

    def clear(self) -> None:
        self._records.clear()
