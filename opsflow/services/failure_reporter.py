"""
Failure side-channel for absorbed errors.

Push delivery, per-recipient fan-out writes and audit appends never fail the
request that triggered them. Instead of logging ad hoc at each call site,
they hand the failure to one ``FailureReporter`` which:

  - logs it once at WARNING with ``failure_kind`` in the record extras
  - keeps it in a bounded ring so tests and the health endpoint can see it

Kinds:
    delivery   real-time push to a live session failed
    fanout     one recipient's notification row could not be written
    audit      an audit row could not be appended
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

KIND_DELIVERY = "delivery"
KIND_FANOUT = "fanout"
KIND_AUDIT = "audit"

FAILURE_KINDS = {KIND_DELIVERY, KIND_FANOUT, KIND_AUDIT}


@dataclass(frozen=True)
class FailureRecord:
    kind: str
    message: str
    context: dict = field(default_factory=dict)
    error_type: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "kind": self.kind,
            "message": self.message,
            "context": self.context,
            "error_type": self.error_type,
            "occurred_at": self.occurred_at.isoformat(),
        }


class FailureReporter:
    """Thread-safe bounded record of absorbed failures."""

    def __init__(self, maxlen: int = 200):
        self._records: deque[FailureRecord] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def report(self, kind: str, error: Exception | None = None, **context) -> FailureRecord:
        if kind not in FAILURE_KINDS:
            raise ValueError(f"Unknown failure kind '{kind}'")
        message = str(error) if error is not None else context.pop("message", kind)
        record = FailureRecord(
            kind=kind,
            message=message,
            context=context,
            error_type=type(error).__name__ if error is not None else None,
        )
        with self._lock:
            self._records.append(record)

        extra = {"failure_kind": kind}
        for key in ("actor_id", "document_id", "notification_id"):
            if key in context:
                extra[key] = context[key]
        logger.warning("Absorbed %s failure: %s", kind, message, extra=extra)
        return record

    def recent(self, kind: str | None = None, limit: int | None = None) -> list[FailureRecord]:
        """Newest-last list of retained failures, optionally filtered by kind."""
        with self._lock:
            records = [r for r in self._records if kind is None or r.kind == kind]
        if limit is not None:
            records = records[-limit:]
        return records

    def count(self, kind: str | None = None) -> int:
        return len(self.recent(kind))

    def clear(self):
        with self._lock:
            self._records.clear()
