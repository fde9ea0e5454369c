"""Order submission attempt tracing."""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generator

from storefront_core.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TraceEvent:
    """Single attempt recorded during an order submission."""

    timestamp: datetime
    event_type: str
    attempt: int
    submission_id: str
    duration_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AttemptOutcome:
    """Mutable slot the traced block fills in with its result kind."""

    outcome: str = "unknown"


class SubmissionTracer:
    """Traces every attempt of one submission."""

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        self.events: list[TraceEvent] = []
        self.start_time = time.monotonic()

    def add_event(
        self,
        event_type: str,
        attempt: int,
        duration_ms: float | None = None,
        **metadata: Any,
    ) -> None:
        """Add a trace event."""
        event = TraceEvent(
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            attempt=attempt,
            submission_id=self.submission_id,
            duration_ms=duration_ms,
            metadata=metadata,
        )
        self.events.append(event)

        logger.info(
            "trace_event",
            submission_id=self.submission_id,
            event_type=event_type,
            attempt=attempt,
            duration_ms=duration_ms,
            **metadata,
        )

    @contextmanager
    def trace_attempt(self, attempt: int, **metadata: Any) -> Generator[AttemptOutcome, None, None]:
        """Time one attempt; the block records its outcome on the yielded slot."""
        slot = AttemptOutcome()
        start = time.monotonic()
        try:
            yield slot
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            self.add_event(
                "submission_attempt",
                attempt,
                duration_ms=duration_ms,
                outcome=slot.outcome,
                **metadata,
            )

    @property
    def attempt_count(self) -> int:
        return sum(1 for e in self.events if e.event_type == "submission_attempt")

    def get_trace_summary(self) -> dict[str, Any]:
        """Get a summary of the trace."""
        total_duration = (time.monotonic() - self.start_time) * 1000

        outcomes: dict[str, int] = {}
        for event in self.events:
            outcome = event.metadata.get("outcome", "unknown")
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        return {
            "submission_id": self.submission_id,
            "total_duration_ms": total_duration,
            "attempts": self.attempt_count,
            "outcomes": outcomes,
            "events": [
                {
                    "timestamp": event.timestamp.isoformat(),
                    "event_type": event.event_type,
                    "attempt": event.attempt,
                    "duration_ms": event.duration_ms,
                    "metadata": event.metadata,
                }
                for event in self.events
            ],
        }
