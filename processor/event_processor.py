"""Event partitioning into upcoming and past lists."""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Tuple

from processor.models import Event

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class EventPartitioner:
    """Splits event lists by start time relative to an evaluation instant."""

    def partition(
        self,
        events: Iterable[Event],
        now: datetime
    ) -> Tuple[List[Event], List[Event]]:
        """
        Partition events into upcoming and past lists.

        Events without a start time are dropped from both lists. The
        upcoming list is sorted ascending by start time; events sharing a
        start time keep their input order.

        Args:
            events: Events in server order
            now: Evaluation instant, timezone-aware

        Returns:
            Tuple of (upcoming, past)
        """
        upcoming = []
        past = []
        skipped = 0

        for event in events:
            if event.start_at is None:
                skipped += 1
                continue
            if event.start_at > now:
                upcoming.append(event)
            else:
                past.append(event)

        upcoming.sort(key=self._start_key)

        logger.debug(
            f"Partitioned events: {len(upcoming)} upcoming, {len(past)} past, "
            f"{skipped} without start time"
        )
        return upcoming, past

    def ongoing_or_future(self, events: Iterable[Event], now: datetime) -> List[Event]:
        """
        Select events that have not ended yet.

        Args:
            events: Events in server order
            now: Evaluation instant, timezone-aware

        Returns:
            Events whose end time is after ``now``, in input order
        """
        return [
            event for event in events
            if event.end_at is not None and event.end_at > now
        ]

    @staticmethod
    def _start_key(event: Event) -> datetime:
        return event.start_at
