"""
SLA Value Objects
==================

Immutable value objects and pure calculations for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.

All SLA figures are whole minutes. Every minute figure (a timeline segment,
the overlap of a segment with one maintenance interval, a response delay)
is rounded half-up on its own before being combined with others.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AbstractSet, Iterable, List, Optional, Sequence

from fleetdesk.config import TicketEventType, TicketStatus


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (stores may drop the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Interval:
    """Half-open time interval ``[start_at, end_at)``."""
    start_at: datetime
    end_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.end_at <= self.start_at


@dataclass(frozen=True)
class TimelineCheckpoint:
    """Moment at which a ticket entered a status."""
    at: datetime
    status: TicketStatus


@dataclass(frozen=True)
class SLAResult:
    """
    Outcome of an SLA evaluation.

    Minute fields are ``None`` when the clock was not evaluated: no policy
    applies, or the clock has no end boundary yet.
    """
    response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None
    breach_response: bool = False
    breach_resolution: bool = False

    @property
    def is_any_breached(self) -> bool:
        return self.breach_response or self.breach_resolution

    def to_dict(self) -> dict:
        return {
            "response_minutes": self.response_minutes,
            "resolution_minutes": self.resolution_minutes,
            "breach_response": self.breach_response,
            "breach_resolution": self.breach_resolution,
        }


NOT_EVALUATED = SLAResult()


@dataclass(frozen=True)
class SLAProgress:
    """Live, display-only view of the clocks that are still running."""
    response_progress: Optional[float] = None
    resolution_progress: Optional[float] = None
    response_near_breach: bool = False
    resolution_near_breach: bool = False


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA time accounting lives here so the
    lifecycle service and the read endpoints agree on every figure.
    """

    @staticmethod
    def round_minutes(seconds: float) -> int:
        """Round a duration in seconds half-up to whole minutes."""
        return int(math.floor(seconds / 60 + 0.5))

    @staticmethod
    def diff_minutes(start: datetime, end: datetime) -> int:
        """Whole minutes between two instants, never negative."""
        return max(0, SLACalculator.round_minutes((end - start).total_seconds()))

    @staticmethod
    def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
        """
        Union possibly overlapping intervals into disjoint, sorted ones.

        Empty intervals are dropped. Touching intervals are joined.
        """
        ordered = sorted(
            (i for i in intervals if not i.is_empty),
            key=lambda i: (i.start_at, i.end_at)
        )
        merged: List[Interval] = []
        for interval in ordered:
            if merged and interval.start_at <= merged[-1].end_at:
                last = merged[-1]
                if interval.end_at > last.end_at:
                    merged[-1] = Interval(last.start_at, interval.end_at)
                continue
            merged.append(interval)
        return merged

    @staticmethod
    def build_timeline(opened_at: datetime, events: Sequence) -> List[TimelineCheckpoint]:
        """
        Reconstruct the status timeline of a ticket.

        Starts at ``(opened_at, OPEN)`` and adds one checkpoint per
        STATUS_CHANGE event carrying a status, in ascending ``created_at``.
        ``sorted`` is stable, so equal timestamps keep insertion order.
        """
        timeline = [TimelineCheckpoint(at=opened_at, status=TicketStatus.OPEN)]
        status_changes = [
            e for e in events
            if e.type == TicketEventType.STATUS_CHANGE and e.status
        ]
        for event in sorted(status_changes, key=lambda e: e.created_at):
            timeline.append(TimelineCheckpoint(at=event.created_at, status=TicketStatus(event.status)))
        return timeline

    @staticmethod
    def overlap_minutes(start: datetime, end: datetime, windows: Sequence[Interval]) -> int:
        """Minutes of ``[start, end)`` covered by the given intervals, rounded per interval."""
        total = 0
        for window in windows:
            s = max(start, window.start_at)
            e = min(end, window.end_at)
            if e > s:
                total += SLACalculator.round_minutes((e - s).total_seconds())
        return total

    @staticmethod
    def resolution_minutes(
        opened_at: datetime,
        end_at: Optional[datetime],
        events: Sequence,
        pause_statuses: AbstractSet[TicketStatus],
        windows: Sequence[Interval] = ()
    ) -> Optional[int]:
        """
        Accumulate SLA minutes between ``opened_at`` and ``end_at``.

        Segments spent in a pause status contribute nothing. Other segments
        contribute their length minus their overlap with maintenance
        windows, floored at zero. Returns ``None`` while the clock has no
        end boundary.
        """
        if end_at is None:
            return None

        timeline = SLACalculator.build_timeline(opened_at, events)
        timeline.append(TimelineCheckpoint(at=end_at, status=timeline[-1].status))
        maintenance = SLACalculator.merge_intervals(windows)

        total = 0
        for current, nxt in zip(timeline, timeline[1:]):
            if nxt.at <= current.at:
                continue
            if current.status in pause_statuses:
                continue
            segment = SLACalculator.diff_minutes(current.at, nxt.at)
            excluded = SLACalculator.overlap_minutes(current.at, nxt.at, maintenance)
            total += max(0, segment - excluded)
        return total

    @staticmethod
    def evaluate(
        opened_at: datetime,
        first_response_at: Optional[datetime],
        resolved_at: Optional[datetime],
        closed_at: Optional[datetime],
        events: Sequence,
        policy,
        windows: Sequence[Interval] = ()
    ) -> SLAResult:
        """
        Evaluate response and resolution clocks against a policy.

        Without a policy the SLA does not apply and nothing is evaluated.
        """
        if policy is None:
            return NOT_EVALUATED

        response_minutes = (
            SLACalculator.diff_minutes(opened_at, first_response_at)
            if first_response_at is not None else None
        )

        end_at = closed_at if closed_at is not None else resolved_at
        resolution_minutes = SLACalculator.resolution_minutes(
            opened_at, end_at, events, policy.pause_statuses, windows
        )

        return SLAResult(
            response_minutes=response_minutes,
            resolution_minutes=resolution_minutes,
            breach_response=(
                response_minutes is not None
                and response_minutes > policy.response_minutes
            ),
            breach_resolution=(
                resolution_minutes is not None
                and resolution_minutes > policy.resolution_minutes
            ),
        )

    @staticmethod
    def progress(now: datetime, opened_at: datetime, limit_minutes: int) -> float:
        """Fraction of an SLA limit already consumed, clamped to [0, 1]."""
        if limit_minutes <= 0:
            return 1.0
        elapsed = SLACalculator.diff_minutes(opened_at, now)
        return min(1.0, max(0.0, elapsed / limit_minutes))

    @staticmethod
    def live_progress(
        now: datetime,
        ticket,
        policy,
        result: SLAResult,
        warning_ratio: float
    ) -> SLAProgress:
        """
        Progress of the clocks that are still running on a ticket.

        Response progress is reported until the first response, resolution
        progress until the ticket is closed. A clock is near breach once its
        ratio reaches ``warning_ratio`` and it has not breached yet.
        """
        if policy is None:
            return SLAProgress()

        response_progress = None
        if ticket.first_response_at is None:
            response_progress = SLACalculator.progress(now, ticket.opened_at, policy.response_minutes)

        resolution_progress = None
        if ticket.closed_at is None:
            resolution_progress = SLACalculator.progress(now, ticket.opened_at, policy.resolution_minutes)

        return SLAProgress(
            response_progress=response_progress,
            resolution_progress=resolution_progress,
            response_near_breach=(
                response_progress is not None
                and response_progress >= warning_ratio
                and not result.breach_response
            ),
            resolution_near_breach=(
                resolution_progress is not None
                and resolution_progress >= warning_ratio
                and not result.breach_resolution
            ),
        )
