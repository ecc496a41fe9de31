from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from contact_engine.schemas import Deal, Meeting

logger = logging.getLogger(__name__)

MEETING_TYPES = {
    1: "Initial Consultation",
    2: "Follow-up",
    3: "Solution Presentation",
    4: "Decision Meeting",
    5: "Implementation Kickoff",
}
LATER_MEETING_TYPE = "Progress Review"
CANCELED_MEETING_TYPE = "Canceled"
_CANCELED_STATUSES = frozenset({"canceled", "cancelled"})


@dataclass
class CashBackfill:
    deals: list[Deal]
    updated: int = 0
    total_cash_collected: Decimal = Decimal("0")


@dataclass
class MeetingClassification:
    meetings: list[Meeting]
    by_sequence: dict[int, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)


def meeting_type_for(sequence_number: int, status: str | None) -> str:
    if (status or "").strip().lower() in _CANCELED_STATUSES:
        return CANCELED_MEETING_TYPE
    return MEETING_TYPES.get(sequence_number, LATER_MEETING_TYPE)


def backfill_cash_collected(deals: Iterable[Deal]) -> CashBackfill:
    """Won deals without a cash figure are treated as collected in full."""
    result: list[Deal] = []
    updated = 0
    total = Decimal("0")
    for deal in deals:
        if deal.status == "won" and deal.cash_collected is None and deal.value is not None:
            deal = deal.model_copy(update={"cash_collected": deal.value})
            updated += 1
        if deal.status == "won" and deal.cash_collected is not None:
            total += deal.cash_collected
        result.append(deal)
    logger.info("cash_collected_backfilled", extra={"updated": updated, "deal_count": len(result)})
    return CashBackfill(deals=result, updated=updated, total_cash_collected=total)


def classify_meetings(meetings: Iterable[Meeting]) -> MeetingClassification:
    """Number each contact's meetings by start time and name them by position."""
    per_contact: dict[str, list[Meeting]] = {}
    unlinked: list[Meeting] = []
    for meeting in meetings:
        if meeting.contact_id is None:
            unlinked.append(meeting)
            continue
        per_contact.setdefault(meeting.contact_id, []).append(meeting)

    classified: list[Meeting] = []
    by_sequence: Counter[int] = Counter()
    by_type: Counter[str] = Counter()
    for contact_id in sorted(per_contact):
        ordered = sorted(per_contact[contact_id], key=lambda meeting: (meeting.timestamp, meeting.source_id))
        for position, meeting in enumerate(ordered, start=1):
            meeting_type = meeting_type_for(position, meeting.status)
            classified.append(meeting.model_copy(update={"sequence_number": position, "meeting_type": meeting_type}))
            by_sequence[position] += 1
            by_type[meeting_type] += 1

    if unlinked:
        logger.info("meetings_without_contact_skipped", extra={"count": len(unlinked)})
    return MeetingClassification(
        meetings=classified + unlinked,
        by_sequence=dict(by_sequence),
        by_type=dict(by_type),
    )
