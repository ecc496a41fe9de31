from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from contact_engine.schemas import Deal, Meeting
from contact_engine.services.enhancement.events import backfill_cash_collected, classify_meetings

T0 = datetime(2026, 2, 1, 15, 0, tzinfo=timezone.utc)


def test_won_deals_without_cash_get_their_value() -> None:
    deals = [
        Deal(timestamp=T0, source_platform="close", source_id="d-1", status="Won", value=Decimal("1200")),
        Deal(timestamp=T0, source_platform="close", source_id="d-2", status="won", value=Decimal("900"), cash_collected=Decimal("450")),
        Deal(timestamp=T0, source_platform="close", source_id="d-3", status="open", value=Decimal("700")),
        Deal(timestamp=T0, source_platform="close", source_id="d-4", status="won"),
    ]

    result = backfill_cash_collected(deals)

    by_id = {deal.source_id: deal for deal in result.deals}
    assert by_id["d-1"].cash_collected == Decimal("1200")
    assert by_id["d-2"].cash_collected == Decimal("450")
    assert by_id["d-3"].cash_collected is None
    assert by_id["d-4"].cash_collected is None
    assert result.updated == 1
    assert result.total_cash_collected == Decimal("1650")
    assert deals[0].cash_collected is None


def test_meetings_are_sequenced_per_contact() -> None:
    meetings = [
        Meeting(contact_id="c-1", timestamp=T0 + timedelta(days=day), source_platform="calendly", source_id=f"m-{day}")
        for day in (6, 0, 2, 4, 8, 10)
    ] + [
        Meeting(contact_id="c-2", timestamp=T0, source_platform="calendly", source_id="solo", status="canceled"),
        Meeting(timestamp=T0, source_platform="calendly", source_id="orphan"),
    ]

    result = classify_meetings(meetings)

    by_id = {meeting.source_id: meeting for meeting in result.meetings}
    assert [by_id[f"m-{day}"].sequence_number for day in (0, 2, 4, 6, 8, 10)] == [1, 2, 3, 4, 5, 6]
    assert by_id["m-0"].meeting_type == "Initial Consultation"
    assert by_id["m-2"].meeting_type == "Follow-up"
    assert by_id["m-8"].meeting_type == "Implementation Kickoff"
    assert by_id["m-10"].meeting_type == "Progress Review"
    assert by_id["solo"].meeting_type == "Canceled"
    assert by_id["solo"].sequence_number == 1
    assert by_id["orphan"].sequence_number is None
    assert result.by_sequence[1] == 2
    assert result.by_type["Canceled"] == 1
