"""Attribution chains: which touchpoints led up to each deal.

Every deal on a contact gets its own chain built from the non-deal events at
or before the deal timestamp. When a meeting precedes the deal it is treated
as the converting touch (last-touch); otherwise the whole ordered history is
kept as evidence (multi-touch).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from contact_engine.core.config import get_settings, split_csv
from contact_engine.schemas import (
    Activity,
    AttributionChain,
    AttributionModel,
    Deal,
    Event,
    FormSubmission,
    Meeting,
    as_utc,
)

logger = logging.getLogger(__name__)

UNKNOWN_PLATFORM = "unknown"
_TYPE_ORDER = {"form_submission": 0, "activity": 1, "meeting": 2, "deal": 3}


def timeline_key(event: Event) -> tuple[datetime, int, str]:
    return (event.timestamp, _TYPE_ORDER.get(event.type, len(_TYPE_ORDER)), event.source_id)


def ordered_timeline(events: Iterable[Event]) -> list[Event]:
    return sorted(events, key=timeline_key)


def known_platforms() -> list[str]:
    return sorted(split_csv(get_settings().known_platforms))


def _channel_counts(prior: list[Event], platforms: Iterable[str]) -> dict[str, int]:
    counts = {platform: 0 for platform in platforms}
    for event in prior:
        platform = event.source_platform or UNKNOWN_PLATFORM
        counts[platform] = counts.get(platform, 0) + 1
    return counts


def _last_by_kind(prior: list[Event]) -> tuple[Meeting | None, FormSubmission | None, Activity | None]:
    last_meeting: Meeting | None = None
    last_form: FormSubmission | None = None
    last_activity: Activity | None = None
    for event in prior:
        if isinstance(event, Meeting):
            last_meeting = event
        elif isinstance(event, FormSubmission):
            last_form = event
        elif isinstance(event, Activity):
            last_activity = event
        else:
            raise TypeError(f"unexpected touchpoint type: {type(event).__name__}")
    return last_meeting, last_form, last_activity


def build_chain(
    contact_id: str,
    deal: Deal,
    timeline: list[Event],
    *,
    computed_at: datetime,
    platforms: Iterable[str],
) -> AttributionChain:
    prior = [event for event in timeline if not isinstance(event, Deal) and event.timestamp <= deal.timestamp]
    last_meeting, last_form, last_activity = _last_by_kind(prior)

    if last_meeting is not None:
        model = AttributionModel.LAST_TOUCH
        primary: Event | None = last_meeting
        days_to_conversion: int | None = (deal.timestamp - last_meeting.timestamp).days
    else:
        model = AttributionModel.MULTI_TOUCH
        primary = None
        days_to_conversion = None

    return AttributionChain(
        contact_id=contact_id,
        deal=deal,
        model=model,
        touchpoints=prior,
        primary_touchpoint=primary,
        first_touch=prior[0] if prior else None,
        last_touch=prior[-1] if prior else None,
        last_meeting=last_meeting,
        last_form=last_form,
        last_activity=last_activity,
        days_to_conversion=days_to_conversion,
        channel_counts=_channel_counts(prior, platforms),
        computed_at=computed_at,
    )


def build_chains(
    contact_id: str,
    events: Iterable[Event],
    now: datetime | None = None,
    *,
    platforms: Iterable[str] | None = None,
) -> list[AttributionChain]:
    computed_at = as_utc(now) if now else datetime.now(timezone.utc)
    platform_list = list(platforms) if platforms is not None else known_platforms()
    timeline = ordered_timeline(events)
    deals = [event for event in timeline if isinstance(event, Deal)]

    chains = [
        build_chain(contact_id, deal, timeline, computed_at=computed_at, platforms=platform_list)
        for deal in deals
    ]
    logger.debug(
        "attribution_chains_built",
        extra={"contact_id": contact_id, "deal_count": len(deals), "event_count": len(timeline)},
    )
    return chains
