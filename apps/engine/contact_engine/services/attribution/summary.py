from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from contact_engine.schemas import AttributionChain, AttributionModel, Contact, Deal, Event
from contact_engine.services.attribution.chains import UNKNOWN_PLATFORM, build_chains, ordered_timeline

CERTAINTY_CAP = 0.98
NO_TOUCHPOINT_CERTAINTY = 0.5

CHANNEL_INFLUENCE = {"calendly": 0.85, "close": 0.75, "typeform": 0.6}
DEFAULT_CHANNEL_INFLUENCE = 0.5
_TYPE_SIGNAL = {"meeting": 0.05, "activity": 0.03}
_DEFAULT_TYPE_SIGNAL = 0.02


class WeightingScheme(str, Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    U_SHAPED = "u_shaped"
    W_SHAPED = "w_shaped"
    MULTI_TOUCH = "multi_touch"


# (first, middle, last) share of credit.
TOUCHPOINT_WEIGHTS: dict[WeightingScheme, tuple[float, float, float]] = {
    WeightingScheme.FIRST_TOUCH: (1.0, 0.0, 0.0),
    WeightingScheme.LAST_TOUCH: (0.0, 0.0, 1.0),
    WeightingScheme.LINEAR: (0.33, 0.34, 0.33),
    WeightingScheme.U_SHAPED: (0.4, 0.2, 0.4),
    WeightingScheme.W_SHAPED: (0.3, 0.4, 0.3),
    WeightingScheme.MULTI_TOUCH: (0.25, 0.5, 0.25),
}


class ChannelShare(BaseModel):
    count: int
    percentage: float


class ContactAttribution(BaseModel):
    contact: Contact
    timeline: list[Event] = Field(default_factory=list)
    first_touch: Event | None = None
    last_touch: Event | None = None
    chains: list[AttributionChain] = Field(default_factory=list)
    channel_breakdown: dict[str, ChannelShare] = Field(default_factory=dict)
    certainty: float


def _data_completeness(contact: Contact) -> float:
    score = 0.05
    if contact.name and contact.email:
        score += 0.05
    if contact.last_activity_date:
        score += 0.05
    if contact.company and contact.title:
        score += 0.05
    if contact.notes:
        score += 0.05
    return score


def _channel_diversity(touchpoints: Sequence[Event]) -> float:
    platforms = {event.source_platform or UNKNOWN_PLATFORM for event in touchpoints}
    if len(platforms) >= 2:
        return 0.2
    if len(platforms) == 1:
        return 0.1
    return 0.05


def _timeline_clarity(touchpoints: Sequence[Event]) -> float:
    if len(touchpoints) >= 5:
        return 0.2
    if len(touchpoints) >= 2:
        return 0.1 + (len(touchpoints) - 2) * 0.03
    return 0.05


def _touchpoint_signal(touchpoints: Sequence[Event]) -> float:
    signal = 0.0
    for event in touchpoints:
        influence = CHANNEL_INFLUENCE.get(event.source_platform or "", DEFAULT_CHANNEL_INFLUENCE)
        signal += influence * _TYPE_SIGNAL.get(event.type, _DEFAULT_TYPE_SIGNAL)
    return min(0.2, signal)


def _cross_platform_confirmation(contact: Contact) -> float:
    platforms = {source for source in contact.lead_sources if source in CHANNEL_INFLUENCE}
    if len(platforms) >= 3:
        return 0.2
    if len(platforms) == 2:
        return 0.15
    return 0.05


def attribution_certainty(contact: Contact, touchpoints: Sequence[Event]) -> float:
    """Confidence in [0.5, 0.98] that the touchpoints explain the contact's outcome.

    Starts from 0.7 and adds components for field completeness, channel
    diversity, timeline length, per-touch signal strength and how many source
    platforms know the contact.
    """
    total = (
        0.7
        + _data_completeness(contact)
        + _channel_diversity(touchpoints)
        + _timeline_clarity(touchpoints)
        + _touchpoint_signal(touchpoints)
        + _cross_platform_confirmation(contact)
    )
    return round(min(CERTAINTY_CAP, total), 4)


def chain_certainty(contact: Contact, chain: AttributionChain) -> float:
    if not chain.touchpoints:
        return NO_TOUCHPOINT_CERTAINTY
    return attribution_certainty(contact, chain.touchpoints)


def touchpoint_weights(
    chain: AttributionChain,
    scheme: WeightingScheme | str | None = None,
) -> dict[str, float]:
    """Credit per touchpoint id.

    Without an explicit scheme a last-touch chain credits its primary meeting
    and a multi-touch chain uses the multi_touch split.
    """
    touchpoints = chain.touchpoints
    if not touchpoints:
        return {}
    if scheme is None:
        if chain.model == AttributionModel.LAST_TOUCH and chain.primary_touchpoint is not None:
            return {chain.primary_touchpoint.id: 1.0}
        scheme = WeightingScheme.MULTI_TOUCH
    first, middle, last = TOUCHPOINT_WEIGHTS[WeightingScheme(scheme)]

    if len(touchpoints) == 1:
        return {touchpoints[0].id: 1.0}
    weights = {touchpoints[0].id: first}
    if len(touchpoints) > 2:
        share = middle / (len(touchpoints) - 2)
        for event in touchpoints[1:-1]:
            weights[event.id] = share
    weights[touchpoints[-1].id] = last
    return weights


def channel_breakdown(touchpoints: Sequence[Event]) -> dict[str, ChannelShare]:
    counts: dict[str, int] = {}
    for event in touchpoints:
        platform = event.source_platform or UNKNOWN_PLATFORM
        counts[platform] = counts.get(platform, 0) + 1
    total = len(touchpoints)
    return {
        platform: ChannelShare(count=count, percentage=count / total if total else 0.0)
        for platform, count in counts.items()
    }


def attribute_contact(
    contact: Contact,
    events: Iterable[Event],
    now: datetime | None = None,
) -> ContactAttribution:
    timeline = ordered_timeline(events)
    touchpoints = [event for event in timeline if not isinstance(event, Deal)]
    chains = build_chains(contact.id, timeline, now=now)

    if chains:
        certainty = max(chain_certainty(contact, chain) for chain in chains)
    else:
        certainty = attribution_certainty(contact, touchpoints)

    return ContactAttribution(
        contact=contact,
        timeline=timeline,
        first_touch=touchpoints[0] if touchpoints else None,
        last_touch=touchpoints[-1] if touchpoints else None,
        chains=chains,
        channel_breakdown=channel_breakdown(touchpoints),
        certainty=certainty,
    )
