from __future__ import annotations

from contact_engine.services.attribution.chains import build_chain, build_chains, ordered_timeline
from contact_engine.services.attribution.summary import (
    ContactAttribution,
    WeightingScheme,
    attribute_contact,
    attribution_certainty,
    channel_breakdown,
    touchpoint_weights,
)

__all__ = [
    "build_chain",
    "build_chains",
    "ordered_timeline",
    "attribute_contact",
    "attribution_certainty",
    "channel_breakdown",
    "touchpoint_weights",
    "ContactAttribution",
    "WeightingScheme",
]
