from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from contact_engine.db.pg.store import ContactStore
from contact_engine.schemas import AttributionModel, Deal, Meeting, RawRecord
from contact_engine.services.attribution.summary import ContactAttribution, attribute_contact
from contact_engine.services.enhancement.events import backfill_cash_collected, classify_meetings
from contact_engine.services.ingest.pipeline import ingest_record
from contact_engine.services.matching.policy import MatchPolicy
from contact_engine.services.merge.engine import MergePolicy
from contact_engine.workers.batch import BatchReport, KeyedLocks, run_batch

logger = logging.getLogger(__name__)


def _record_id(raw: RawRecord | Mapping[str, Any]) -> str:
    if isinstance(raw, RawRecord):
        platform, source_id, email = raw.source_platform, raw.source_id, raw.email
    else:
        platform, source_id, email = raw.get("source_platform"), raw.get("source_id"), raw.get("email")
    return f"{platform}:{source_id or email or '?'}"


def ingest_batch(
    store: ContactStore,
    records: Iterable[RawRecord | Mapping[str, Any]],
    *,
    match_policy: MatchPolicy | None = None,
    merge_policy: MergePolicy | None = None,
    max_workers: int | None = None,
) -> BatchReport:
    locks = KeyedLocks()

    def _ingest(raw: RawRecord | Mapping[str, Any]) -> dict[str, int]:
        outcome = ingest_record(store, raw, match_policy=match_policy, merge_policy=merge_policy, locks=locks)
        return {
            "created": int(outcome.created),
            "merged": int(not outcome.created),
            "needs_review": int(outcome.match.needs_review),
            "conflicts": len(outcome.conflicts),
        }

    return run_batch("ingest_batch", records, _ingest, item_id=_record_id, max_workers=max_workers)


@dataclass
class AttributionRun:
    report: BatchReport
    results: dict[str, ContactAttribution] = field(default_factory=dict)


def attribute_all_contacts(
    store: ContactStore,
    *,
    contact_ids: Iterable[str] | None = None,
    now: datetime | None = None,
    max_workers: int | None = None,
) -> AttributionRun:
    computed_at = now or datetime.now(timezone.utc)
    results: dict[str, ContactAttribution] = {}
    results_lock = threading.Lock()

    def _attribute(contact_id: str) -> dict[str, int]:
        contact = store.get_contact(contact_id)
        if contact is None:
            raise LookupError(f"contact {contact_id} not found")
        attribution = attribute_contact(contact, store.events_for_contact(contact_id), now=computed_at)
        with results_lock:
            results[contact_id] = attribution
        last_touch = sum(1 for chain in attribution.chains if chain.model == AttributionModel.LAST_TOUCH)
        return {
            "attributed": int(bool(attribution.chains)),
            "chains": len(attribution.chains),
            "last_touch": last_touch,
            "multi_touch": len(attribution.chains) - last_touch,
        }

    ids = list(contact_ids) if contact_ids is not None else store.list_contact_ids()
    report = run_batch("attribute_all_contacts", ids, _attribute, max_workers=max_workers)
    return AttributionRun(report=report, results=results)


def enhance_all_events(store: ContactStore, *, max_workers: int | None = None) -> BatchReport:
    """Backfill cash on won deals, then renumber each contact's meetings."""
    deals = [event for event in store.events_of_type("deal") if isinstance(event, Deal)]
    backfill = backfill_cash_collected(deals)
    changed = [deal for deal, before in zip(backfill.deals, deals) if deal.cash_collected != before.cash_collected]
    if changed:
        store.save_events(changed)

    per_contact: dict[str, list[Meeting]] = {}
    for event in store.events_of_type("meeting"):
        if isinstance(event, Meeting) and event.contact_id is not None:
            per_contact.setdefault(event.contact_id, []).append(event)

    def _classify(contact_id: str) -> dict[str, int]:
        classification = classify_meetings(per_contact[contact_id])
        store.save_events(classification.meetings)
        return {"meetings_classified": len(classification.meetings)}

    report = run_batch("enhance_all_events", sorted(per_contact), _classify, max_workers=max_workers)
    counters = {**report.counters, "deals_backfilled": backfill.updated}
    logger.info(
        "events_enhanced",
        extra={"deals_backfilled": backfill.updated, "contacts": len(per_contact)},
    )
    return report.model_copy(update={"counters": counters})
