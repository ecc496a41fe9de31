from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any

from contact_engine.core.errors import MergeConflictWarning
from contact_engine.db.pg.store import ContactStore
from contact_engine.schemas import Contact, MatchConfidence, MatchResult, NormalizedRecord, RawRecord
from contact_engine.services.ingest.normalize import normalize
from contact_engine.services.matching.policy import MatchPolicy, default_match_policy
from contact_engine.services.matching.resolver import resolve
from contact_engine.services.matching.similarity import alias_canonical, name_tokens
from contact_engine.services.merge.engine import MergePolicy, contact_from_record, merge
from contact_engine.services.resolution.tasks import IDENTITY_REVIEW, MERGE_CONFLICT
from contact_engine.workers.batch import KeyedLocks

logger = logging.getLogger(__name__)


@dataclass
class IngestOutcome:
    contact: Contact
    created: bool
    match: MatchResult
    conflicts: list[MergeConflictWarning] = field(default_factory=list)
    review_task_ids: list[str] = field(default_factory=list)


def identity_keys(record: NormalizedRecord, policy: MatchPolicy | None = None) -> list[str]:
    """Lock keys for every signal the resolver could match this record on.

    Names lock on the surname so nickname and initial variants of the same
    person serialize against each other.
    """
    keys: list[str] = []
    if record.email:
        keys.append(f"email:{alias_canonical(record.email, policy) or record.email}")
    if record.phone:
        keys.append(f"phone:{record.phone}")
    tokens = name_tokens(record.name)
    if tokens:
        keys.append(f"surname:{tokens[-1]}")
    return keys


def _review_key(record: NormalizedRecord) -> str:
    if record.source_id:
        return f"{record.source_platform}:{record.source_id}"
    identity = record.email or record.phone or record.name_key or ""
    return f"{record.source_platform}:{identity}"


def _open_identity_review(store: ContactStore, contact: Contact, record: NormalizedRecord, match: MatchResult) -> str:
    payload: dict[str, Any] = {
        "reason": match.reason,
        "source_platform": record.source_platform,
        "source_id": record.source_id,
        "email": record.email,
        "candidate_ids": list(match.candidate_ids),
        "created_contact_id": contact.id,
    }
    return store.open_review_task(contact.id, IDENTITY_REVIEW, payload, _review_key(record))


def _open_conflict_reviews(store: ContactStore, conflicts: list[MergeConflictWarning], platform: str) -> list[str]:
    task_ids: list[str] = []
    for conflict in conflicts:
        payload = {**conflict.as_dict(), "source_platform": platform}
        dedupe_key = f"{conflict.contact_id}:{conflict.field}:{conflict.incoming}"
        task_ids.append(store.open_review_task(conflict.contact_id, MERGE_CONFLICT, payload, dedupe_key))
    return task_ids


def _merge_into(
    store: ContactStore,
    matched: Contact,
    match: MatchResult,
    record: NormalizedRecord,
    merge_policy: MergePolicy | None,
    locks: KeyedLocks | None,
) -> IngestOutcome:
    contact_id = matched.id
    with locks.hold(f"contact:{contact_id}") if locks is not None else nullcontext():
        # Another worker may have merged into this contact since it was read.
        existing = store.get_contact(contact_id) or matched
        outcome = merge(existing, record, match.confidence, merge_policy)
        contact = store.persist(outcome.contact, outcome.events)
    task_ids = _open_conflict_reviews(store, outcome.conflicts, record.source_platform)
    return IngestOutcome(
        contact=contact,
        created=False,
        match=match,
        conflicts=outcome.conflicts,
        review_task_ids=task_ids,
    )


def ingest_record(
    store: ContactStore,
    raw: RawRecord | Mapping[str, Any],
    *,
    match_policy: MatchPolicy | None = None,
    merge_policy: MergePolicy | None = None,
    locks: KeyedLocks | None = None,
) -> IngestOutcome:
    """Normalize, resolve and then merge into the match or create a new contact.

    LOW and NONE never merge. A LOW match still creates the new contact and
    opens an identity review task naming the ambiguous candidates.
    """
    record = normalize(raw)
    match_policy = match_policy or default_match_policy()

    with locks.hold(*identity_keys(record, match_policy)) if locks is not None else nullcontext():
        match = resolve(record, store, match_policy)
        if match.contact is not None and match.confidence.permits_merge:
            return _merge_into(store, match.contact, match, record, merge_policy, locks)

        contact = contact_from_record(record)
        contact = store.persist(contact, record.events)

    review_task_ids: list[str] = []
    if match.confidence == MatchConfidence.LOW:
        logger.warning(
            "identity_match_needs_review",
            extra={
                "contact_id": contact.id,
                "candidate_ids": match.candidate_ids,
                "reason": match.reason,
                "source_platform": record.source_platform,
            },
        )
        review_task_ids.append(_open_identity_review(store, contact, record, match))
    else:
        logger.info(
            "contact_created",
            extra={"contact_id": contact.id, "source_platform": record.source_platform},
        )
    return IngestOutcome(contact=contact, created=True, match=match, review_task_ids=review_task_ids)
