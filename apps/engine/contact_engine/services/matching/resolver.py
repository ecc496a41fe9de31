"""Identity resolution for incoming normalized records.

The resolver is a priority-ordered decision tree rather than a weighted sum:
an exact email beats an alias email, which beats a phone corroborated by name,
which beats a fuzzy name. The first tier that produces a single candidate
wins. Several candidates in one of the strong tiers means the store already
holds duplicates, which is reported as LOW confidence for manual review.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Protocol

from contact_engine.core.errors import CandidateLookupError
from contact_engine.schemas import Contact, MatchConfidence, MatchResult, NormalizedRecord
from contact_engine.services.matching.policy import MatchPolicy, default_match_policy
from contact_engine.services.matching.similarity import (
    company_fuzzy,
    email_alias_equivalent,
    email_exact,
    name_fuzzy,
    phone_exact,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CandidateSource(Protocol):
    def find_candidates(self, record: NormalizedRecord) -> list[Contact]: ...


def _activity_key(contact: Contact) -> tuple[datetime, datetime, str]:
    return (
        contact.last_activity_date or _EPOCH,
        contact.created_at or _EPOCH,
        contact.id,
    )


def most_recently_active(contacts: Sequence[Contact]) -> Contact:
    return max(contacts, key=_activity_key)


def _load_candidates(record: NormalizedRecord, candidate_pool: CandidateSource | Sequence[Contact]) -> list[Contact]:
    finder = getattr(candidate_pool, "find_candidates", None)
    if finder is None:
        return list(candidate_pool)  # type: ignore[arg-type]
    try:
        return list(finder(record))
    except Exception as exc:
        logger.warning(
            "candidate_lookup_failed",
            extra={"source_platform": record.source_platform, "error": str(exc)},
        )
        raise CandidateLookupError(f"candidate lookup failed: {exc}") from exc


def _ambiguous(matches: list[Contact], signal: str) -> MatchResult:
    chosen = most_recently_active(matches)
    candidate_ids = sorted(contact.id for contact in matches)
    logger.warning(
        "identity_match_ambiguous",
        extra={"signal": signal, "candidate_ids": candidate_ids, "chosen_contact_id": chosen.id},
    )
    return MatchResult(
        contact=chosen,
        confidence=MatchConfidence.LOW,
        reason=f"Ambiguous {signal} match across {len(matches)} contacts; needs review",
        candidate_ids=candidate_ids,
    )


def _single_tier(
    candidates: list[Contact],
    predicate: Callable[[Contact], bool],
    confidence: MatchConfidence,
    signal: str,
    reason: str,
) -> MatchResult | None:
    matches = [contact for contact in candidates if predicate(contact)]
    if not matches:
        return None
    if len(matches) > 1:
        return _ambiguous(matches, signal)
    return MatchResult(contact=matches[0], confidence=confidence, reason=reason, candidate_ids=[matches[0].id])


def _emails_conflict(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a != b


def _name_tier(record: NormalizedRecord, candidates: list[Contact], policy: MatchPolicy) -> MatchResult | None:
    if not record.name:
        return None

    qualifying: list[tuple[float, Contact, str]] = []
    for contact in candidates:
        if _emails_conflict(record.email, contact.email):
            continue
        score = name_fuzzy(record.name, contact.name, policy)
        if score >= policy.name_match_threshold:
            qualifying.append((score, contact, "Strong name similarity"))
        elif score >= policy.name_company_threshold:
            if company_fuzzy(record.company, contact.company) >= policy.company_match_threshold:
                qualifying.append((score, contact, "Name similarity + company match"))
    if not qualifying:
        return None

    best_score = max(score for score, _, _ in qualifying)
    best = [(contact, reason) for score, contact, reason in qualifying if score == best_score]
    if len(best) > 1:
        result = _ambiguous([contact for contact, _ in best], "name")
        return result.model_copy(update={"score": best_score})
    contact, reason = best[0]
    return MatchResult(
        contact=contact,
        confidence=MatchConfidence.MEDIUM,
        reason=reason,
        score=best_score,
        candidate_ids=[contact.id],
    )


def resolve(
    record: NormalizedRecord,
    candidate_pool: CandidateSource | Sequence[Contact],
    policy: MatchPolicy | None = None,
) -> MatchResult:
    policy = policy or default_match_policy()
    candidates = _load_candidates(record, candidate_pool)
    if not candidates:
        return MatchResult(reason="No candidates in contact store")

    if record.email:
        result = _single_tier(
            candidates,
            lambda contact: email_exact(record.email, contact.email),
            MatchConfidence.EXACT,
            "email",
            "Exact email match",
        )
        if result is not None:
            return result

        result = _single_tier(
            candidates,
            lambda contact: email_alias_equivalent(record.email, contact.email, policy),
            MatchConfidence.HIGH,
            "email alias",
            "Email alias match on allow-listed domain",
        )
        if result is not None:
            return result

    if record.phone:
        phone_matches = [contact for contact in candidates if phone_exact(record.phone, contact.phone, policy)]
        if len(phone_matches) > 1:
            return _ambiguous(phone_matches, "phone")
        if len(phone_matches) == 1:
            contact = phone_matches[0]
            if not contact.name:
                return MatchResult(
                    contact=contact,
                    confidence=MatchConfidence.HIGH,
                    reason="Phone match; existing contact has no name",
                    candidate_ids=[contact.id],
                )
            score = name_fuzzy(record.name, contact.name, policy)
            if score >= policy.phone_name_threshold:
                return MatchResult(
                    contact=contact,
                    confidence=MatchConfidence.HIGH,
                    reason="Phone match corroborated by name",
                    score=score,
                    candidate_ids=[contact.id],
                )
            logger.info(
                "phone_match_without_name_corroboration",
                extra={"contact_id": contact.id, "name_score": score},
            )

    result = _name_tier(record, candidates, policy)
    if result is not None:
        return result

    return MatchResult(reason="No match found")
