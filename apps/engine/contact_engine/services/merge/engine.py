from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache

from contact_engine.core.config import Settings, get_settings
from contact_engine.core.errors import MergeConflictWarning, MergeNotPermittedError
from contact_engine.schemas import Contact, Event, MatchConfidence, NormalizedRecord

logger = logging.getLogger(__name__)

SCALAR_FIELDS = ("name", "email", "phone", "company", "title")
# An authoritative source may overwrite these; email is an identity key and never is.
_AUTHORITY_ELIGIBLE = frozenset({"name", "phone", "company", "title"})
_CONFLICT_FIELDS = frozenset({"email", "phone"})


def parse_authoritative_sources(value: str | None) -> dict[str, frozenset[str]]:
    table: dict[str, set[str]] = {}
    for pair in (value or "").split(","):
        field_name, sep, platform = pair.partition(":")
        field_name = field_name.strip().lower()
        platform = platform.strip().lower()
        if not sep or not field_name or not platform:
            continue
        table.setdefault(field_name, set()).add(platform)
    return {field_name: frozenset(platforms) for field_name, platforms in table.items()}


@dataclass(frozen=True)
class MergePolicy:
    authoritative_sources: Mapping[str, frozenset[str]] = field(default_factory=dict)
    notes_separator: str = "\n\n"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MergePolicy:
        settings = settings or get_settings()
        return cls(
            authoritative_sources=parse_authoritative_sources(settings.authoritative_sources),
            notes_separator=settings.notes_separator,
        )

    def is_authoritative(self, field_name: str, platform: str) -> bool:
        if field_name not in _AUTHORITY_ELIGIBLE:
            return False
        return platform in self.authoritative_sources.get(field_name, frozenset())


@lru_cache(maxsize=1)
def default_merge_policy() -> MergePolicy:
    return MergePolicy.from_settings()


@dataclass
class MergeOutcome:
    contact: Contact
    conflicts: list[MergeConflictWarning] = field(default_factory=list)
    changed_fields: list[str] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return bool(self.conflicts)


def _earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return min(a, b)


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None or b is None:
        return a or b
    return max(a, b)


def note_entry(record: NormalizedRecord) -> str | None:
    if not record.notes:
        return None
    stamp = record.last_activity_at or record.created_at
    prefix = f"[{record.source_platform} {stamp.isoformat()}]" if stamp else f"[{record.source_platform}]"
    return f"{prefix} {record.notes}"


def _append_note(existing: str | None, entry: str | None, separator: str) -> str | None:
    if not entry:
        return existing
    if not existing:
        return entry
    # Entries may contain the separator themselves, so match on entry boundaries.
    if (
        existing == entry
        or existing.startswith(entry + separator)
        or existing.endswith(separator + entry)
        or f"{separator}{entry}{separator}" in existing
    ):
        return existing
    return f"{existing}{separator}{entry}"


def link_events(events: list[Event], contact_id: str) -> list[Event]:
    return [event if event.contact_id == contact_id else event.model_copy(update={"contact_id": contact_id}) for event in events]


def contact_from_record(record: NormalizedRecord) -> Contact:
    contact = Contact(
        name=record.name,
        email=record.email,
        phone=record.phone,
        phone_display=record.phone_display,
        company=record.company,
        title=record.title,
        lead_sources=[record.source_platform],
        notes=note_entry(record),
        created_at=record.created_at or record.last_activity_at,
        last_activity_date=record.last_activity_at,
        assigned_owner=record.assigned_owner,
    )
    return contact


def merge(
    existing: Contact,
    incoming: NormalizedRecord,
    confidence: MatchConfidence,
    policy: MergePolicy | None = None,
) -> MergeOutcome:
    if not confidence.permits_merge:
        raise MergeNotPermittedError(f"merge is not permitted at {confidence.value} confidence")
    policy = policy or default_merge_policy()

    updates: dict[str, object] = {}
    conflicts: list[MergeConflictWarning] = []

    for field_name in SCALAR_FIELDS:
        current = getattr(existing, field_name)
        candidate = getattr(incoming, field_name)
        if not candidate or candidate == current:
            continue
        if not current:
            updates[field_name] = candidate
            continue
        if policy.is_authoritative(field_name, incoming.source_platform):
            updates[field_name] = candidate
            continue
        if field_name in _CONFLICT_FIELDS:
            warning = MergeConflictWarning(field_name, current, candidate, existing.id)
            conflicts.append(warning)
            logger.warning(
                f"merge_conflict_{field_name}",
                extra={**warning.as_dict(), "source_platform": incoming.source_platform},
            )

    if "phone" in updates:
        updates["phone_display"] = incoming.phone_display

    lead_sources = list(existing.lead_sources)
    if incoming.source_platform not in lead_sources:
        lead_sources.append(incoming.source_platform)
        updates["lead_sources"] = lead_sources

    notes = _append_note(existing.notes, note_entry(incoming), policy.notes_separator)
    if notes != existing.notes:
        updates["notes"] = notes

    created_at = _earliest(existing.created_at, incoming.created_at)
    if created_at != existing.created_at:
        updates["created_at"] = created_at

    last_activity = _latest(existing.last_activity_date, incoming.last_activity_at)
    if last_activity != existing.last_activity_date:
        updates["last_activity_date"] = last_activity

    if existing.assigned_owner is None and incoming.assigned_owner:
        updates["assigned_owner"] = incoming.assigned_owner

    merged = existing.model_copy(update=updates, deep=True) if updates else existing.model_copy(deep=True)
    changed_fields = sorted(updates)
    if changed_fields:
        logger.info(
            "contact_merged",
            extra={
                "contact_id": existing.id,
                "confidence": confidence.value,
                "source_platform": incoming.source_platform,
                "changed_fields": changed_fields,
            },
        )
    return MergeOutcome(
        contact=merged,
        conflicts=conflicts,
        changed_fields=changed_fields,
        events=link_events(list(incoming.events), existing.id),
    )
