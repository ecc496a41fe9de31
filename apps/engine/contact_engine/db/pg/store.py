"""SQLAlchemy-backed contact store.

Implements the read path the resolver needs (candidate lookup), the write path
the merge needs (atomic contact + event upsert) and the event supply used by
attribution and enhancement jobs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from contact_engine.db.pg.models import ContactRecord, EventRecord
from contact_engine.db.pg.session import SessionLocal
from contact_engine.schemas import EVENT_ADAPTER, Contact, Event, NormalizedRecord
from contact_engine.services.ingest.normalize import email_domain, name_key
from contact_engine.services.matching.policy import MatchPolicy, default_match_policy
from contact_engine.services.matching.similarity import name_tokens
from contact_engine.services.resolution.tasks import open_review_task

logger = logging.getLogger(__name__)

UNKNOWN_PLATFORM = "unknown"
_EVENT_COLUMNS = frozenset({"id", "contact_id", "type", "timestamp", "source_platform", "source_id"})


class ContactStore(Protocol):
    def find_candidates(self, record: NormalizedRecord) -> list[Contact]: ...

    def get_contact(self, contact_id: str) -> Contact | None: ...

    def list_contact_ids(self) -> list[str]: ...

    def persist(self, contact: Contact, events: Iterable[Event] = ()) -> Contact: ...

    def link_event(self, event_id: str, contact_id: str) -> bool: ...

    def upsert_event(self, event: Event) -> tuple[Event, bool]: ...

    def events_for_contact(self, contact_id: str) -> list[Event]: ...

    def events_of_type(self, event_type: str) -> list[Event]: ...

    def save_events(self, events: Iterable[Event]) -> int: ...

    def open_review_task(
        self,
        contact_id: str | None,
        task_type: str,
        payload: Mapping[str, Any],
        dedupe_key: str,
    ) -> str: ...


def _last_name_key(name: str | None) -> str | None:
    tokens = name_tokens(name)
    return tokens[-1] if len(tokens) > 1 else None


def contact_to_row(contact: Contact, row: ContactRecord | None = None) -> ContactRecord:
    row = row or ContactRecord(id=contact.id)
    row.name = contact.name
    row.name_key = name_key(contact.name)
    row.last_name_key = _last_name_key(contact.name)
    row.email = contact.email
    row.email_domain = email_domain(contact.email)
    row.phone = contact.phone
    row.phone_display = contact.phone_display
    row.company = contact.company
    row.title = contact.title
    row.lead_sources_json = list(contact.lead_sources)
    row.sources_count = contact.sources_count
    row.notes = contact.notes
    row.created_at = contact.created_at
    row.last_activity_date = contact.last_activity_date
    row.assigned_owner = contact.assigned_owner
    return row


def row_to_contact(row: ContactRecord) -> Contact:
    return Contact(
        id=row.id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        phone_display=row.phone_display,
        company=row.company,
        title=row.title,
        lead_sources=list(row.lead_sources_json or []),
        notes=row.notes,
        created_at=row.created_at,
        last_activity_date=row.last_activity_date,
        assigned_owner=row.assigned_owner,
    )


def event_payload(event: Event) -> dict[str, Any]:
    return event.model_dump(mode="json", exclude=set(_EVENT_COLUMNS))


def row_to_event(row: EventRecord) -> Event:
    return EVENT_ADAPTER.validate_python(
        {
            **(row.payload_json or {}),
            "id": row.id,
            "contact_id": row.contact_id,
            "type": row.type,
            "timestamp": row.timestamp,
            "source_platform": row.source_platform,
            "source_id": row.source_id,
        }
    )


def _find_event_row(db: Session, event: Event) -> EventRecord | None:
    return db.scalar(
        select(EventRecord).where(
            EventRecord.source_platform == (event.source_platform or UNKNOWN_PLATFORM),
            EventRecord.source_id == event.source_id,
        )
    )


def _write_event(db: Session, event: Event) -> tuple[EventRecord, bool]:
    row = _find_event_row(db, event)
    created = row is None
    if row is None:
        row = EventRecord(
            id=event.id,
            source_platform=event.source_platform or UNKNOWN_PLATFORM,
            source_id=event.source_id,
        )
        db.add(row)
    row.type = event.type
    row.timestamp = event.timestamp
    row.payload_json = event_payload(event)
    if event.contact_id is not None:
        row.contact_id = event.contact_id
    return row, created


class SqlContactStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        match_policy: MatchPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._match_policy = match_policy

    @property
    def match_policy(self) -> MatchPolicy:
        return self._match_policy or default_match_policy()

    def _candidate_filters(self, record: NormalizedRecord) -> list[Any]:
        filters: list[Any] = []
        if record.email:
            filters.append(ContactRecord.email == record.email)
            domain = email_domain(record.email)
            policy = self.match_policy
            if domain and (domain in policy.alias_domains or domain in policy.dot_insensitive_domains):
                filters.append(ContactRecord.email_domain == domain)
        if record.phone:
            filters.append(ContactRecord.phone == record.phone)

        tokens = name_tokens(record.name)
        if tokens:
            first, last = tokens[0], tokens[-1]
            nicknames = self.match_policy.nicknames
            groups = nicknames.get(first, frozenset())
            variants = {first} | {name for name, canonicals in nicknames.items() if canonicals & groups}
            for variant in sorted(variants):
                filters.append(ContactRecord.name_key == variant)
                filters.append(ContactRecord.name_key.startswith(f"{variant} ", autoescape=True))
            # Covers initials and single-token names sharing the surname.
            filters.append(ContactRecord.last_name_key == last)
            filters.append(ContactRecord.name_key == last)
            filters.append(ContactRecord.name_key.startswith(f"{first[0]} ", autoescape=True))
        return filters

    def find_candidates(self, record: NormalizedRecord) -> list[Contact]:
        filters = self._candidate_filters(record)
        if not filters:
            return []
        with self._session_factory() as db:
            rows = db.scalars(select(ContactRecord).where(or_(*filters)).order_by(ContactRecord.id)).all()
            return [row_to_contact(row) for row in rows]

    def get_contact(self, contact_id: str) -> Contact | None:
        with self._session_factory() as db:
            row = db.get(ContactRecord, contact_id)
            return row_to_contact(row) if row is not None else None

    def list_contact_ids(self) -> list[str]:
        with self._session_factory() as db:
            return list(db.scalars(select(ContactRecord.id).order_by(ContactRecord.id)).all())

    def persist(self, contact: Contact, events: Iterable[Event] = ()) -> Contact:
        """Upsert the contact and its linked events in one transaction."""
        linked: dict[tuple[str, str], Event] = {}
        for event in events:
            if event.contact_id != contact.id:
                event = event.model_copy(update={"contact_id": contact.id})
            linked[event.event_key] = event
        with self._session_factory() as db:
            row = db.get(ContactRecord, contact.id)
            db.add(contact_to_row(contact, row))
            for event in linked.values():
                _write_event(db, event)
            db.commit()
        logger.debug("contact_persisted", extra={"contact_id": contact.id, "event_count": len(linked)})
        return contact

    def link_event(self, event_id: str, contact_id: str) -> bool:
        with self._session_factory() as db:
            row = db.get(EventRecord, event_id)
            if row is None:
                return False
            row.contact_id = contact_id
            db.commit()
            return True

    def upsert_event(self, event: Event) -> tuple[Event, bool]:
        with self._session_factory() as db:
            row, created = _write_event(db, event)
            db.commit()
            db.refresh(row)
            return row_to_event(row), created

    def events_for_contact(self, contact_id: str) -> list[Event]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(EventRecord)
                .where(EventRecord.contact_id == contact_id)
                .order_by(EventRecord.timestamp, EventRecord.source_id)
            ).all()
            return [row_to_event(row) for row in rows]

    def events_of_type(self, event_type: str) -> list[Event]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(EventRecord).where(EventRecord.type == event_type).order_by(EventRecord.timestamp, EventRecord.id)
            ).all()
            return [row_to_event(row) for row in rows]

    def save_events(self, events: Iterable[Event]) -> int:
        count = 0
        with self._session_factory() as db:
            for event in events:
                _write_event(db, event)
                count += 1
            db.commit()
        return count

    def open_review_task(
        self,
        contact_id: str | None,
        task_type: str,
        payload: Mapping[str, Any],
        dedupe_key: str,
    ) -> str:
        with self._session_factory() as db:
            task = open_review_task(
                db,
                contact_id=contact_id,
                task_type=task_type,
                dedupe_key=dedupe_key,
                payload_json=dict(payload),
            )
            return task.task_id
