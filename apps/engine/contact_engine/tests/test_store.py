from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select

from contact_engine.db.pg.base import Base
from contact_engine.db.pg.models import EventRecord, ResolutionTask
from contact_engine.db.pg.session import SessionLocal, engine
from contact_engine.db.pg.store import SqlContactStore
from contact_engine.schemas import Activity, Contact, Deal, Meeting
from contact_engine.services.ingest.normalize import normalize
from contact_engine.services.matching import MatchPolicy, nickname_index
from contact_engine.services.resolution.tasks import IDENTITY_REVIEW

T0 = datetime(2026, 4, 1, 10, 0, tzinfo=timezone.utc)


def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _store() -> SqlContactStore:
    return SqlContactStore(match_policy=MatchPolicy(nicknames=nickname_index()))


def _event_rows() -> int:
    db = SessionLocal()
    try:
        return db.scalar(select(func.count()).select_from(EventRecord))
    finally:
        db.close()


def test_persist_round_trips_contact_and_events() -> None:
    reset_db()
    store = _store()
    contact = Contact(
        name="Jane Doe",
        email="jane@acme.io",
        phone="5550100",
        phone_display="555-0100",
        lead_sources=["close", "calendly"],
        created_at=T0,
    )
    deal = Deal(timestamp=T0 + timedelta(days=3), source_platform="close", source_id="d-1", value=Decimal("2500.50"), status="won")
    meeting = Meeting(timestamp=T0 + timedelta(days=1), source_platform="calendly", source_id="m-1", title="Intro")

    store.persist(contact, [deal, meeting])

    loaded = store.get_contact(contact.id)
    assert loaded is not None
    assert loaded.email == "jane@acme.io"
    assert loaded.lead_sources == ["close", "calendly"]
    assert loaded.sources_count == 2
    assert loaded.created_at == T0

    events = store.events_for_contact(contact.id)
    assert [event.source_id for event in events] == ["m-1", "d-1"]
    assert isinstance(events[1], Deal)
    assert events[1].value == Decimal("2500.50")
    assert all(event.contact_id == contact.id for event in events)


def test_upsert_event_is_idempotent_on_platform_and_source_id() -> None:
    reset_db()
    store = _store()
    first = Activity(timestamp=T0, source_platform="close", source_id="act-1", subject="Call")
    replay = Activity(timestamp=T0, source_platform="close", source_id="act-1", subject="Call (edited)")

    stored, created = store.upsert_event(first)
    replayed, created_again = store.upsert_event(replay)

    assert created is True
    assert created_again is False
    assert replayed.id == stored.id
    assert isinstance(replayed, Activity)
    assert replayed.subject == "Call (edited)"
    assert _event_rows() == 1


def test_link_event_sets_contact() -> None:
    reset_db()
    store = _store()
    stored, _ = store.upsert_event(Activity(timestamp=T0, source_platform="close", source_id="act-7"))

    assert store.link_event(stored.id, "contact-9") is True
    assert store.link_event("missing", "contact-9") is False
    assert [event.id for event in store.events_for_contact("contact-9")] == [stored.id]


def test_find_candidates_covers_email_phone_and_name_variants() -> None:
    reset_db()
    store = _store()
    by_email = Contact(name="Ann Lee", email="ann@acme.io")
    by_phone = Contact(name="Raj Patel", phone="5550100")
    by_nickname = Contact(name="William Carter")
    by_surname = Contact(name="Mary Carter")
    unrelated = Contact(name="Zed Zulu", email="zed@zulu.io")
    for contact in (by_email, by_phone, by_nickname, by_surname, unrelated):
        store.persist(contact)

    record = normalize(
        {"source_platform": "typeform", "name": "Bill Carter", "email": "ann@acme.io", "phone": "555-0100"}
    )
    candidate_ids = {contact.id for contact in store.find_candidates(record)}

    assert candidate_ids == {by_email.id, by_phone.id, by_nickname.id, by_surname.id}


def test_open_review_task_reuses_open_task() -> None:
    reset_db()
    store = _store()

    first = store.open_review_task("c-1", IDENTITY_REVIEW, {"reason": "ambiguous"}, "typeform:resp-1")
    second = store.open_review_task("c-2", IDENTITY_REVIEW, {"reason": "ambiguous"}, "typeform:resp-1")

    assert first == second
    db = SessionLocal()
    try:
        tasks = db.scalars(select(ResolutionTask)).all()
        assert len(tasks) == 1
        assert tasks[0].status == "open"
        assert tasks[0].contact_id == "c-1"
    finally:
        db.close()


def test_events_of_type_and_save_events() -> None:
    reset_db()
    store = _store()
    meeting = Meeting(contact_id="c-1", timestamp=T0, source_platform="calendly", source_id="m-1")
    store.persist(Contact(id="c-1", email="c1@acme.io"), [meeting])

    stored = store.events_of_type("meeting")
    assert [event.source_id for event in stored] == ["m-1"]

    updated = stored[0].model_copy(update={"sequence_number": 1, "meeting_type": "Initial Consultation"})
    assert store.save_events([updated]) == 1

    reloaded = store.events_of_type("meeting")[0]
    assert isinstance(reloaded, Meeting)
    assert reloaded.meeting_type == "Initial Consultation"
    assert store.events_of_type("deal") == []
