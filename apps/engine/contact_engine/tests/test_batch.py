from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from contact_engine.schemas import Contact, Deal, Event, Meeting, NormalizedRecord
from contact_engine.services.ingest.pipeline import ingest_record
from contact_engine.services.matching import MatchPolicy, nickname_index
from contact_engine.services.merge.engine import MergePolicy
from contact_engine.workers.batch import BatchAccumulator, KeyedLocks, run_batch
from contact_engine.workers.jobs import attribute_all_contacts, enhance_all_events, ingest_batch

T0 = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """Thread-safe stand-in for the SQL store.

    ``find_candidates`` sleeps briefly so unsynchronized read-modify-write
    races would surface as duplicate contacts.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.contacts: dict[str, Contact] = {}
        self.events: dict[tuple[str, str], Event] = {}
        self.tasks: dict[tuple[str, str], str] = {}

    def find_candidates(self, record: NormalizedRecord) -> list[Contact]:
        with self._lock:
            snapshot = list(self.contacts.values())
        time.sleep(0.002)
        return snapshot

    def get_contact(self, contact_id: str) -> Contact | None:
        with self._lock:
            return self.contacts.get(contact_id)

    def list_contact_ids(self) -> list[str]:
        with self._lock:
            return sorted(self.contacts)

    def persist(self, contact: Contact, events: Iterable[Event] = ()) -> Contact:
        with self._lock:
            self.contacts[contact.id] = contact
            for event in events:
                self.events[event.event_key] = event.model_copy(update={"contact_id": contact.id})
        return contact

    def link_event(self, event_id: str, contact_id: str) -> bool:
        with self._lock:
            for key, event in self.events.items():
                if event.id == event_id:
                    self.events[key] = event.model_copy(update={"contact_id": contact_id})
                    return True
        return False

    def upsert_event(self, event: Event) -> tuple[Event, bool]:
        with self._lock:
            created = event.event_key not in self.events
            self.events[event.event_key] = event
        return event, created

    def events_for_contact(self, contact_id: str) -> list[Event]:
        with self._lock:
            return sorted(
                (event for event in self.events.values() if event.contact_id == contact_id),
                key=lambda event: event.timestamp,
            )

    def events_of_type(self, event_type: str) -> list[Event]:
        with self._lock:
            return [event for event in self.events.values() if event.type == event_type]

    def save_events(self, events: Iterable[Event]) -> int:
        count = 0
        with self._lock:
            for event in events:
                self.events[event.event_key] = event
                count += 1
        return count

    def open_review_task(self, contact_id: str | None, task_type: str, payload: Mapping[str, Any], dedupe_key: str) -> str:
        with self._lock:
            return self.tasks.setdefault((task_type, dedupe_key), f"task-{len(self.tasks) + 1}")


def _policies() -> dict[str, Any]:
    return {"match_policy": MatchPolicy(nicknames=nickname_index()), "merge_policy": MergePolicy()}


def test_accumulator_report_is_a_snapshot() -> None:
    accumulator = BatchAccumulator("job")
    accumulator.record_success(created=1)
    report = accumulator.report()
    accumulator.record_failure("item-2", "boom")

    assert report.processed == 1
    assert report.counters == {"created": 1}
    assert accumulator.report().failed == 1


def test_keyed_locks_release_unused_keys() -> None:
    locks = KeyedLocks()
    with locks.hold("email:a", "phone:1", "email:a"):
        assert locks.active_keys() == 2
    assert locks.active_keys() == 0


def test_keyed_locks_serialize_same_key() -> None:
    locks = KeyedLocks()
    active = 0
    peak = 0
    guard = threading.Lock()

    def _work(_: int) -> None:
        nonlocal active, peak
        with locks.hold("contact:1"):
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.002)
            with guard:
                active -= 1

    report = run_batch("serialize", range(16), _work, max_workers=8)

    assert report.succeeded == 16
    assert peak == 1


def test_failing_item_does_not_abort_batch() -> None:
    def _work(item: int) -> dict[str, int]:
        if item == 3:
            raise RuntimeError("bad item")
        return {"doubled": item * 2}

    report = run_batch("isolation", range(6), _work, max_workers=4)

    assert report.processed == 6
    assert report.succeeded == 5
    assert [(error.item_id, error.message) for error in report.errors] == [("3", "bad item")]
    assert report.counters == {"doubled": 24}


def test_concurrent_ingest_of_same_email_creates_one_contact() -> None:
    store = InMemoryStore()
    records = [
        {"source_platform": platform, "source_id": f"{platform}-{index}", "email": "Same@Acme.io"}
        for index in range(10)
        for platform in ("close", "calendly", "typeform")
    ]

    report = ingest_batch(store, records, max_workers=8, **_policies())

    assert report.failed == 0
    assert report.processed == 30
    assert len(store.contacts) == 1
    contact = next(iter(store.contacts.values()))
    assert sorted(contact.lead_sources) == ["calendly", "close", "typeform"]
    assert report.counters["created"] == 1
    assert report.counters["merged"] == 29


def test_ingest_batch_records_invalid_records() -> None:
    store = InMemoryStore()
    records = [
        {"source_platform": "close", "source_id": "ok-1", "email": "a@acme.io"},
        {"source_platform": "close", "source_id": "bad-1", "company": "Nameless Inc"},
    ]

    report = ingest_batch(store, records, max_workers=2, **_policies())

    assert report.succeeded == 1
    assert [error.item_id for error in report.errors] == ["close:bad-1"]
    assert len(store.contacts) == 1


def test_attribute_all_contacts_collects_results() -> None:
    store = InMemoryStore()
    with_deal = Contact(email="deal@acme.io", lead_sources=["calendly"])
    without_deal = Contact(email="none@acme.io", lead_sources=["typeform"])
    store.persist(
        with_deal,
        [
            Meeting(timestamp=T0, source_platform="calendly", source_id="m-1"),
            Deal(timestamp=T0 + timedelta(days=5), source_platform="close", source_id="d-1", status="won"),
        ],
    )
    store.persist(without_deal)

    run = attribute_all_contacts(store, now=T0 + timedelta(days=30), max_workers=2)

    assert run.report.processed == 2
    assert run.report.counters["attributed"] == 1
    assert run.report.counters["last_touch"] == 1
    assert run.results[with_deal.id].chains[0].days_to_conversion == 5
    assert run.results[without_deal.id].chains == []


def test_attribute_all_contacts_reports_missing_contact() -> None:
    store = InMemoryStore()

    run = attribute_all_contacts(store, contact_ids=["ghost"], max_workers=1)

    assert run.report.failed == 1
    assert run.report.errors[0].item_id == "ghost"


@pytest.mark.parametrize("workers", [1, 4])
def test_enhance_all_events(workers: int) -> None:
    store = InMemoryStore()
    contact = Contact(email="m@acme.io")
    store.persist(
        contact,
        [
            Meeting(timestamp=T0 + timedelta(days=2), source_platform="calendly", source_id="m-2"),
            Meeting(timestamp=T0, source_platform="calendly", source_id="m-1"),
            Deal(timestamp=T0 + timedelta(days=3), source_platform="close", source_id="d-1", status="won", value=Decimal("800")),
        ],
    )

    report = enhance_all_events(store, max_workers=workers)

    assert report.counters["deals_backfilled"] == 1
    assert report.counters["meetings_classified"] == 2
    meetings = {event.source_id: event for event in store.events_of_type("meeting")}
    assert meetings["m-1"].meeting_type == "Initial Consultation"
    assert meetings["m-2"].sequence_number == 2
    deal = store.events_of_type("deal")[0]
    assert deal.cash_collected == Decimal("800")


def test_fresh_locks_serialize_ingest_of_same_person() -> None:
    store = InMemoryStore()
    locks = KeyedLocks()
    policies = _policies()
    records = [
        {"source_platform": platform, "source_id": f"{platform}-{index}", "email": "pair@acme.io"}
        for index in range(2)
        for platform in ("close", "calendly")
    ]

    assert locks.active_keys() == 0
    report = run_batch(
        "pair",
        records,
        lambda raw: {"created": int(ingest_record(store, raw, locks=locks, **policies).created)},
        max_workers=4,
    )

    assert report.succeeded == 4
    assert report.counters["created"] == 1
    assert len(store.contacts) == 1
