from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from contact_engine.core.errors import ValidationError
from contact_engine.schemas import Activity, RawRecord
from contact_engine.services.ingest.normalize import (
    company_from_email,
    normalize,
    normalize_email,
    normalize_phone,
)


def test_email_is_trimmed_and_lowercased() -> None:
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_phone_keeps_digits_and_drops_north_american_prefix() -> None:
    assert normalize_phone("555-0100") == "5550100"
    assert normalize_phone("+1 (415) 555-0100") == "4155550100"
    assert normalize_phone("+44 20 7946 0958") == "442079460958"
    assert normalize_phone("ext.") is None


def test_company_is_derived_from_business_domain_only() -> None:
    assert company_from_email("ann@acme-widgets.co", frozenset()) == "Acme Widgets"
    assert company_from_email("ann@gmail.com", frozenset({"gmail.com"})) is None


def test_normalize_record_fields() -> None:
    record = normalize(
        {
            "source_platform": " Calendly ",
            "name": "  Jane   Doe ",
            "email": "JANE@Acme.io",
            "phone": "(555) 010-0999",
        }
    )

    assert record.source_platform == "calendly"
    assert record.name == "Jane Doe"
    assert record.name_key == "jane doe"
    assert record.email == "jane@acme.io"
    assert record.phone == "5550100999"
    assert record.phone_display == "(555) 010-0999"
    assert record.company == "Acme"
    assert record.company_inferred is True


def test_explicit_company_is_not_marked_inferred() -> None:
    record = normalize(RawRecord(source_platform="close", email="a@acme.io", company=" Acme Corp "))
    assert record.company == "Acme Corp"
    assert record.company_inferred is False


def test_free_mail_domain_yields_no_company() -> None:
    record = normalize({"source_platform": "typeform", "email": "someone@gmail.com"})
    assert record.company is None


def test_timestamps_default_from_events_and_events_get_platform() -> None:
    t1 = datetime(2026, 3, 1, 12, 0)
    t2 = t1 + timedelta(days=4)
    raw = RawRecord(
        source_platform="close",
        email="x@acme.io",
        events=[
            Activity(timestamp=t2, source_id="act-2"),
            Activity(timestamp=t1, source_id="act-1", source_platform="calendly"),
        ],
    )

    record = normalize(raw)

    assert record.created_at == t1.replace(tzinfo=timezone.utc)
    assert record.last_activity_at == t2.replace(tzinfo=timezone.utc)
    assert [event.source_platform for event in record.events] == ["close", "calendly"]


def test_record_without_identity_fields_is_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize({"source_platform": "close", "company": "Acme"})
    assert excinfo.value.field == "email"


def test_unparseable_record_reports_field() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize({"email": "a@b.com"})
    assert excinfo.value.field == "source_platform"
    assert isinstance(excinfo.value, ValueError)
