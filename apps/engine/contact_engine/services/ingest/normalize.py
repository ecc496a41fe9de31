from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from contact_engine.core.config import get_settings, split_csv
from contact_engine.core.errors import ValidationError
from contact_engine.schemas import NormalizedRecord, RawRecord, as_utc

_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D+")


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned or None


def normalize_email(value: str | None) -> str | None:
    cleaned = (value or "").strip().lower()
    return cleaned or None


def normalize_phone(value: str | None) -> str | None:
    digits = _NON_DIGIT_RE.sub("", value or "")
    if not digits:
        return None
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def normalize_name(value: str | None) -> str | None:
    return _clean_text(value)


def name_key(value: str | None) -> str | None:
    cleaned = _clean_text(value)
    return cleaned.casefold() if cleaned else None


def email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[-1].strip().lower()
    return domain or None


def company_from_email(email: str | None, free_mail_domains: frozenset[str] | None = None) -> str | None:
    domain = email_domain(email)
    if domain is None:
        return None
    if free_mail_domains is None:
        free_mail_domains = split_csv(get_settings().free_mail_domains)
    if domain in free_mail_domains:
        return None
    labels = [label for label in domain.split(".") if label]
    if len(labels) < 2:
        return None
    words = re.split(r"[-_]+", labels[-2])
    company = " ".join(word.capitalize() for word in words if word)
    return company or None


def _parse_raw(raw: RawRecord | Mapping[str, Any]) -> RawRecord:
    if isinstance(raw, RawRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("record", f"expected a mapping, got {type(raw).__name__}")
    try:
        return RawRecord.model_validate(raw)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "record"
        raise ValidationError(field, first.get("msg", "invalid value")) from exc


def normalize(raw: RawRecord | Mapping[str, Any], *, free_mail_domains: frozenset[str] | None = None) -> NormalizedRecord:
    record = _parse_raw(raw)

    email = normalize_email(record.email)
    phone = normalize_phone(record.phone)
    name = normalize_name(record.name)
    if not (email or phone or name):
        raise ValidationError("email", "record carries no email, phone or name")

    company = _clean_text(record.company)
    company_inferred = False
    if company is None:
        company = company_from_email(email, free_mail_domains)
        company_inferred = company is not None

    platform = record.source_platform.strip().lower()
    if not platform:
        raise ValidationError("source_platform", "platform tag is required")
    events = [
        event if event.source_platform else event.model_copy(update={"source_platform": platform})
        for event in record.events
    ]
    timestamps = sorted(event.timestamp for event in events)
    created_at = as_utc(record.created_at) if record.created_at else (timestamps[0] if timestamps else None)
    if record.last_activity_at:
        last_activity_at = as_utc(record.last_activity_at)
    else:
        last_activity_at = timestamps[-1] if timestamps else None

    phone_display = None
    if phone:
        phone_display = (record.phone or "").strip()

    return NormalizedRecord(
        source_platform=platform,
        source_id=_clean_text(record.source_id),
        name=name,
        name_key=name_key(name),
        email=email,
        phone=phone,
        phone_display=phone_display,
        company=company,
        company_inferred=company_inferred,
        title=_clean_text(record.title),
        notes=(record.notes or "").strip() or None,
        assigned_owner=_clean_text(record.assigned_owner),
        created_at=created_at,
        last_activity_at=last_activity_at,
        events=events,
    )
