from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field, field_validator


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if isinstance(value, datetime) else value


DealStatus = Literal["open", "won", "lost", "pending"]


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    contact_id: str | None = None
    timestamp: datetime
    source_platform: str | None = None
    source_id: str

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def event_key(self) -> tuple[str, str]:
        return (self.source_platform or "", self.source_id)


class Activity(_EventBase):
    type: Literal["activity"] = "activity"
    activity_type: str | None = None
    subject: str | None = None
    description: str | None = None


class Meeting(_EventBase):
    type: Literal["meeting"] = "meeting"
    title: str | None = None
    status: str = "scheduled"
    end_time: datetime | None = None
    meeting_type: str | None = None
    sequence_number: int | None = None

    @field_validator("end_time")
    @classmethod
    def end_time_to_utc(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)


class FormSubmission(_EventBase):
    type: Literal["form_submission"] = "form_submission"
    form_name: str | None = None
    answers: dict[str, Any] = Field(default_factory=dict)


class Deal(_EventBase):
    type: Literal["deal"] = "deal"
    title: str | None = None
    value: Decimal | None = None
    cash_collected: Decimal | None = None
    status: DealStatus = "open"

    @field_validator("status", mode="before")
    @classmethod
    def lowercase_status(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


Event = Annotated[Union[Activity, Meeting, FormSubmission, Deal], Field(discriminator="type")]
EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


class RawRecord(BaseModel):
    source_platform: str
    source_id: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    title: str | None = None
    notes: str | None = None
    assigned_owner: str | None = None
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    events: list[Event] = Field(default_factory=list)


class NormalizedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_platform: str
    source_id: str | None = None
    name: str | None = None
    name_key: str | None = None
    email: str | None = None
    phone: str | None = None
    phone_display: str | None = None
    company: str | None = None
    company_inferred: bool = False
    title: str | None = None
    notes: str | None = None
    assigned_owner: str | None = None
    created_at: datetime | None = None
    last_activity_at: datetime | None = None
    events: list[Event] = Field(default_factory=list)


class Contact(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    phone_display: str | None = None
    company: str | None = None
    title: str | None = None
    lead_sources: list[str] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime | None = None
    last_activity_date: datetime | None = None
    assigned_owner: str | None = None

    @field_validator("lead_sources")
    @classmethod
    def dedupe_sources(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(source for source in value if source))

    @field_validator("created_at", "last_activity_date")
    @classmethod
    def dates_to_utc(cls, value: datetime | None) -> datetime | None:
        return _utc_or_none(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def sources_count(self) -> int:
        return len(self.lead_sources)


class MatchConfidence(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXACT = "exact"

    @property
    def permits_merge(self) -> bool:
        return self in {MatchConfidence.EXACT, MatchConfidence.HIGH, MatchConfidence.MEDIUM}


class MatchResult(BaseModel):
    contact: Contact | None = None
    confidence: MatchConfidence = MatchConfidence.NONE
    reason: str = "No match found"
    score: float | None = None
    candidate_ids: list[str] = Field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.confidence == MatchConfidence.LOW


class AttributionModel(str, Enum):
    LAST_TOUCH = "last-touch"
    MULTI_TOUCH = "multi-touch"


class AttributionChain(BaseModel):
    contact_id: str
    deal: Deal
    model: AttributionModel
    touchpoints: list[Event] = Field(default_factory=list)
    primary_touchpoint: Event | None = None
    first_touch: Event | None = None
    last_touch: Event | None = None
    last_meeting: Meeting | None = None
    last_form: FormSubmission | None = None
    last_activity: Activity | None = None
    days_to_conversion: int | None = None
    channel_counts: dict[str, int] = Field(default_factory=dict)
    computed_at: datetime

    @property
    def total_touchpoints(self) -> int:
        return len(self.touchpoints)
