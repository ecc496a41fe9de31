from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from contact_engine.db.pg.models import ResolutionTask

IDENTITY_REVIEW = "identity_review"
MERGE_CONFLICT = "merge_conflict"
TASK_TYPES = frozenset({IDENTITY_REVIEW, MERGE_CONFLICT})


def find_open_task(db: Session, *, task_type: str, dedupe_key: str) -> ResolutionTask | None:
    return db.scalar(
        select(ResolutionTask).where(
            ResolutionTask.task_type == task_type,
            ResolutionTask.status == "open",
            ResolutionTask.dedupe_key == dedupe_key,
        )
    )


def create_resolution_task(
    db: Session,
    *,
    contact_id: str | None,
    task_type: str,
    dedupe_key: str,
    payload_json: dict,
) -> ResolutionTask:
    if task_type not in TASK_TYPES:
        raise ValueError(f"unknown resolution task type: {task_type}")
    task = ResolutionTask(
        contact_id=contact_id,
        task_type=task_type,
        dedupe_key=dedupe_key,
        payload_json=payload_json,
        status="open",
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def open_review_task(
    db: Session,
    *,
    contact_id: str | None,
    task_type: str,
    dedupe_key: str,
    payload_json: dict | None = None,
) -> ResolutionTask:
    """Return the open task for this key, creating it on first sight."""
    dedupe_key = dedupe_key.strip().lower()
    if not dedupe_key:
        raise ValueError("dedupe_key is required for review tasks")

    existing = find_open_task(db, task_type=task_type, dedupe_key=dedupe_key)
    if existing is not None:
        return existing
    return create_resolution_task(
        db,
        contact_id=contact_id,
        task_type=task_type,
        dedupe_key=dedupe_key,
        payload_json=dict(payload_json or {}),
    )
