"""Scan checkpoint writes: atomic timestamp stamps and the pending-batch list.

Timestamps and the interval are written with a single dialect upsert keyed
by ``chat_id`` (last writer wins). The pending list is a read-modify-write,
so it goes through an optimistic ``version`` check instead.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import settings
from database import upsert_insert
from models.checkpoint import ScanCheckpoint

logger = logging.getLogger(__name__)

MAX_VERSION_RETRIES = 5


class CheckpointConflictError(RuntimeError):
    """The pending list kept changing underneath us."""


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _insert_defaults(chat_id: str) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "chat_id": chat_id,
        "scan_interval_minutes": settings.ACTIVE_INTERVAL_MINUTES,
        "pending_batch_ids": [],
        "version": 0,
    }


def get_or_create_checkpoint(db: Session, chat_id: str) -> ScanCheckpoint:
    table = ScanCheckpoint.__table__
    stmt = upsert_insert(db, table).values(**_insert_defaults(chat_id))
    db.execute(stmt.on_conflict_do_nothing(index_elements=[table.c.chat_id]))
    db.commit()
    return db.execute(
        select(ScanCheckpoint)
        .where(ScanCheckpoint.chat_id == chat_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def _stamp(db: Session, chat_id: str, **fields) -> None:
    table = ScanCheckpoint.__table__
    now = _utcnow()
    stmt = upsert_insert(db, table).values(**{**_insert_defaults(chat_id), **fields, "updated_at": now})
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.chat_id],
        set_={**fields, "updated_at": now},
    )
    db.execute(stmt)
    db.commit()


def mark_scanned(db: Session, chat_id: str, at: datetime | None = None) -> None:
    """Stamp the last Tier-1 pass."""
    _stamp(db, chat_id, last_scanned_at=at or _utcnow())


def mark_smart_scanned(db: Session, chat_id: str, at: datetime | None = None) -> None:
    """Stamp the last Tier-2 pass."""
    _stamp(db, chat_id, last_smart_at=at or _utcnow())


def mark_activity(db: Session, chat_id: str, at: datetime | None = None) -> None:
    _stamp(db, chat_id, last_activity_at=at or _utcnow())


def set_interval(db: Session, chat_id: str, minutes: int) -> None:
    _stamp(db, chat_id, scan_interval_minutes=int(minutes))


def _rewrite_pending(db: Session, chat_id: str, mutate) -> list[str]:
    get_or_create_checkpoint(db, chat_id)
    for attempt in range(1, MAX_VERSION_RETRIES + 1):
        version, pending = db.execute(
            select(ScanCheckpoint.version, ScanCheckpoint.pending_batch_ids)
            .where(ScanCheckpoint.chat_id == chat_id)
        ).one()
        new_pending = mutate(list(pending or []))
        result = db.execute(
            update(ScanCheckpoint)
            .where(ScanCheckpoint.chat_id == chat_id, ScanCheckpoint.version == version)
            .values(pending_batch_ids=new_pending, version=version + 1, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            return new_pending
        logger.debug("Pending list for chat %s changed concurrently (attempt %d)", chat_id, attempt)
    raise CheckpointConflictError(
        f"Could not update pending list for chat {chat_id} after {MAX_VERSION_RETRIES} attempts"
    )


def append_pending(db: Session, chat_id: str, message_ids: list[str]) -> list[str]:
    """Add message ids to the chat's pending batch, keeping order and skipping duplicates."""
    def _append(current: list[str]) -> list[str]:
        return current + [mid for mid in message_ids if mid not in current]

    return _rewrite_pending(db, chat_id, _append)


def consume_pending(db: Session, chat_id: str, message_ids: list[str]) -> list[str]:
    """Remove exactly *message_ids*; ids appended since they were read survive."""
    consumed = set(message_ids)
    return _rewrite_pending(db, chat_id, lambda current: [mid for mid in current if mid not in consumed])
