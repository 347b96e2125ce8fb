"""Batch scan: drain each chat's pending list through Tier-1."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import SessionLocal
from logging_config import log_context
from models.chat import Chat, Message
from models.checkpoint import ScanCheckpoint
from models.subject import Subject
from services.checkpoints import consume_pending
from services.escalation import scan_messages
from services.small_agent import ANALYSED_STATUSES

logger = logging.getLogger(__name__)


def process_pending_chat(db: Session, chat_id: str) -> dict:
    """Scan the ids pending for *chat_id* and remove exactly those that were handled.

    Ids appended while the scan runs stay queued. On a provider failure every
    id stays queued for the next run; ids whose message is gone are dropped.
    """
    pending = db.execute(
        select(ScanCheckpoint.pending_batch_ids).where(ScanCheckpoint.chat_id == chat_id)
    ).scalar_one_or_none() or []
    if not pending:
        return {"chat_id": chat_id, "processed": 0}

    chat = db.get(Chat, chat_id)
    subject = db.get(Subject, chat.subject_id) if chat is not None else None
    if subject is None or not subject.monitoring_enabled:
        return {"chat_id": chat_id, "processed": 0, "skipped": True}

    with log_context(subject_id=subject.id, chat_id=chat_id):
        messages = list(db.execute(
            select(Message).where(Message.id.in_(pending)).order_by(Message.sent_at)
        ).scalars().all())
        found = {m.id for m in messages}
        missing = [mid for mid in pending if mid not in found]
        if missing:
            logger.warning("Dropping %d pending ids with no stored message", len(missing))

        if not messages:
            consume_pending(db, chat_id, missing)
            return {"chat_id": chat_id, "processed": 0, "dropped": len(missing)}

        outcome = scan_messages(db, subject, chat, messages, requeue=False)
        status = outcome["small"]["status"]
        if status in ANALYSED_STATUSES:
            consume_pending(db, chat_id, pending)
            processed = len(messages)
        else:
            if missing:
                consume_pending(db, chat_id, missing)
            logger.warning("Batch Tier-1 %s, keeping %d messages pending", status, len(messages))
            processed = 0
        return {
            "chat_id": chat_id,
            "processed": processed,
            "dropped": len(missing),
            "status": status,
            "escalated": outcome["smart"] is not None,
        }


def run_batch_scan() -> dict:
    """One pass over every chat with a non-empty pending list."""
    db = SessionLocal()
    try:
        rows = db.execute(
            select(ScanCheckpoint.chat_id, ScanCheckpoint.pending_batch_ids)
        ).all()
    finally:
        db.close()
    chat_ids = [chat_id for chat_id, pending in rows if pending]

    results = []
    failed = 0
    for chat_id in chat_ids:
        db = SessionLocal()
        try:
            results.append(process_pending_chat(db, chat_id))
        except Exception:
            db.rollback()
            failed += 1
            logger.exception("Batch scan failed for chat %s", chat_id)
        finally:
            db.close()

    processed = sum(r.get("processed", 0) for r in results)
    logger.info("Batch scan: %d chats, %d messages processed, %d failed", len(chat_ids), processed, failed)
    return {"chats": len(chat_ids), "processed": processed, "failed": failed, "results": results}
