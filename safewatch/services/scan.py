"""On-demand scan trigger for one subject."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from logging_config import log_context
from models.subject import Subject
from services.checkpoints import get_or_create_checkpoint
from services.escalation import context_window, scan_messages

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def trigger_scan(db: Session, subject_id: str, force: bool = False, now: datetime | None = None) -> dict:
    """Run Tier-1 then Tier-2 over the last hour of every chat of *subject_id*.

    Without *force* a chat scanned more recently than its checkpoint interval
    is left alone. Fallback still goes through the budget ledger either way.
    """
    subject = db.get(Subject, subject_id)
    if subject is None:
        return {"skipped": True, "reason": "subject_not_found"}
    if not subject.monitoring_enabled:
        return {"skipped": True, "reason": "monitoring_disabled"}

    now = now or _utcnow()
    results = []
    scanned = 0
    for chat in subject.chats:
        with log_context(subject_id=subject.id, chat_id=chat.id):
            checkpoint = get_or_create_checkpoint(db, chat.id)
            if not force and checkpoint.last_scanned_at is not None:
                elapsed = (now - checkpoint.last_scanned_at).total_seconds() / 60
                if elapsed < checkpoint.scan_interval_minutes:
                    results.append({"chat_id": chat.id, "skipped": True, "reason": "interval_not_elapsed"})
                    continue

            _, _, messages = context_window(db, chat.id, now=now)
            if not messages:
                results.append({"chat_id": chat.id, "skipped": True, "reason": "no_recent_messages"})
                continue

            try:
                results.append(scan_messages(db, subject, chat, messages, always_smart=True))
                scanned += 1
            except Exception:
                db.rollback()
                logger.exception("Triggered scan failed for chat %s", chat.id)
                results.append({"chat_id": chat.id, "error": True})

    logger.info("Triggered scan (force=%s): %d of %d chats scanned", force, scanned, len(results))
    return {
        "skipped": False,
        "subject_id": subject.id,
        "force": force,
        "chats_scanned": scanned,
        "results": results,
    }
