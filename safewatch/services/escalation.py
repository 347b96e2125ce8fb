"""Tier-1 -> Tier-2 chaining shared by ingestion, batch, scheduler and scan trigger."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import settings
from models.chat import Message
from models.signal import SmallSignal
from services.checkpoints import append_pending
from services.small_agent import ANALYSED_STATUSES, STATUS_SKIPPED, run_small_agent
from services.smart_agent import run_smart_agent

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def context_window(
    db: Session,
    chat_id: str,
    now: datetime | None = None,
    minutes: int | None = None,
    limit: int | None = None,
) -> tuple[datetime, datetime, list[Message]]:
    """The chat's most recent messages within the last *minutes*, oldest first."""
    timeframe_to = now or _utcnow()
    timeframe_from = timeframe_to - timedelta(minutes=minutes or settings.CONTEXT_WINDOW_MINUTES)
    newest_first = db.execute(
        select(Message)
        .where(Message.chat_id == chat_id, Message.sent_at >= timeframe_from)
        .order_by(Message.sent_at.desc())
        .limit(limit or settings.CONTEXT_WINDOW_LIMIT)
    ).scalars().all()
    return timeframe_from, timeframe_to, list(reversed(newest_first))


def signals_for_messages(db: Session, message_ids: list[str]) -> list[SmallSignal]:
    if not message_ids:
        return []
    return list(db.execute(
        select(SmallSignal)
        .where(SmallSignal.message_id.in_(message_ids))
        .order_by(SmallSignal.created_at)
    ).scalars().all())


def run_smart_window(db: Session, subject, chat, now: datetime | None = None):
    """Run Tier-2 over the chat's recent window and the Tier-1 signals inside it."""
    timeframe_from, timeframe_to, messages = context_window(db, chat.id, now=now)
    signals = signals_for_messages(db, [m.id for m in messages])
    return run_smart_agent(
        db,
        chat.id,
        subject.id,
        messages=messages,
        signals=signals,
        timeframe_from=timeframe_from,
        timeframe_to=timeframe_to,
        child_age=subject.age(settings.DEFAULT_SUBJECT_AGE),
        platform=chat.platform,
    )


def scan_messages(
    db: Session,
    subject,
    chat,
    messages: list,
    *,
    always_smart: bool = False,
    scanned_until: datetime | None = None,
    requeue: bool = True,
) -> dict:
    """Run Tier-1 on *messages*, then Tier-2 when it escalates (or *always_smart*).

    When Tier-1 fails the messages join the chat's pending list so the batch
    scan retries them; the Tier-1 cursor alone can move past them. Callers
    that are already draining that list pass ``requeue=False``. A pending
    list that cannot be written raises ``CheckpointConflictError``.
    """
    small = run_small_agent(
        db, chat.id, subject.id, messages,
        child_age=subject.age(settings.DEFAULT_SUBJECT_AGE),
        scanned_until=scanned_until,
    )
    if requeue and small.status not in ANALYSED_STATUSES and small.status != STATUS_SKIPPED:
        logger.warning("Tier-1 %s, queueing %d messages for the batch scan", small.status, len(messages))
        append_pending(db, chat.id, [m.id for m in messages])
    outcome = {"chat_id": chat.id, "small": small.to_dict(), "smart": None}
    if always_smart or small.should_trigger_smart:
        outcome["smart"] = run_smart_window(db, subject, chat).to_dict()
    return outcome
