"""Adaptive scheduler: per-chat cadence, the periodic tick, and RQ self-rescheduling."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal
from logging_config import log_context
from models.chat import Chat, Message
from models.subject import Subject
from services.budget import check_budget
from services.checkpoints import get_or_create_checkpoint, set_interval
from services.escalation import run_smart_window, scan_messages

logger = logging.getLogger(__name__)

CADENCE_TIGHT = "tight"
CADENCE_NORMAL = "normal"
CADENCE_WIDE = "wide"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes_since(ts: datetime | None, now: datetime) -> float:
    if ts is None:
        return math.inf
    return (now - ts).total_seconds() / 60


def is_active_hours(now: datetime) -> bool:
    """*now* is naive UTC; the window is read in ``ACTIVE_HOURS_TIMEZONE``."""
    local = now
    if settings.ACTIVE_HOURS_TIMEZONE and settings.ACTIVE_HOURS_TIMEZONE != "UTC":
        local = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(settings.ACTIVE_HOURS_TIMEZONE))
    return settings.ACTIVE_HOURS_START <= local.hour < settings.ACTIVE_HOURS_END


def compute_interval(
    now: datetime,
    last_activity_at: datetime | None,
    over_soft_limit: bool,
) -> tuple[int, str]:
    """Return (minutes, cadence) for the next Tier-1 pass.

    Over budget always throttles. A chat quiet for longer than the
    no-activity threshold widens regardless of the clock. Otherwise active
    hours pick the tight cadence and quiet hours the normal one.
    """
    if over_soft_limit:
        return settings.THROTTLED_INTERVAL_MINUTES, CADENCE_WIDE
    if last_activity_at is not None and minutes_since(last_activity_at, now) > settings.NO_ACTIVITY_THRESHOLD_MINUTES:
        return settings.NO_ACTIVITY_INTERVAL_MINUTES, CADENCE_WIDE
    if is_active_hours(now):
        return settings.ACTIVE_INTERVAL_MINUTES, CADENCE_TIGHT
    return settings.QUIET_INTERVAL_MINUTES, CADENCE_NORMAL


def heartbeat_interval(over_soft_limit: bool) -> int:
    if over_soft_limit:
        return settings.THROTTLED_HEARTBEAT_MINUTES
    return settings.HEARTBEAT_INTERVAL_MINUTES


def process_chat(db: Session, chat_id: str, now: datetime | None = None) -> dict:
    """One scheduler decision for one chat: maybe Tier-1, maybe a Tier-2 heartbeat."""
    now = now or _utcnow()
    chat = db.get(Chat, chat_id)
    if chat is None:
        return {"chat_id": chat_id, "skipped": True, "reason": "chat_not_found"}
    subject = db.get(Subject, chat.subject_id)
    if subject is None or not subject.monitoring_enabled:
        return {"chat_id": chat_id, "skipped": True, "reason": "monitoring_disabled"}

    with log_context(subject_id=subject.id, chat_id=chat.id):
        checkpoint = get_or_create_checkpoint(db, chat.id)
        budget = check_budget(db, subject.id, now)
        last_activity = checkpoint.last_activity_at or chat.last_activity_at
        interval, cadence = compute_interval(now, last_activity, budget.soft_limit_exceeded)

        result = {
            "chat_id": chat.id,
            "interval_minutes": interval,
            "cadence": cadence,
            "small": None,
            "smart": None,
            "heartbeat": False,
        }

        if minutes_since(checkpoint.last_scanned_at, now) >= interval:
            cursor = _utcnow()
            query = select(Message).where(Message.chat_id == chat.id, Message.created_at <= cursor)
            if checkpoint.last_scanned_at is not None:
                query = query.where(Message.created_at > checkpoint.last_scanned_at)
            new_messages = list(db.execute(query.order_by(Message.created_at)).scalars().all())
            if new_messages:
                outcome = scan_messages(db, subject, chat, new_messages, scanned_until=cursor)
                result["small"] = outcome["small"]
                result["smart"] = outcome["smart"]

        if (
            result["smart"] is None
            and minutes_since(checkpoint.last_smart_at, now) >= heartbeat_interval(budget.soft_limit_exceeded)
            and minutes_since(last_activity, now) < settings.ACTIVITY_LOOKBACK_MINUTES
        ):
            logger.info("Tier-2 heartbeat due")
            result["smart"] = run_smart_window(db, subject, chat, now=now).to_dict()
            result["heartbeat"] = True

        set_interval(db, chat.id, interval)
        return result


def _process_chat_isolated(chat_id: str, now: datetime | None) -> dict:
    db = SessionLocal()
    try:
        return process_chat(db, chat_id, now)
    except Exception:
        db.rollback()
        logger.exception("Scheduler check failed for chat %s", chat_id)
        return {"chat_id": chat_id, "error": True}
    finally:
        db.close()


def run_scheduler_tick(now: datetime | None = None, max_workers: int | None = None) -> dict:
    """Check every chat of every monitored subject.

    Chats run in parallel, each on its own session. A failing chat is logged
    and counted; failing to list chats at all raises.
    """
    db = SessionLocal()
    try:
        chat_ids = db.execute(
            select(Chat.id)
            .join(Subject, Chat.subject_id == Subject.id)
            .where(Subject.monitoring_enabled.is_(True))
        ).scalars().all()
    finally:
        db.close()

    results = []
    if chat_ids:
        workers = max_workers or settings.SCHEDULER_MAX_WORKERS
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_process_chat_isolated, chat_id, now) for chat_id in chat_ids]
            for future in as_completed(futures):
                results.append(future.result())

    failed = sum(1 for r in results if r.get("error"))
    scanned = sum(1 for r in results if r.get("small"))
    heartbeats = sum(1 for r in results if r.get("heartbeat"))
    logger.info(
        "Scheduler tick: %d chats, %d Tier-1 scans, %d heartbeats, %d failed",
        len(chat_ids), scanned, heartbeats, failed,
    )
    return {
        "chats": len(chat_ids),
        "scanned": scanned,
        "heartbeats": heartbeats,
        "failed": failed,
        "results": results,
    }


# ── RQ periodic jobs ─────────────────────────────────────────────────────────

PERIODIC_JOBS = {
    "scheduler-tick": ("scheduler_tick_task", "SCHEDULER_TICK_SECONDS"),
    "batch-scan": ("batch_scan_task", "BATCH_SCAN_INTERVAL_SECONDS"),
    "budget-check": ("budget_check_task", "BUDGET_CHECK_INTERVAL_SECONDS"),
}


def _periodic_queue():
    import redis
    from rq import Queue

    return Queue("safewatch", connection=redis.from_url(settings.REDIS_URL))


def _enqueue_next(name: str, queue=None) -> str:
    """Enqueue the next run of periodic job *name*.

    The job id is derived from the time slot of the next run, so two
    enqueues landing in the same slot collapse into one queued job.
    """
    import tasks

    task_name, interval_setting = PERIODIC_JOBS[name]
    delay_seconds = getattr(settings, interval_setting)
    run_at = _utcnow() + timedelta(seconds=delay_seconds)
    slot = int(run_at.replace(tzinfo=timezone.utc).timestamp()) // delay_seconds

    q = queue if queue is not None else _periodic_queue()
    rq_job_id = f"{name}-{slot}"
    q.enqueue_in(
        timedelta(seconds=delay_seconds),
        getattr(tasks, task_name),
        job_id=rq_job_id,
    )
    logger.debug("Enqueued %s as %s in %ds", name, rq_job_id, delay_seconds)
    return rq_job_id


def _run_periodic(name: str, func) -> dict | None:
    try:
        return func()
    except Exception:
        logger.exception("Periodic job %s failed", name)
        raise
    finally:
        _enqueue_next(name)


def scheduler_tick_job() -> dict | None:
    return _run_periodic("scheduler-tick", run_scheduler_tick)


def batch_scan_job() -> dict | None:
    from services.batch import run_batch_scan

    return _run_periodic("batch-scan", run_batch_scan)


def budget_check_job() -> dict | None:
    from services.budget import run_budget_check

    def _check():
        db = SessionLocal()
        try:
            return run_budget_check(db)
        finally:
            db.close()

    return _run_periodic("budget-check", _check)


def _queued_run(q, name: str) -> str | None:
    """Id of a run of *name* waiting in the scheduled registry or on the queue."""
    prefix = f"{name}-"
    for job_ids in (q.scheduled_job_registry.get_job_ids(), q.job_ids):
        for job_id in job_ids:
            if job_id.startswith(prefix):
                return job_id
    return None


def recover_periodic_jobs() -> int:
    """Queue a next run for every periodic job that has none. Returns how many were enqueued.

    Each job reschedules itself, so a job with a run already waiting is left
    alone; a second enqueue in another time slot would start a second chain.
    """
    q = _periodic_queue()
    count = 0
    for name in PERIODIC_JOBS:
        try:
            existing = _queued_run(q, name)
            if existing:
                logger.info("Periodic job %s already queued as %s", name, existing)
                continue
            _enqueue_next(name, q)
            count += 1
        except Exception:
            logger.exception("Could not enqueue periodic job %s", name)
    return count
