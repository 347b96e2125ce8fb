"""Per-subject monthly budget ledger.

Every paid classifier or media call lands here through :func:`record_usage`,
which is a single upsert-with-increment on the ``usage_meters`` row for the
subject and month. :func:`check_budget` turns that row into the soft/hard
limit flags the fallback tier and the scheduler consume.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import upsert_insert
from models.usage import ModelCallLog, UsageMeter
from services.token_usage import MODEL_PRICING, calculate_cost

logger = logging.getLogger(__name__)

TIER_COUNTERS = {
    "small": "small_calls",
    "smart": "smart_calls",
    "fallback": "fallback_calls",
    "caption": "caption_calls",
}


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_key(now: datetime | None = None) -> str:
    return (now or _utcnow()).strftime("%Y-%m")


@dataclass
class BudgetStatus:
    subject_id: str
    month: str
    est_cost_usd: float = 0.0
    small_calls: int = 0
    smart_calls: int = 0
    fallback_calls: int = 0
    caption_calls: int = 0
    soft_limit_exceeded: bool = False
    hard_limit_exceeded: bool = False
    fallback_allowed: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


def record_usage(
    db: Session,
    subject_id: str,
    tier: str,
    input_tokens: int,
    output_tokens: int,
    model_name: str,
    pricing: list[tuple[str, float, float]] | None = None,
    *,
    cost_usd: float | None = None,
    now: datetime | None = None,
) -> float:
    """Charge one call to the subject's meter for the current month.

    The cost comes from *pricing* (defaults to ``MODEL_PRICING``) unless
    *cost_usd* is given, as for flat-rate caption calls. Returns the charged
    amount.
    """
    counter = TIER_COUNTERS.get(tier)
    if counter is None:
        raise ValueError(f"Unknown usage tier: {tier}")

    if cost_usd is None:
        cost_usd = calculate_cost(
            model_name, input_tokens, output_tokens,
            pricing if pricing is not None else MODEL_PRICING,
        )
    now = now or _utcnow()
    table = UsageMeter.__table__

    values = {
        "id": str(uuid.uuid4()),
        "subject_id": subject_id,
        "month": month_key(now),
        "est_cost_usd": cost_usd,
        "small_calls": 0,
        "smart_calls": 0,
        "fallback_calls": 0,
        "caption_calls": 0,
        "updated_at": now,
    }
    values[counter] = 1
    stmt = upsert_insert(db, table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.subject_id, table.c.month],
        set_={
            "est_cost_usd": table.c.est_cost_usd + cost_usd,
            counter: table.c[counter] + 1,
            "updated_at": now,
        },
    )
    db.execute(stmt)
    db.commit()
    logger.debug(
        "Charged %s call on %s: %d in / %d out tokens, $%.6f",
        tier, model_name, input_tokens, output_tokens, cost_usd,
    )
    return cost_usd


def evaluate_limits(est_cost_usd: float, fallback_calls: int) -> tuple[bool, bool, bool]:
    """Return (soft_limit_exceeded, hard_limit_exceeded, fallback_allowed)."""
    soft = est_cost_usd >= settings.SOFT_LIMIT_USD
    hard = est_cost_usd >= settings.HARD_LIMIT_USD
    fallback_allowed = fallback_calls < settings.MAX_FALLBACK_CALLS and not hard
    return soft, hard, fallback_allowed


def _status_from_meter(subject_id: str, month: str, meter: UsageMeter | None) -> BudgetStatus:
    status = BudgetStatus(subject_id=subject_id, month=month)
    if meter is not None:
        status.est_cost_usd = float(meter.est_cost_usd or 0.0)
        status.small_calls = meter.small_calls or 0
        status.smart_calls = meter.smart_calls or 0
        status.fallback_calls = meter.fallback_calls or 0
        status.caption_calls = meter.caption_calls or 0
    (
        status.soft_limit_exceeded,
        status.hard_limit_exceeded,
        status.fallback_allowed,
    ) = evaluate_limits(status.est_cost_usd, status.fallback_calls)
    return status


def check_budget(db: Session, subject_id: str, now: datetime | None = None) -> BudgetStatus:
    """Read this month's meter for *subject_id*.

    A hard-limit breach is logged at CRITICAL and nothing else: cheap-tier
    scanning carries on, only the fallback tier is switched off.
    """
    month = month_key(now)
    meter = db.execute(
        select(UsageMeter)
        .where(UsageMeter.subject_id == subject_id, UsageMeter.month == month)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    status = _status_from_meter(subject_id, month, meter)
    if status.hard_limit_exceeded:
        logger.critical(
            "Subject %s over hard budget limit: $%.2f / $%.2f (scanning continues, fallback disabled)",
            subject_id, status.est_cost_usd, settings.HARD_LIMIT_USD,
        )
    return status


def log_model_call(
    db: Session,
    function_name: str,
    model: str,
    *,
    input_tokens: int = 0,
    output_tokens: int = 0,
    latency_ms: int = 0,
    success: bool = True,
    error_message: str = "",
    subject_id: str | None = None,
) -> None:
    """Append a row to ``model_call_logs``. Failures here never fail the caller."""
    try:
        db.add(ModelCallLog(
            function_name=function_name,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
            success=success,
            error_message=error_message or "",
            subject_id=subject_id,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write model call log for %s/%s", function_name, model)


def log_provider_result(db: Session, function_name: str, result, subject_id: str | None = None) -> None:
    log_model_call(
        db,
        function_name,
        result.model,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        latency_ms=result.latency_ms,
        success=result.ok,
        error_message=result.error,
        subject_id=subject_id,
    )


def run_budget_check(db: Session, now: datetime | None = None) -> dict:
    """Monthly report over every metered subject.

    Subjects over the soft limit get the throttled interval written onto
    every one of their chats' checkpoints.
    """
    from models.chat import Chat
    from services.checkpoints import set_interval

    now = now or _utcnow()
    month = month_key(now)
    meters = db.execute(select(UsageMeter).where(UsageMeter.month == month)).scalars().all()

    statuses: list[BudgetStatus] = []
    over_soft: list[str] = []
    over_hard: list[str] = []
    adjusted_chats = 0
    for meter in meters:
        status = _status_from_meter(meter.subject_id, month, meter)
        statuses.append(status)
        if status.soft_limit_exceeded:
            over_soft.append(meter.subject_id)
            chat_ids = db.execute(
                select(Chat.id).where(Chat.subject_id == meter.subject_id)
            ).scalars().all()
            for chat_id in chat_ids:
                set_interval(db, chat_id, settings.THROTTLED_INTERVAL_MINUTES)
                adjusted_chats += 1
            logger.info(
                "Budget throttle applied to subject %s: $%.2f / $%.2f",
                meter.subject_id, status.est_cost_usd, settings.SOFT_LIMIT_USD,
            )
        if status.hard_limit_exceeded:
            over_hard.append(meter.subject_id)
            logger.critical(
                "Subject %s over hard budget limit: $%.2f / $%.2f",
                meter.subject_id, status.est_cost_usd, settings.HARD_LIMIT_USD,
            )

    total = sum(s.est_cost_usd for s in statuses)
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    summary = {
        "month": month,
        "total_subjects": len(statuses),
        "total_cost_usd": round(total, 6),
        "avg_cost_per_subject": round(total / len(statuses), 6) if statuses else 0.0,
        "projected_month_cost": round(total / now.day * days_in_month, 6),
        "subjects_over_soft_limit": over_soft,
        "subjects_over_hard_limit": over_hard,
        "chats_adjusted": adjusted_chats,
        "throttle_settings": {
            "interval_minutes": settings.THROTTLED_INTERVAL_MINUTES,
            "heartbeat_minutes": settings.THROTTLED_HEARTBEAT_MINUTES,
            "max_fallback_calls": settings.MAX_FALLBACK_CALLS,
        },
    }
    logger.info(
        "Budget check %s: %d subjects, $%.2f spent, %d over soft limit",
        month, len(statuses), total, len(over_soft),
    )
    return {"summary": summary, "budget_statuses": [s.to_dict() for s in statuses]}
