"""Tier-1 classifier: cheap per-message risk scoring and the escalation rule."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from models.signal import SmallSignal
from schemas.agents import CRITICAL_CODES, SmallAgentMessageResult, SmallAgentPayload
from services.budget import log_provider_result, record_usage
from services.checkpoints import mark_scanned
from services.llm import TIER_SMALL, extract_json, invoke_classifier

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a child-safety risk screener for chat messages.
Rules: stay calm, keep false positives low, score each message 0-100.
Allowed risk_codes: GROOMING, MEETUP, SEXUAL, NUDES_REQUEST, EXTORTION,
ISOLATION, CONTACT_INFO, VIOLENCE, MANIPULATION.
Output STRICT JSON only."""

USER_TEMPLATE = """Analyze these messages. Child age: {child_age}.
Messages: {messages}

Return JSON:
{{"messages_analysis":[{{"message_id":"","risk_score":0,"risk_codes":[],"escalate":false}}],"batch_escalate":false}}"""

STATUS_SKIPPED = "skipped"
STATUS_PARSE_ERROR = "parse_error"

# Tier-1 outcomes after which the scored messages count as analysed.
ANALYSED_STATUSES = ("success", STATUS_PARSE_ERROR)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class SmallAgentResult:
    status: str
    results: list[SmallAgentMessageResult] = field(default_factory=list)
    batch_escalate: bool = False
    should_trigger_smart: bool = False
    signals_persisted: int = 0
    model: str = ""
    latency_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "results": [r.model_dump() for r in self.results],
            "batch_escalate": self.batch_escalate,
            "should_trigger_smart": self.should_trigger_smart,
            "signals_persisted": self.signals_persisted,
            "model": self.model,
            "latency_ms": self.latency_ms,
        }


def should_escalate(results: list[SmallAgentMessageResult], batch_escalate: bool = False) -> bool:
    """Tier-2 is due when the batch asks for it or any single message does.

    A message asks for it with a score at or above the escalation threshold,
    its own escalate flag, or any critical risk code.
    """
    if batch_escalate:
        return True
    for r in results:
        if r.risk_score >= settings.RISK_ESCALATION_THRESHOLD or r.escalate:
            return True
        if any(code in CRITICAL_CODES for code in r.risk_codes):
            return True
    return False


def message_for_prompt(message) -> dict:
    return {
        "id": message.id,
        "sender_role": message.sender_role,
        "timestamp": message.sent_at.isoformat() if message.sent_at else None,
        "text": message.text_content or "",
        "image_caption": message.caption,
        "has_audio": message.has_audio,
    }


def build_user_prompt(child_age: int, messages: list) -> str:
    payload = json.dumps([message_for_prompt(m) for m in messages], ensure_ascii=False)
    return USER_TEMPLATE.format(child_age=child_age, messages=payload)


def _persist_signals(db: Session, chat_id: str, results: list[SmallAgentMessageResult], model: str) -> bool:
    if not results:
        return True
    try:
        db.add_all([
            SmallSignal(
                message_id=r.message_id,
                chat_id=chat_id,
                risk_score=r.risk_score,
                risk_codes=list(r.risk_codes),
                escalate=r.escalate,
                model_used=model,
            )
            for r in results
        ])
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(
            "Failed to persist %d Tier-1 signals for chat %s, needs reconciliation: %s",
            len(results), chat_id, json.dumps([r.model_dump() for r in results]),
            exc_info=True,
        )
        return False
    return True


def run_small_agent(
    db: Session,
    chat_id: str,
    subject_id: str,
    messages: list,
    child_age: int | None = None,
    scanned_until: datetime | None = None,
) -> SmallAgentResult:
    """Score *messages* with the Tier-1 model and persist one signal per message.

    Parse errors and provider failures come back as a non-success status with
    ``should_trigger_smart`` False; neither writes signals or moves the
    checkpoint, so the next pass sees the same messages again.

    *scanned_until* is the Tier-1 cursor to stamp on success; it defaults to
    the call start.
    """
    if not messages:
        return SmallAgentResult(status=STATUS_SKIPPED)

    # Messages stored while the call runs stay newer than the cursor.
    started_at = scanned_until or _utcnow()
    age = child_age or settings.DEFAULT_SUBJECT_AGE
    logger.info("Tier-1: scoring %d messages", len(messages))

    call = invoke_classifier(TIER_SMALL, SYSTEM_PROMPT, build_user_prompt(age, messages))
    log_provider_result(db, "small_agent", call, subject_id)
    if not call.ok:
        return SmallAgentResult(status=call.status, model=call.model, latency_ms=call.latency_ms)

    record_usage(db, subject_id, "small", call.input_tokens, call.output_tokens, call.model)

    try:
        payload = SmallAgentPayload.model_validate_json(extract_json(call.content))
    except ValidationError as exc:
        logger.warning("Tier-1 reply for chat %s is not valid: %s", chat_id, exc.errors()[:3])
        return SmallAgentResult(status=STATUS_PARSE_ERROR, model=call.model, latency_ms=call.latency_ms)

    batch_ids = {m.id for m in messages}
    results = [r for r in payload.messages_analysis if r.message_id in batch_ids]
    if len(results) != len(payload.messages_analysis):
        logger.debug(
            "Dropped %d Tier-1 results for messages outside the batch",
            len(payload.messages_analysis) - len(results),
        )

    trigger = should_escalate(results, payload.batch_escalate)
    persisted = _persist_signals(db, chat_id, results, call.model)
    if persisted:
        mark_scanned(db, chat_id, started_at)

    logger.info(
        "Tier-1 complete: %d signals, batch_escalate=%s, trigger_smart=%s",
        len(results), payload.batch_escalate, trigger,
    )
    return SmallAgentResult(
        status="success",
        results=results,
        batch_escalate=payload.batch_escalate,
        should_trigger_smart=trigger,
        signals_persisted=len(results) if persisted else 0,
        model=call.model,
        latency_ms=call.latency_ms,
    )
