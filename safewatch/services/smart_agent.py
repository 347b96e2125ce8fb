"""Tier-2 context agent with the Tier-3 fallback.

One call over the conversation window produces a single decision. A
low-confidence, non-ignore decision is re-evaluated by the fallback model
when the budget ledger still allows it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import settings
from models.signal import SmartDecision
from schemas.agents import SmartDecisionPayload
from services.budget import check_budget, log_provider_result, record_usage
from services.checkpoints import mark_smart_scanned
from services.llm import TIER_FALLBACK, TIER_SMART, extract_json, invoke_classifier

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a child-safety context analyst.
Make one decision for the whole conversation window. Patterns matter more
than single messages. Be evidence-based and avoid false positives.
Output STRICT JSON only."""

FALLBACK_SYSTEM_PROMPT = SYSTEM_PROMPT + """
A first reviewer was unsure about this conversation. Be thorough: weigh every
message, check for escalation over time, and commit to a calibrated confidence."""

USER_TEMPLATE = """Evaluate the context and decide an action.
Metadata: {metadata}
Messages: {messages}
Small agent results: {signals}

Return JSON:
{{"final_risk_score":0,"threat_type":"none","confidence":0.0,"action":"ignore","key_reasons":[],"evidence_message_ids":[]}}
threat_type: grooming|sexual_content|violence|extortion|manipulation|none
action: ignore|monitor|alert"""

STATUS_SKIPPED = "skipped"
STATUS_PARSE_ERROR = "parse_error"


@dataclass
class SmartAgentOutcome:
    status: str
    decision: SmartDecision | None = None
    finding_id: str | None = None
    fallback_attempted: bool = False
    fallback_skipped_for_budget: bool = False

    def to_dict(self) -> dict:
        d = self.decision
        return {
            "status": self.status,
            "decision": None if d is None else {
                "id": d.id,
                "final_risk_score": d.final_risk_score,
                "threat_type": d.threat_type,
                "confidence": d.confidence,
                "action": d.action,
                "key_reasons": list(d.key_reasons or []),
                "evidence_message_ids": list(d.evidence_message_ids or []),
                "model_used": d.model_used,
                "used_fallback": d.used_fallback,
            },
            "finding_id": self.finding_id,
            "fallback_attempted": self.fallback_attempted,
            "fallback_skipped_for_budget": self.fallback_skipped_for_budget,
        }


def needs_fallback(payload: SmartDecisionPayload) -> bool:
    return payload.confidence < settings.FALLBACK_CONFIDENCE_THRESHOLD and payload.action != "ignore"


def build_user_prompt(metadata: dict, messages: list, signals: list) -> str:
    msgs = [
        {
            "id": m.id,
            "sender_role": m.sender_role,
            "timestamp": m.sent_at.isoformat() if m.sent_at else None,
            "text": m.text_content or "",
            "image_caption": m.caption,
            "audio_transcript": m.transcript,
            "has_audio": m.has_audio,
        }
        for m in messages
    ]
    sigs = [
        {
            "message_id": s.message_id,
            "risk_score": s.risk_score,
            "risk_codes": list(s.risk_codes or []),
            "escalate": s.escalate,
        }
        for s in signals
    ]
    return USER_TEMPLATE.format(
        metadata=json.dumps(metadata, ensure_ascii=False),
        messages=json.dumps(msgs, ensure_ascii=False),
        signals=json.dumps(sigs, ensure_ascii=False),
    )


def _parse(content: str) -> SmartDecisionPayload:
    return SmartDecisionPayload.model_validate_json(extract_json(content))


def _run_fallback(db: Session, subject_id: str, chat_id: str, user_prompt: str):
    """Return (payload, model) from the fallback tier, or None to keep the original."""
    call = invoke_classifier(TIER_FALLBACK, FALLBACK_SYSTEM_PROMPT, user_prompt)
    log_provider_result(db, "smart_agent_fallback", call, subject_id)
    if not call.ok:
        logger.warning("Fallback call failed (%s), keeping Tier-2 decision", call.status)
        return None
    record_usage(db, subject_id, "fallback", call.input_tokens, call.output_tokens, call.model)
    try:
        return _parse(call.content), call.model
    except ValidationError:
        logger.warning("Fallback reply for chat %s is not valid, keeping Tier-2 decision", chat_id)
        return None


def run_smart_agent(
    db: Session,
    chat_id: str,
    subject_id: str,
    *,
    messages: list,
    signals: list,
    timeframe_from: datetime,
    timeframe_to: datetime,
    child_age: int | None = None,
    platform: str = "whatsapp",
) -> SmartAgentOutcome:
    """Evaluate the conversation window and persist exactly one decision.

    Provider failures persist nothing and leave the Tier-2 stamp alone. An
    unparseable reply is persisted as the neutral ``ignore`` decision.
    """
    from services.findings import emit_finding

    if not messages:
        return SmartAgentOutcome(status=STATUS_SKIPPED)

    metadata = {
        "chat_id": chat_id,
        "child_age": child_age or settings.DEFAULT_SUBJECT_AGE,
        "platform": platform,
        "timeframe_from": timeframe_from.isoformat(),
        "timeframe_to": timeframe_to.isoformat(),
    }
    user_prompt = build_user_prompt(metadata, messages, signals)
    logger.info("Tier-2: evaluating %d messages, %d signals", len(messages), len(signals))

    call = invoke_classifier(TIER_SMART, SYSTEM_PROMPT, user_prompt)
    log_provider_result(db, "smart_agent", call, subject_id)
    if not call.ok:
        return SmartAgentOutcome(status=call.status)
    record_usage(db, subject_id, "smart", call.input_tokens, call.output_tokens, call.model)

    status = "success"
    model_used = call.model
    used_fallback = False
    try:
        payload = _parse(call.content)
    except ValidationError as exc:
        logger.warning("Tier-2 reply for chat %s is not valid: %s", chat_id, exc.errors()[:3])
        payload = SmartDecisionPayload.neutral()
        status = STATUS_PARSE_ERROR

    outcome = SmartAgentOutcome(status=status)
    if needs_fallback(payload):
        budget = check_budget(db, subject_id)
        if budget.fallback_allowed:
            outcome.fallback_attempted = True
            replacement = _run_fallback(db, subject_id, chat_id, user_prompt)
            if replacement is not None:
                payload, model_used = replacement
                used_fallback = True
        else:
            outcome.fallback_skipped_for_budget = True
            logger.info(
                "Fallback skipped for budget: $%.2f spent, %d fallback calls (confidence %.2f, action %s)",
                budget.est_cost_usd, budget.fallback_calls, payload.confidence, payload.action,
            )

    decision = SmartDecision(
        chat_id=chat_id,
        subject_id=subject_id,
        timeframe_from=timeframe_from,
        timeframe_to=timeframe_to,
        final_risk_score=payload.final_risk_score,
        threat_type=payload.threat_type,
        confidence=payload.confidence,
        action=payload.action,
        key_reasons=list(payload.key_reasons),
        evidence_message_ids=list(payload.evidence_message_ids),
        model_used=model_used,
        used_fallback=used_fallback,
    )
    db.add(decision)
    db.commit()
    mark_smart_scanned(db, chat_id)
    outcome.decision = decision

    logger.info(
        "Tier-2 decision: action=%s score=%d confidence=%.2f threat=%s fallback=%s",
        decision.action, decision.final_risk_score, decision.confidence,
        decision.threat_type, used_fallback,
    )

    if decision.action == "alert":
        outcome.finding_id = emit_finding(db, decision).id
    return outcome
