"""Turn alerting Tier-2 decisions into guardian-visible findings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.finding import Finding

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def risk_level_for_score(score: int) -> str:
    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def emit_finding(db: Session, decision, *, notify: bool = True) -> Finding:
    """Persist a Finding for an ``alert`` decision and notify best-effort.

    The finding is committed before any notification attempt; a delivery
    failure is logged and leaves the row in place. Emitting twice for the
    same decision returns the existing finding.
    """
    if decision.action != "alert":
        raise ValueError(f"Decision {decision.id} has action '{decision.action}', not 'alert'")

    existing = db.execute(
        select(Finding).where(Finding.smart_decision_id == decision.id)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    finding = Finding(
        subject_id=decision.subject_id,
        chat_id=decision.chat_id,
        smart_decision_id=decision.id,
        threat_detected=True,
        risk_level=risk_level_for_score(decision.final_risk_score),
        threat_types=[decision.threat_type],
        explanation=", ".join(decision.key_reasons or []),
    )
    db.add(finding)
    db.commit()
    db.refresh(finding)
    logger.warning(
        "Finding %s raised: %s risk, %s (score %d)",
        finding.id, finding.risk_level, decision.threat_type, decision.final_risk_score,
    )

    if notify:
        from services.notifications import NotificationDelivery

        try:
            NotificationDelivery().deliver(finding, db)
        except Exception:
            db.rollback()
            logger.exception("Notification for finding %s failed", finding.id)
    return finding


def mark_handled(db: Session, finding: Finding, handled: bool = True) -> Finding:
    finding.handled = handled
    finding.handled_at = _utcnow() if handled else None
    db.commit()
    db.refresh(finding)
    return finding
