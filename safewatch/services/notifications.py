"""NotificationDelivery: push findings to the guardian and educator webhooks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests
from sqlalchemy.orm import Session

from config import settings

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationDelivery:

    def deliver(self, finding, db: Session) -> bool:
        """Send *finding* to the configured collaborators.

        Returns True when the guardian notification went out; that also
        stamps ``notified_at`` on the finding.
        """
        from models.subject import Subject

        subject = db.get(Subject, finding.subject_id)

        delivered = False
        if settings.NOTIFY_WEBHOOK_URL:
            delivered = self.post_json(settings.NOTIFY_WEBHOOK_URL, self._guardian_payload(finding, subject))
        else:
            logger.debug("No guardian webhook configured, finding %s not pushed", finding.id)

        if subject is not None and subject.share_with_educator and settings.EDUCATOR_WEBHOOK_URL:
            self.post_json(settings.EDUCATOR_WEBHOOK_URL, self._educator_payload(finding))

        if delivered:
            finding.notified_at = _utcnow()
            db.commit()
        return delivered

    def post_json(self, url: str, data: dict) -> bool:
        try:
            resp = requests.post(url, json=data, timeout=settings.COLLABORATOR_TIMEOUT_SECONDS)
            resp.raise_for_status()
            return True
        except requests.RequestException:
            logger.exception("Failed to deliver notification to %s", url)
            return False

    def _guardian_payload(self, finding, subject) -> dict:
        return {
            "finding_id": finding.id,
            "subject_id": finding.subject_id,
            "subject_name": subject.display_name if subject is not None else "",
            "guardian_email": subject.guardian_email if subject is not None else "",
            "risk_level": finding.risk_level,
            "threat_types": list(finding.threat_types or []),
            "explanation": finding.explanation,
            "created_at": finding.created_at.isoformat() if finding.created_at else None,
        }

    def _educator_payload(self, finding) -> dict:
        # Educators get the category, never the guardian contact or the chat.
        return {
            "finding_id": finding.id,
            "subject_id": finding.subject_id,
            "risk_level": finding.risk_level,
            "threat_types": list(finding.threat_types or []),
        }
