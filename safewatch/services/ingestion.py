"""Ingestion push: store a normalized message and route it through the pre-filter."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from logging_config import log_context
from models.chat import Chat, Message
from models.subject import Subject
from services.checkpoints import CheckpointConflictError, append_pending, mark_activity
from services.escalation import scan_messages
from services.media import describe_media
from services.prefilter import PRIORITY_IMMEDIATE, analyze_message

logger = logging.getLogger(__name__)


class ChatOwnershipError(ValueError):
    """The chat exists but belongs to a different subject."""


def _get_or_create_chat(db: Session, subject: Subject, data) -> Chat:
    chat = db.get(Chat, data.chat_id)
    if chat is None:
        chat = Chat(
            id=data.chat_id,
            subject_id=subject.id,
            label=data.chat_label or "",
            is_group=data.is_group,
            platform=data.platform,
        )
        db.add(chat)
        db.flush()
        logger.info("New chat %s (%s) for subject %s", chat.id, chat.label, subject.id)
    elif chat.subject_id != subject.id:
        raise ChatOwnershipError(f"Chat {chat.id} does not belong to subject {subject.id}")
    return chat


def ingest_message(db: Session, data) -> dict:
    """Store *data* (a ``MessageIn``), pre-filter it, and route it.

    ``immediate`` messages go straight through Tier-1 (and Tier-2 when it
    escalates); ``batch`` messages join the chat's pending list, or are scanned
    at once when that list cannot be written. A failed inline scan queues the
    message for the batch scan. Unknown or unmonitored subjects are skipped
    without storing anything.
    """
    subject = db.get(Subject, data.subject_id)
    if subject is None:
        return {"skipped": True, "reason": "subject_not_found"}
    if not subject.monitoring_enabled:
        return {"skipped": True, "reason": "monitoring_disabled"}

    with log_context(subject_id=subject.id, chat_id=data.chat_id):
        if data.message_id and db.get(Message, data.message_id) is not None:
            logger.info("Duplicate delivery of message %s ignored", data.message_id)
            return {"skipped": True, "reason": "duplicate", "message_id": data.message_id}

        chat = _get_or_create_chat(db, subject, data)
        message = Message(
            chat_id=chat.id,
            subject_id=subject.id,
            sender_role=data.sender_role,
            sender_label=data.sender_label,
            modality=data.modality,
            text_content=data.text,
            caption=data.caption,
            transcript=data.transcript,
            media_url=data.media_url,
            sent_at=data.timestamp,
        )
        if data.message_id:
            message.id = data.message_id
        db.add(message)
        if chat.last_activity_at is None or data.timestamp > chat.last_activity_at:
            chat.last_activity_at = data.timestamp
        db.commit()
        mark_activity(db, chat.id, chat.last_activity_at)

        describe_media(db, message)

        extra_text = " ".join(t for t in (message.caption, message.transcript) if t)
        prefilter = analyze_message(message.id, message.text_content, extra_text or None)

        result = {
            "skipped": False,
            "message_id": message.id,
            "chat_id": chat.id,
            "prefilter": prefilter.to_dict(),
            "routed": prefilter.priority,
            "scan": None,
        }
        if prefilter.priority == PRIORITY_IMMEDIATE:
            logger.info("Message %s flagged %s, scanning now", message.id, prefilter.risk_codes)
            result["scan"] = scan_messages(db, subject, chat, [message])
        else:
            try:
                append_pending(db, chat.id, [message.id])
            except CheckpointConflictError:
                logger.error("Could not queue message %s for batch scan, scanning now", message.id, exc_info=True)
                result["routed"] = PRIORITY_IMMEDIATE
                result["scan"] = scan_messages(db, subject, chat, [message])
        return result
