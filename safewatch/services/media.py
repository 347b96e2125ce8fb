"""Media understanding client: captions for images, transcripts for audio/video."""

from __future__ import annotations

import logging
import time

import requests
from sqlalchemy.orm import Session

from config import settings
from services.budget import log_model_call, record_usage

logger = logging.getLogger(__name__)

MEDIA_MODEL = "media-service"


def _kind_for(modality: str) -> str | None:
    if modality == "image":
        return "caption"
    if modality in ("audio", "video"):
        return "transcript"
    return None


def describe_media(db: Session, message) -> str | None:
    """Fetch a caption or transcript for *message* and backfill it.

    Any failure (no service configured, HTTP error, empty reply) yields
    ``None`` and the pipeline carries on with whatever text it has.
    """
    kind = _kind_for(message.modality)
    if kind is None or not message.media_url:
        return None
    if getattr(message, kind):
        return getattr(message, kind)
    if not settings.MEDIA_SERVICE_URL:
        logger.debug("No media service configured, skipping %s for %s", kind, message.id)
        return None

    url = f"{settings.MEDIA_SERVICE_URL.rstrip('/')}/{kind}"
    started = time.monotonic()
    try:
        resp = requests.post(
            url,
            json={"media_url": message.media_url, "modality": message.modality},
            timeout=settings.COLLABORATOR_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.exception("Media %s failed for message %s", kind, message.id)
        log_model_call(
            db, f"media_{kind}", MEDIA_MODEL,
            latency_ms=int((time.monotonic() - started) * 1000),
            success=False, error_message=str(exc)[:500], subject_id=message.subject_id,
        )
        return None

    latency_ms = int((time.monotonic() - started) * 1000)
    text = (data.get(kind) or data.get("text") or "").strip() if isinstance(data, dict) else ""
    log_model_call(
        db, f"media_{kind}", MEDIA_MODEL,
        latency_ms=latency_ms, success=bool(text), subject_id=message.subject_id,
    )
    if not text:
        return None

    setattr(message, kind, text)
    db.commit()
    record_usage(
        db, message.subject_id, "caption", 0, 0, MEDIA_MODEL,
        cost_usd=settings.CAPTION_COST_USD,
    )
    return text
