"""Ingestion and pre-filter Pydantic schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, field_validator

SenderRoleStr = Literal["child", "other"]
ModalityStr = Literal["text", "image", "audio", "video"]


class MessageIn(BaseModel):
    subject_id: str
    chat_id: str
    # Connector-side id; re-delivered webhooks with the same id are ignored.
    message_id: str | None = None
    chat_label: str = ""
    is_group: bool = False
    platform: str = "whatsapp"
    sender_role: SenderRoleStr
    sender_label: str = ""
    modality: ModalityStr = "text"
    text: str | None = None
    caption: str | None = None
    transcript: str | None = None
    media_url: str | None = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def naive_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class PreFilterMessageIn(BaseModel):
    id: str
    text_content: str | None = None
    image_caption: str | None = None


class PreFilterRequest(BaseModel):
    messages: list[PreFilterMessageIn]


class PreFilterResultOut(BaseModel):
    message_id: str
    is_suspicious: bool
    matched_keywords: list[str]
    matched_patterns: list[str]
    risk_codes: list[str]
    priority: Literal["immediate", "batch"]


class PreFilterSummary(BaseModel):
    total: int
    suspicious: int
    clean: int
    immediate: int
    batch: int


class PreFilterResponse(BaseModel):
    results: list[PreFilterResultOut]
    summary: PreFilterSummary
