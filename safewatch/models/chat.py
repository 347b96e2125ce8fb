"""Chat (conversation) and Message models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), index=True
    )
    label: Mapped[str] = mapped_column(String(255), default="")
    is_group: Mapped[bool] = mapped_column(Boolean, default=False)
    platform: Mapped[str] = mapped_column(String(50), default="whatsapp")
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    subject: Mapped["Subject"] = relationship("Subject", back_populates="chats")  # noqa: F821
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="chat", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Chat {self.id} ({self.label})>"


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    chat_id: Mapped[str] = mapped_column(ForeignKey("chats.id", ondelete="CASCADE"), index=True)
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), index=True
    )
    sender_role: Mapped[str] = mapped_column(String(10))  # child | other
    sender_label: Mapped[str] = mapped_column(String(255), default="")
    modality: Mapped[str] = mapped_column(String(10), default="text")  # text | image | audio | video
    text_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Backfilled by media understanding; the only mutable columns.
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    # Python-side default keeps sub-second precision for the scan cursor.
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, server_default=func.now(), index=True
    )

    chat: Mapped[Chat] = relationship("Chat", back_populates="messages")

    @property
    def has_audio(self) -> bool:
        return self.modality in ("audio", "video")

    def __repr__(self):
        return f"<Message {self.id} ({self.modality})>"
