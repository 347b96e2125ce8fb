"""ScanCheckpoint model: per-chat scheduling state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class ScanCheckpoint(Base):
    __tablename__ = "scan_checkpoints"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    chat_id: Mapped[str] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), unique=True
    )
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_smart_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    scan_interval_minutes: Mapped[int] = mapped_column(Integer, default=10)
    pending_batch_ids: Mapped[list] = mapped_column(JSON, default=list)
    # Bumped on every pending-list write; guards the optimistic update.
    version: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<ScanCheckpoint chat={self.chat_id} interval={self.scan_interval_minutes}m>"
