"""Monitored subject model."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    display_name: Mapped[str] = mapped_column(String(150), default="")
    age_range: Mapped[str] = mapped_column(String(20), default="")  # e.g. "10-12"
    monitoring_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    guardian_email: Mapped[str] = mapped_column(String(255), default="")
    share_with_educator: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    chats: Mapped[list["Chat"]] = relationship(  # noqa: F821
        "Chat", back_populates="subject", cascade="all, delete-orphan"
    )

    def age(self, default: int = 12) -> int:
        """Lower bound of ``age_range``; *default* when missing or unparsable."""
        head = (self.age_range or "").split("-")[0].strip()
        try:
            return int(head)
        except ValueError:
            return default

    def __repr__(self):
        return f"<Subject {self.id} ({'on' if self.monitoring_enabled else 'off'})>"
