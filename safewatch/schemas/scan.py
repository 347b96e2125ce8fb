"""Scan trigger, budget, and finding Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ScanTriggerIn(BaseModel):
    subject_id: str
    force: bool = False


class BudgetStatusOut(BaseModel):
    subject_id: str
    month: str
    est_cost_usd: float = 0.0
    small_calls: int = 0
    smart_calls: int = 0
    fallback_calls: int = 0
    caption_calls: int = 0
    soft_limit_exceeded: bool = False
    hard_limit_exceeded: bool = False
    fallback_allowed: bool = True


class FindingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subject_id: str
    chat_id: str | None = None
    smart_decision_id: str | None = None
    threat_detected: bool
    risk_level: str
    threat_types: list[str] = []
    explanation: str = ""
    handled: bool = False
    handled_at: datetime | None = None
    notified_at: datetime | None = None
    created_at: datetime | None = None


class FindingUpdate(BaseModel):
    handled: bool
