"""Strict result schemas for classifier payloads (Tier-1 / Tier-2 / Tier-3)."""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

RISK_CODES: tuple[str, ...] = (
    "GROOMING",
    "MEETUP",
    "SEXUAL",
    "NUDES_REQUEST",
    "EXTORTION",
    "ISOLATION",
    "CONTACT_INFO",
    "VIOLENCE",
    "MANIPULATION",
)

# Any of these on a Tier-1 result escalates the chat to Tier-2.
CRITICAL_CODES: frozenset[str] = frozenset(
    {"MEETUP", "EXTORTION", "NUDES_REQUEST", "ISOLATION", "GROOMING"}
)

ThreatTypeStr = Literal["grooming", "sexual_content", "violence", "extortion", "manipulation", "none"]
ActionStr = Literal["ignore", "monitor", "alert"]

THREAT_TYPES: tuple[str, ...] = ThreatTypeStr.__args__  # type: ignore[attr-defined]
ACTIONS: tuple[str, ...] = ActionStr.__args__  # type: ignore[attr-defined]


class SmallAgentMessageResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: str
    risk_score: int = Field(ge=0, le=100)
    risk_codes: list[str] = []
    escalate: bool = False

    @field_validator("risk_score", mode="before")
    @classmethod
    def round_score(cls, v):
        return round(v) if isinstance(v, float) and math.isfinite(v) else v

    @field_validator("risk_codes", mode="before")
    @classmethod
    def normalize_codes(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("risk_codes must be a list")
        codes: list[str] = []
        for code in v:
            if not isinstance(code, str):
                raise ValueError("risk_codes entries must be strings")
            upper = code.strip().upper()
            if upper in RISK_CODES and upper not in codes:
                codes.append(upper)
        return codes


class SmallAgentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages_analysis: list[SmallAgentMessageResult] = []
    batch_escalate: bool = False


class SmartDecisionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    final_risk_score: int = Field(ge=0, le=100)
    threat_type: ThreatTypeStr = "none"
    confidence: float = Field(ge=0.0, le=1.0)
    action: ActionStr
    key_reasons: list[str] = []
    evidence_message_ids: list[str] = []

    @field_validator("final_risk_score", mode="before")
    @classmethod
    def round_score(cls, v):
        return round(v) if isinstance(v, float) and math.isfinite(v) else v

    @field_validator("threat_type", "action", mode="before")
    @classmethod
    def lower_label(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("key_reasons", "evidence_message_ids", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v

    @classmethod
    def neutral(cls, reason: str = "PARSE_ERROR") -> "SmartDecisionPayload":
        """Decision used when a classifier reply cannot be trusted."""
        return cls(
            final_risk_score=0,
            threat_type="none",
            confidence=0.0,
            action="ignore",
            key_reasons=[reason],
            evidence_message_ids=[],
        )
