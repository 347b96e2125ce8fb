"""Tests for the Tier-2 context agent and its Tier-3 fallback."""

from __future__ import annotations

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from config import settings
from conftest import provider_result, utcnow
from models.finding import Finding
from models.signal import SmartDecision
from models.usage import UsageMeter
from services.budget import month_key
from services.checkpoints import get_or_create_checkpoint
from services.llm import TIER_FALLBACK, TIER_SMART
from services.smart_agent import needs_fallback, run_smart_agent
from schemas.agents import SmartDecisionPayload


def _decision(action="alert", confidence=0.9, score=80, threat="grooming", reasons=None, evidence=None):
    return {
        "final_risk_score": score,
        "threat_type": threat,
        "confidence": confidence,
        "action": action,
        "key_reasons": reasons if reasons is not None else ["asks to keep secrets", "requests meeting"],
        "evidence_message_ids": evidence or [],
    }


def _seed_meter(db, subject_id, cost=0.0, fallback_calls=0):
    db.add(UsageMeter(
        subject_id=subject_id, month=month_key(), est_cost_usd=cost,
        small_calls=0, smart_calls=0, fallback_calls=fallback_calls, caption_calls=0,
    ))
    db.commit()


def _run(db, subject, chat, messages, signals=None):
    now = utcnow()
    return run_smart_agent(
        db, chat.id, subject.id,
        messages=messages,
        signals=signals or [],
        timeframe_from=now - timedelta(hours=1),
        timeframe_to=now,
        child_age=12,
    )


@pytest.fixture
def window(add_message):
    return [add_message("you're so mature for your age", minutes_ago=20),
            add_message("let's meet, don't tell anyone", minutes_ago=5)]


class TestNeedsFallback:
    @pytest.mark.parametrize("action, confidence, expected", [
        ("alert", 0.54, True),
        ("monitor", 0.10, True),
        ("alert", 0.55, False),
        ("monitor", 0.90, False),
        ("ignore", 0.10, False),
    ])
    def test_rule(self, action, confidence, expected):
        payload = SmartDecisionPayload(**_decision(action=action, confidence=confidence))
        assert needs_fallback(payload) is expected


class TestRunSmartAgent:
    def test_confident_alert_persists_and_emits_finding(self, db, subject, chat, window):
        reply = provider_result(_decision(evidence=[window[1].id]), model="gpt-4o")
        with patch("services.smart_agent.invoke_classifier", return_value=reply) as mock_invoke, \
             patch("services.notifications.NotificationDelivery.deliver", return_value=False):
            outcome = _run(db, subject, chat, window)

        assert mock_invoke.call_count == 1
        assert mock_invoke.call_args.args[0] == TIER_SMART
        assert outcome.status == "success"
        decision = db.query(SmartDecision).one()
        assert decision.action == "alert"
        assert decision.model_used == "gpt-4o"
        assert decision.used_fallback is False
        assert decision.evidence_message_ids == [window[1].id]

        finding = db.query(Finding).one()
        assert outcome.finding_id == finding.id
        assert finding.smart_decision_id == decision.id
        assert get_or_create_checkpoint(db, chat.id).last_smart_at is not None
        assert db.query(UsageMeter).one().smart_calls == 1

    @pytest.mark.parametrize("action", ["ignore", "monitor"])
    def test_non_alert_never_creates_finding(self, db, subject, chat, window, action):
        with patch("services.smart_agent.invoke_classifier",
                   return_value=provider_result(_decision(action=action, confidence=0.95))):
            outcome = _run(db, subject, chat, window)
        assert outcome.decision.action == action
        assert outcome.finding_id is None
        assert db.query(Finding).count() == 0

    def test_low_confidence_uses_fallback_when_allowed(self, db, subject, chat, window):
        first = provider_result(_decision(action="monitor", confidence=0.4, score=45), model="gpt-4o")
        second = provider_result(_decision(action="alert", confidence=0.85, score=75), model="gpt-4-turbo")
        with patch("services.smart_agent.invoke_classifier", side_effect=[first, second]) as mock_invoke, \
             patch("services.notifications.NotificationDelivery.deliver", return_value=False):
            outcome = _run(db, subject, chat, window)

        assert [c.args[0] for c in mock_invoke.call_args_list] == [TIER_SMART, TIER_FALLBACK]
        assert outcome.fallback_attempted is True
        decision = db.query(SmartDecision).one()
        assert decision.action == "alert"
        assert decision.confidence == pytest.approx(0.85)
        assert decision.used_fallback is True
        assert decision.model_used == "gpt-4-turbo"
        assert db.query(UsageMeter).one().fallback_calls == 1

    def test_low_confidence_ignore_skips_fallback(self, db, subject, chat, window):
        with patch("services.smart_agent.invoke_classifier",
                   return_value=provider_result(_decision(action="ignore", confidence=0.2, score=5))) as mock_invoke:
            outcome = _run(db, subject, chat, window)
        assert mock_invoke.call_count == 1
        assert outcome.fallback_attempted is False

    @pytest.mark.parametrize("cost, fallback_calls", [(0.5, 30), (5.0, 0)])
    def test_budget_blocks_fallback(self, db, subject, chat, window, caplog, cost, fallback_calls):
        _seed_meter(db, subject.id, cost=cost, fallback_calls=fallback_calls)
        reply = provider_result(_decision(action="monitor", confidence=0.3, score=50))
        with patch("services.smart_agent.invoke_classifier", return_value=reply) as mock_invoke, \
             caplog.at_level(logging.INFO, logger="services.smart_agent"):
            outcome = _run(db, subject, chat, window)

        assert mock_invoke.call_count == 1
        assert outcome.fallback_skipped_for_budget is True
        decision = db.query(SmartDecision).one()
        assert decision.confidence == pytest.approx(0.3)
        assert decision.used_fallback is False
        assert any("Fallback skipped for budget" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize("fallback_reply", [
        provider_result(status="retryable"),
        provider_result("the conversation looks risky", model="gpt-4-turbo"),
    ])
    def test_failed_fallback_keeps_original(self, db, subject, chat, window, fallback_reply):
        first = provider_result(_decision(action="alert", confidence=0.4, score=65), model="gpt-4o")
        with patch("services.smart_agent.invoke_classifier", side_effect=[first, fallback_reply]), \
             patch("services.notifications.NotificationDelivery.deliver", return_value=False):
            outcome = _run(db, subject, chat, window)

        assert outcome.fallback_attempted is True
        decision = db.query(SmartDecision).one()
        assert decision.used_fallback is False
        assert decision.model_used == "gpt-4o"
        assert decision.confidence == pytest.approx(0.4)
        assert db.query(Finding).count() == 1

    def test_parse_error_persists_neutral_decision(self, db, subject, chat, window):
        with patch("services.smart_agent.invoke_classifier",
                   return_value=provider_result("{\"action\": \"panic\"}")) as mock_invoke:
            outcome = _run(db, subject, chat, window)

        assert outcome.status == "parse_error"
        assert mock_invoke.call_count == 1
        decision = db.query(SmartDecision).one()
        assert (decision.action, decision.final_risk_score, decision.confidence) == ("ignore", 0, 0.0)
        assert decision.key_reasons == ["PARSE_ERROR"]
        assert db.query(Finding).count() == 0

    def test_provider_failure_persists_nothing(self, db, subject, chat, window):
        with patch("services.smart_agent.invoke_classifier", return_value=provider_result(status="fatal")):
            outcome = _run(db, subject, chat, window)
        assert outcome.status == "fatal"
        assert db.query(SmartDecision).count() == 0
        assert get_or_create_checkpoint(db, chat.id).last_smart_at is None

    def test_empty_window_is_skipped(self, db, subject, chat):
        with patch("services.smart_agent.invoke_classifier") as mock_invoke:
            outcome = _run(db, subject, chat, [])
        assert outcome.status == "skipped"
        mock_invoke.assert_not_called()


class TestOverBudgetScenario:
    """Over the soft limit, Tier-1 flags a meetup at 55, Tier-2 alerts with confidence 0.4."""

    def _scan(self, db, subject, chat, message, smart_replies):
        from services.escalation import scan_messages

        tier1 = provider_result({
            "messages_analysis": [
                {"message_id": message.id, "risk_score": 55, "risk_codes": ["MEETUP"], "escalate": False}
            ],
            "batch_escalate": False,
        })
        with patch("services.small_agent.invoke_classifier", return_value=tier1), \
             patch("services.smart_agent.invoke_classifier", side_effect=smart_replies) as smart_invoke, \
             patch("services.notifications.NotificationDelivery.deliver", return_value=False):
            outcome = scan_messages(db, subject, chat, [message])
        return outcome, smart_invoke

    def test_cap_reached_keeps_low_confidence_alert(self, db, subject, chat, add_message):
        _seed_meter(db, subject.id, cost=4.70, fallback_calls=settings.MAX_FALLBACK_CALLS)
        message = add_message("where do you live? let's meet")
        low = provider_result(_decision(action="alert", confidence=0.4, score=60), model="gpt-4o")

        outcome, smart_invoke = self._scan(db, subject, chat, message, [low])

        assert outcome["small"]["should_trigger_smart"] is True
        assert smart_invoke.call_count == 1
        assert outcome["smart"]["fallback_skipped_for_budget"] is True
        decision = db.query(SmartDecision).one()
        assert (decision.action, decision.confidence, decision.used_fallback) == ("alert", 0.4, False)
        assert db.query(Finding).filter_by(smart_decision_id=decision.id).count() == 1

    def test_under_cap_attempts_fallback(self, db, subject, chat, add_message):
        _seed_meter(db, subject.id, cost=4.70, fallback_calls=3)
        message = add_message("where do you live? let's meet")
        low = provider_result(_decision(action="alert", confidence=0.4, score=60), model="gpt-4o")
        strong = provider_result(_decision(action="alert", confidence=0.9, score=72), model="gpt-4-turbo")

        outcome, smart_invoke = self._scan(db, subject, chat, message, [low, strong])

        assert smart_invoke.call_count == 2
        decision = db.query(SmartDecision).one()
        assert decision.used_fallback is True
        assert db.query(Finding).one().risk_level == "high"
