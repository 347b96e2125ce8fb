"""Tests for the Tier-1 -> Tier-2 chaining helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import provider_result, utcnow
from models.checkpoint import ScanCheckpoint
from services.escalation import context_window, scan_messages, signals_for_messages
from services.small_agent import run_small_agent


def test_signals_round_trip(db, subject, chat, add_message):
    first, second = add_message("where do you live?"), add_message("lol ok")
    reply = provider_result({
        "messages_analysis": [
            {"message_id": first.id, "risk_score": 55, "risk_codes": ["meetup", "CONTACT_INFO"], "escalate": True},
            {"message_id": second.id, "risk_score": 0, "risk_codes": [], "escalate": False},
        ],
    })
    with patch("services.small_agent.invoke_classifier", return_value=reply):
        run_small_agent(db, chat.id, subject.id, [first, second])

    db.expire_all()
    _, _, window = context_window(db, chat.id)
    by_message = {s.message_id: s for s in signals_for_messages(db, [m.id for m in window])}

    assert (by_message[first.id].risk_score, by_message[first.id].risk_codes, by_message[first.id].escalate) == \
        (55, ["MEETUP", "CONTACT_INFO"], True)
    assert (by_message[second.id].risk_score, by_message[second.id].risk_codes, by_message[second.id].escalate) == \
        (0, [], False)


def test_context_window_bounds_and_order(db, chat, add_message):
    add_message("too old", minutes_ago=90)
    kept = [add_message(f"m{i}", minutes_ago=50 - i * 10) for i in range(4)]

    timeframe_from, timeframe_to, messages = context_window(db, chat.id, now=utcnow(), limit=3)

    assert [m.text_content for m in messages] == ["m1", "m2", "m3"]
    assert messages[-1].id == kept[-1].id
    assert (timeframe_to - timeframe_from).total_seconds() == 3600


def test_signals_for_no_messages(db):
    assert signals_for_messages(db, []) == []


def test_scan_messages_skips_tier2_when_calm(db, subject, chat, add_message):
    message = add_message("good night")
    reply = provider_result({"messages_analysis": [
        {"message_id": message.id, "risk_score": 2, "risk_codes": [], "escalate": False}
    ]})
    with patch("services.small_agent.invoke_classifier", return_value=reply), \
         patch("services.escalation.run_smart_window") as smart:
        outcome = scan_messages(db, subject, chat, [message])

    smart.assert_not_called()
    assert outcome == {"chat_id": chat.id, "small": outcome["small"], "smart": None}
    assert outcome["small"]["should_trigger_smart"] is False


@pytest.mark.parametrize("requeue, expected", [(True, True), (False, False)])
def test_failed_tier1_requeues_unless_draining(db, subject, chat, add_message, requeue, expected):
    message = add_message("you up?")
    with patch("services.small_agent.invoke_classifier", return_value=provider_result(status="retryable")):
        outcome = scan_messages(db, subject, chat, [message], requeue=requeue)

    assert outcome["small"]["status"] == "retryable"
    db.expire_all()
    checkpoint = db.query(ScanCheckpoint).filter_by(chat_id=chat.id).one_or_none()
    pending = checkpoint.pending_batch_ids if checkpoint is not None else []
    assert (message.id in pending) is expected


def test_parse_error_is_not_requeued(db, subject, chat, add_message):
    message = add_message("hm")
    with patch("services.small_agent.invoke_classifier", return_value=provider_result("I think these messages are fine.")):
        outcome = scan_messages(db, subject, chat, [message])

    assert outcome["small"]["status"] == "parse_error"
    db.expire_all()
    checkpoint = db.query(ScanCheckpoint).filter_by(chat_id=chat.id).one_or_none()
    assert checkpoint is None or checkpoint.pending_batch_ids == []
