"""Tests for the pending-list batch scan."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import TestSession, provider_result
from models.checkpoint import ScanCheckpoint
from models.signal import SmallSignal
from services.batch import process_pending_chat, run_batch_scan
from services.checkpoints import append_pending


def _pending(db, chat_id):
    db.expire_all()
    return db.query(ScanCheckpoint).filter_by(chat_id=chat_id).one().pending_batch_ids


def _tier1(messages, score=5):
    return provider_result({
        "messages_analysis": [
            {"message_id": m.id, "risk_score": score, "risk_codes": [], "escalate": False}
            for m in messages
        ],
    })


class TestProcessPendingChat:
    def test_success_consumes_pending(self, db, chat, add_message):
        messages = [add_message("hey"), add_message("what's up")]
        append_pending(db, chat.id, [m.id for m in messages])

        with patch("services.small_agent.invoke_classifier", return_value=_tier1(messages)):
            result = process_pending_chat(db, chat.id)

        assert result["processed"] == 2
        assert result["escalated"] is False
        assert _pending(db, chat.id) == []
        assert db.query(SmallSignal).count() == 2

    def test_parse_error_consumes_pending(self, db, chat, add_message):
        message = add_message("hey")
        append_pending(db, chat.id, [message.id])
        with patch("services.small_agent.invoke_classifier", return_value=provider_result("not json")):
            result = process_pending_chat(db, chat.id)
        assert result["status"] == "parse_error"
        assert _pending(db, chat.id) == []

    def test_provider_failure_keeps_pending(self, db, chat, add_message):
        message = add_message("hey")
        append_pending(db, chat.id, [message.id, "gone"])
        with patch("services.small_agent.invoke_classifier", return_value=provider_result(status="retryable")):
            result = process_pending_chat(db, chat.id)

        assert result["processed"] == 0
        assert result["dropped"] == 1
        assert _pending(db, chat.id) == [message.id]

    def test_ids_appended_during_scan_survive(self, db, chat, add_message):
        message = add_message("hey")
        append_pending(db, chat.id, [message.id])

        def scan_and_receive_more(db_, subject, chat_, messages, **kwargs):
            append_pending(db_, chat_.id, ["arrived-meanwhile"])
            return {"chat_id": chat_.id, "small": {"status": "success"}, "smart": None}

        with patch("services.batch.scan_messages", side_effect=scan_and_receive_more):
            process_pending_chat(db, chat.id)

        assert _pending(db, chat.id) == ["arrived-meanwhile"]

    def test_escalation_runs_tier2(self, db, chat, add_message):
        message = add_message("hey")
        append_pending(db, chat.id, [message.id])
        tier2 = provider_result({
            "final_risk_score": 20, "threat_type": "none", "confidence": 0.9,
            "action": "monitor", "key_reasons": [], "evidence_message_ids": [],
        }, model="gpt-4o")

        with patch("services.small_agent.invoke_classifier", return_value=_tier1([message], score=60)), \
             patch("services.smart_agent.invoke_classifier", return_value=tier2) as smart_invoke:
            result = process_pending_chat(db, chat.id)

        smart_invoke.assert_called_once()
        assert result["escalated"] is True

    def test_empty_pending(self, db, chat):
        assert process_pending_chat(db, chat.id) == {"chat_id": chat.id, "processed": 0}


class TestRunBatchScan:
    @pytest.fixture(autouse=True)
    def _sessions(self):
        with patch("services.batch.SessionLocal", TestSession):
            yield

    def test_scans_chats_with_pending_ids(self, db, chat, add_message):
        message = add_message("hey")
        append_pending(db, chat.id, [message.id])
        with patch("services.small_agent.invoke_classifier", return_value=_tier1([message])):
            summary = run_batch_scan()
        assert (summary["chats"], summary["processed"], summary["failed"]) == (1, 1, 0)

    def test_failure_is_isolated_per_chat(self, db, chat):
        append_pending(db, chat.id, ["m1"])
        with patch("services.batch.process_pending_chat", side_effect=RuntimeError("boom")):
            summary = run_batch_scan()
        assert summary["failed"] == 1
