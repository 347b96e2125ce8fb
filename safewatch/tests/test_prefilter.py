"""Tests for the deterministic pre-filter."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from services.prefilter import (
    PRIORITY_BATCH,
    PRIORITY_IMMEDIATE,
    analyze_message,
    prefilter_messages,
    summarize,
)


class TestCleanMessages:
    @pytest.mark.parametrize("text", [
        "see you at school tomorrow",
        "did you finish the math homework?",
        "nobody came to practice today",
        "mom says dinner at 7",
        "",
        None,
    ])
    def test_no_match_is_batch(self, text):
        result = analyze_message("m1", text)
        assert result.is_suspicious is False
        assert result.priority == PRIORITY_BATCH
        assert result.risk_codes == []

    def test_keywords_match_whole_words_in_english(self):
        # "somebody" must not hit the "body" keyword
        assert analyze_message("m1", "somebody left a jacket").is_suspicious is False
        assert "SEXUAL" in analyze_message("m2", "nice body").risk_codes


class TestSuspiciousMessages:
    def test_meetup_and_secrecy(self):
        result = analyze_message("m1", "Let's meet after school, don't tell your mom")
        assert result.is_suspicious is True
        assert result.priority == PRIORITY_IMMEDIATE
        assert "MEETUP" in result.risk_codes
        assert "GROOMING" in result.risk_codes
        assert "let's meet" in result.matched_keywords

    def test_hebrew_keywords(self):
        result = analyze_message("m1", "זה סוד רק בינינו")
        assert "GROOMING" in result.risk_codes
        assert result.priority == PRIORITY_IMMEDIATE

    def test_phone_number_is_contact_info(self):
        result = analyze_message("m1", "call me 0541234567")
        assert result.risk_codes == ["CONTACT_INFO"]
        assert result.matched_patterns == ["0541234567"]
        assert result.priority == PRIORITY_IMMEDIATE

    def test_social_handle(self):
        result = analyze_message("m1", "add me on snap: cool_kid22")
        assert "CONTACT_INFO" in result.risk_codes

    def test_snap_inside_word_is_not_a_handle(self):
        assert analyze_message("m1", "the branch snapped in the wind").is_suspicious is False

    def test_caption_is_scanned(self):
        result = analyze_message("m1", "look", caption="a naked person on a bed")
        assert "SEXUAL" in result.risk_codes

    def test_codes_are_not_duplicated(self):
        result = analyze_message("m1", "secret secret, it's a secret between us")
        assert result.risk_codes.count("GROOMING") == 1


class TestBatchHelpers:
    def test_prefilter_messages_and_summary(self):
        msgs = [
            SimpleNamespace(id="a", text_content="hello", image_caption=None),
            SimpleNamespace(id="b", text_content="send nudes", image_caption=None),
            SimpleNamespace(id="c", text_content=None, image_caption="a dog in a park"),
        ]
        results = prefilter_messages(msgs)
        assert [r.message_id for r in results] == ["a", "b", "c"]
        assert summarize(results) == {
            "total": 3,
            "suspicious": 1,
            "clean": 2,
            "immediate": 1,
            "batch": 2,
        }

    def test_rerun_is_identical(self):
        first = analyze_message("m1", "where do you live? my insta is @noa_12").to_dict()
        second = analyze_message("m1", "where do you live? my insta is @noa_12").to_dict()
        assert first == second
