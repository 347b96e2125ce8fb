"""Deterministic keyword and pattern triage ahead of any classifier call.

Pure functions only: no I/O, no state. Re-running over the same text always
yields the same result.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field

from schemas.agents import CRITICAL_CODES

# ── KEYWORD DICTIONARIES ─────────────────────────────────────
# Keys are the risk code a hit contributes. Matching runs on lower-cased
# text + caption.

KEYWORDS_EN: dict[str, list[str]] = {
    "GROOMING": [
        "secret", "between us", "dont tell", "don't tell", "parents wont understand",
        "parents won't understand", "special", "just ours", "nobody needs to know",
        "mature for your age",
    ],
    "MEETUP": [
        "lets meet", "let's meet", "meet up", "where do you live", "your address",
        "give me your number", "phone number", "come over", "pick you up",
    ],
    "SEXUAL": [
        "sexy", "youre hot", "you're hot", "naked", "undress", "kiss", "body",
    ],
    "NUDES_REQUEST": [
        "send me a pic", "send a pic", "show me", "send nudes", "take a photo of yourself",
    ],
    "EXTORTION": [
        "tell everyone", "post it", "pay me", "tell your parents", "or else",
        "i'll share", "ill share",
    ],
    "ISOLATION": [
        "dont tell anyone", "don't tell anyone", "only i understand", "nobody understands you",
        "your friends dont", "your friends don't", "your parents dont", "your parents don't",
    ],
}

KEYWORDS_HE: dict[str, list[str]] = {
    "GROOMING": [
        "סוד", "בינינו", "אל תספר", "אל תגיד", "הורים לא יבינו", "רק שלנו", "לא צריך לדעת",
    ],
    "MEETUP": [
        "בוא נפגש", "בואי נפגש", "נפגש", "איפה אתה גר", "איפה את גרה", "תן מספר", "תני מספר",
        "מספר טלפון", "כתובת",
    ],
    "SEXUAL": [
        "סקסי", "עירום", "תתפשט", "תתפשטי", "נשיקה",
    ],
    "NUDES_REQUEST": [
        "תמונה שלך", "תראה לי", "תראי לי", "תשלח תמונה", "תשלחי תמונה",
    ],
    "EXTORTION": [
        "אספר לכולם", "אפרסם", "תשלם", "תשלמי", "אגיד להורים",
    ],
    "ISOLATION": [
        "אל תגיד לאף אחד", "רק אני מבין", "רק אני מבינה", "אף אחד לא יבין",
        "החברים שלך לא", "ההורים שלך לא",
    ],
}

# Contact-info solicitation: phones, street addresses, social handles.
RISK_PATTERNS: list[re.Pattern] = [
    re.compile(r"\+?\d{9,15}"),
    re.compile(r"\d{1,5}\s+\w+\s+(st|street|ave|avenue|rd|road|blvd)\b", re.IGNORECASE),
    re.compile(r"\d{1,3}[\s,]+[א-ת]{2,}"),
    re.compile(r"@\w{2,}"),
    re.compile(r"\bsnap(chat)?\b\s*:?\s*@?\w{2,}", re.IGNORECASE),
    re.compile(r"\binsta(gram)?\b\s*:?\s*@?\w{2,}", re.IGNORECASE),
    re.compile(r"\btik\s*tok\b\s*:?\s*@?\w{2,}", re.IGNORECASE),
]

# English keywords match on word boundaries ("nobody" must not hit "body");
# Hebrew keeps substring matching because prefixes attach to the word.
_EN_MATCHERS: dict[str, list[tuple[str, re.Pattern]]] = {
    code: [(kw, re.compile(rf"\b{re.escape(kw)}\b")) for kw in keywords]
    for code, keywords in KEYWORDS_EN.items()
}

PRIORITY_IMMEDIATE = "immediate"
PRIORITY_BATCH = "batch"


@dataclass
class PreFilterResult:
    message_id: str
    is_suspicious: bool = False
    matched_keywords: list[str] = field(default_factory=list)
    matched_patterns: list[str] = field(default_factory=list)
    risk_codes: list[str] = field(default_factory=list)
    priority: str = PRIORITY_BATCH

    def to_dict(self) -> dict:
        return asdict(self)


def analyze_message(message_id: str, text: str | None, caption: str | None = None) -> PreFilterResult:
    """Match one message's text and caption against the keyword lists and patterns."""
    haystack = f"{text or ''} {caption or ''}".lower()
    result = PreFilterResult(message_id=message_id)
    if not haystack.strip():
        return result

    codes: list[str] = []
    for code, keywords in KEYWORDS_HE.items():
        for kw in keywords:
            if kw in haystack:
                result.matched_keywords.append(kw)
                if code not in codes:
                    codes.append(code)
    for code, matchers in _EN_MATCHERS.items():
        for kw, matcher in matchers:
            if matcher.search(haystack):
                result.matched_keywords.append(kw)
                if code not in codes:
                    codes.append(code)

    for pattern in RISK_PATTERNS:
        match = pattern.search(haystack)
        if match:
            result.matched_patterns.append(match.group(0))
    if result.matched_patterns:
        codes.append("CONTACT_INFO")

    result.risk_codes = codes
    result.is_suspicious = bool(result.matched_keywords or result.matched_patterns)
    has_critical = any(code in CRITICAL_CODES for code in codes)
    result.priority = PRIORITY_IMMEDIATE if (has_critical or result.is_suspicious) else PRIORITY_BATCH
    return result


def prefilter_messages(messages: list) -> list[PreFilterResult]:
    """Run :func:`analyze_message` over objects exposing ``id``, ``text_content`` and ``image_caption``."""
    return [
        analyze_message(m.id, getattr(m, "text_content", None), getattr(m, "image_caption", None))
        for m in messages
    ]


def summarize(results: list[PreFilterResult]) -> dict:
    suspicious = sum(1 for r in results if r.is_suspicious)
    immediate = sum(1 for r in results if r.priority == PRIORITY_IMMEDIATE)
    return {
        "total": len(results),
        "suspicious": suspicious,
        "clean": len(results) - suspicious,
        "immediate": immediate,
        "batch": len(results) - immediate,
    }
