from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class Intent(str, Enum):
    CREATE_MARKET = "create_market"
    UNKNOWN = "unknown"


MENTION_RE = re.compile(r"@\w+")
CREATE_MARKET_PATTERNS = [
    re.compile(r"\bcreate\s+(?:a\s+)?(?:prediction\s+)?markets?\b", re.IGNORECASE),
    re.compile(r"\bnew\s+(?:prediction\s+)?markets?\b", re.IGNORECASE),
    re.compile(r"\bmake\s+(?:a\s+)?(?:prediction\s+)?markets?\b", re.IGNORECASE),
]


@dataclass
class ParsedMessage:
    intent: Intent
    text: str


def strip_mentions(text: str) -> str:
    return MENTION_RE.sub("", text or "").strip()


def parse_message(text: str) -> ParsedMessage:
    cleaned = strip_mentions(text)
    if any(p.search(cleaned) for p in CREATE_MARKET_PATTERNS):
        return ParsedMessage(Intent.CREATE_MARKET, cleaned)
    return ParsedMessage(Intent.UNKNOWN, cleaned)


def detect_create_market_intent(text: str) -> bool:
    return parse_message(text).intent == Intent.CREATE_MARKET
