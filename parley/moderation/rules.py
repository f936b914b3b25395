"""Built-in guardrail rules.

Every rule has a bounded ``max_length`` so streamed output can be checked
with a fixed-size holdback window.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: re.Pattern[str]
    max_length: int
    kind: str  # "category" | "keyword" | "pii"


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    description: str
    keywords: tuple[str, ...]


PREDEFINED_CATEGORIES: dict[str, Category] = {
    c.id: c
    for c in [
        Category(
            "legal_advice",
            "Legal Advice",
            "Prevents legal opinions or recommendations",
            ("hereby", "pursuant", "legally binding", "sue", "litigation", "statute", "liability"),
        ),
        Category(
            "pricing_commitments",
            "Pricing Commitments",
            "Blocks specific pricing quotes or discount promises",
            ("guarantee price", "lock in rate", "special discount", "custom pricing", "waive fee"),
        ),
        Category(
            "competitor_bashing",
            "Competitor Mentions",
            "Avoids negative competitor references",
            ("better than", "unlike", "competitor fails"),
        ),
        Category(
            "medical_advice",
            "Medical Advice",
            "Prevents health or medical recommendations",
            ("diagnose", "prescribe", "treatment plan", "medical advice"),
        ),
        Category(
            "financial_advice",
            "Financial Advice",
            "Blocks investment or financial guidance",
            ("invest in", "financial advice", "guaranteed returns", "buy recommendation", "sell recommendation"),
        ),
        Category(
            "hr_decisions",
            "HR Decisions",
            "Prevents employment-related commitments",
            ("you are fired", "terminated", "promote you", "salary increase guaranteed"),
        ),
        Category(
            "nda_confidential",
            "Confidential Information",
            "Blocks sharing of marked confidential content",
            ("confidential", "proprietary", "trade secret", "under nda"),
        ),
    ]
}


# Secret / PII patterns.  Quantifiers are bounded on purpose.
_PII_SOURCES: list[tuple[str, str, int, int]] = [
    ("ssn", r"\b\d{3}-\d{2}-\d{4}\b", 0, 11),
    ("credit_card", r"\b(?:\d{4}[-\s]?){3}\d{4}\b", 0, 19),
    ("api_key_aws", r"\bAKIA[0-9A-Z]{16}\b", 0, 20),
    ("private_key", r"-----BEGIN\s{1,4}(?:RSA\s{1,4})?PRIVATE\s{1,4}KEY-----", 0, 40),
    ("bearer_token", r"\bBearer\s{1,4}[A-Za-z0-9\-._~+/]{8,64}={0,2}", 0, 76),
    (
        "password_assignment",
        r"(?:password|passwd|secret)\s{0,4}=\s{0,4}['\"][^'\"]{8,64}",
        re.IGNORECASE,
        82,
    ),
    ("api_key_sk", r"\bsk-[A-Za-z0-9_\-]{20,64}", 0, 67),
    ("slack_token", r"\bxox[abprs]-[A-Za-z0-9\-]{10,64}", 0, 69),
]

PII_RULES: dict[str, Rule] = {
    name: Rule(name, re.compile(source, flags), max_length, "pii")
    for name, source, flags, max_length in _PII_SOURCES
}


def keyword_rule(name: str, keyword: str, kind: str) -> Rule:
    """Case-insensitive, word-bounded literal match."""
    pattern = re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
    return Rule(name, pattern, len(keyword), kind)


def category_rules(category_id: str) -> list[Rule]:
    category = PREDEFINED_CATEGORIES.get(category_id)
    if category is None:
        return []
    return [keyword_rule(category.id, kw, "category") for kw in category.keywords]
