"""Input sanitization for untrusted conversation text.

Every message that reaches a prompt goes through :func:`sanitize` and is then
wrapped with :func:`spotlight` so the model can tell data from instructions.
"""

from __future__ import annotations

import re
import unicodedata

MAX_INPUT_CHARS = 10_000

FILTERED = "[filtered]"

SPOTLIGHT_START = "<|user_input_start|>"
SPOTLIGHT_END = "<|user_input_end|>"

# C0/C1 control characters except tab and newline.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

# Phrases that try to re-task the model (case-insensitive).
_INJECTION_PHRASES: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"ignore\s+(all\s+)?(previous|prior|above|all)\s+(instructions|prompts|rules)",
        r"disregard\s+(all\s+)?(previous|prior|above|all)(\s+(instructions|prompts|rules))?",
        r"forget\s+(all\s+)?(previous|prior|above)\s+(instructions|prompts|rules)",
        r"you\s+are\s+now\s+an?\b",
        r"pretend\s+you\s+are",
        r"act\s+as\s+if",
        r"new\s+instructions?\s*:",
        r"system\s*prompt",
        r"reveal\s+(your|the)\s+(instructions|prompt)",
    ]
]

# Tokens other models treat as role or data delimiters.
_DATA_MARKERS: list[re.Pattern[str]] = [
    re.compile(r"<\|[^|<>\n]{0,64}\|>"),
    re.compile(r"\[/?INST\]", re.IGNORECASE),
    re.compile(r"###\s*(system|user|assistant)\b", re.IGNORECASE),
]

# Pipes touching an angle bracket, left over from broken or nested markers.
_DELIMITER_PIPES = re.compile(r"(?<=<)\|+|(?<!\|)\|+(?=>)")


def _sanitize_once(text: str) -> str:
    text = _CONTROL_CHARS.sub("", text[:MAX_INPUT_CHARS])
    text = unicodedata.normalize("NFKC", text)
    for pattern in _INJECTION_PHRASES:
        text = pattern.sub(FILTERED, text)
    for pattern in _DATA_MARKERS:
        text = pattern.sub("", text)
    text = _DELIMITER_PIPES.sub("", text)
    return text[:MAX_INPUT_CHARS]


def sanitize(text: str) -> str:
    """Neutralize untrusted text before it enters a prompt.

    Strips control characters, applies NFKC, replaces injection phrases
    with ``[filtered]``, removes data-marker tokens and caps the length.
    Passes repeat until the text stops changing, so the function is
    idempotent: ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    current = text
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def detect_injection(text: str) -> bool:
    """Return True if *text* looks like a prompt-injection attempt."""
    if any(p.search(text) for p in _INJECTION_PHRASES):
        return True
    return any(p.search(text) for p in _DATA_MARKERS)


def spotlight(text: str) -> str:
    """Wrap already-sanitized text in data delimiters."""
    return f"{SPOTLIGHT_START}{text}{SPOTLIGHT_END}"
