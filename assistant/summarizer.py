"""TL;DR generation for the current page with output validation and salvage."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from assistant.collaborators import InferenceEngine, call
from assistant.config import section

logger = logging.getLogger(__name__)

UNABLE_TO_SUMMARIZE = "Unable to summarize this page."

_HTML_TAG = re.compile(r"<\s*/?\s*[a-zA-Z][a-zA-Z0-9-]*(\s|>|/)")
_HTML_TAG_FULL = re.compile(r"<\s*/?\s*[a-zA-Z][^>\n]*>?")
_HTML_ATTRIBUTES = ("class=", "href=")
_CONFUSED_PHRASES = (
    "i understand",
    "please provide more context",
    "i'm not sure",
    "i am not sure",
    "as an ai",
    "i apologize",
    "could you please",
    "i cannot",
)
_CONFUSED_LIMIT = 2


def build_prompt(title: str, text: str, prefix_chars: int = 1500) -> str:
    return (
        "Summarize the following web page.\n"
        "Start with exactly one emoji describing its tone: 📰 neutral, 👍 positive, ⚠️ negative.\n"
        "Then write 2-3 short bullet points, each starting with '• '.\n"
        "Do not add any other text.\n\n"
        f"Title: {title}\n"
        f"Content: {text[:prefix_chars]}\n\n"
        "TL;DR:"
    )


def build_retry_prompt(title: str, text: str, prefix_chars: int = 800) -> str:
    return f"Give 2 short bullet points about this page.\nTitle: {title}\nContent: {text[:prefix_chars]}\n"


def _words(text: str) -> list[str]:
    normalized = (re.sub(r"[^0-9a-z]+", "", token.lower()) for token in text.split())
    return [word for word in normalized if word]


def _has_adjacent_duplicate(words: list[str]) -> bool:
    return any(first == second for first, second in zip(words, words[1:]))


def _has_repeated_phrase(words: list[str], repeats: int = 3) -> bool:
    for size in range(3, 7):
        limit = len(words) - size * repeats + 1
        for start in range(max(0, limit)):
            phrase = words[start:start + size]
            if all(words[start + size * n:start + size * (n + 1)] == phrase for n in range(1, repeats)):
                return True
    return False


def _confused_hits(text: str) -> int:
    lowered = text.lower().replace("’", "'")
    return sum(lowered.count(phrase) for phrase in _CONFUSED_PHRASES)


def invalid_reason(summary: str, min_length: int = 20) -> Optional[str]:
    """Why ``summary`` should not be shown, or ``None`` when it is acceptable."""
    stripped = summary.strip()
    if len(stripped) < min_length:
        return "too short"
    lowered = stripped.lower()
    if _HTML_TAG.search(stripped) or any(attr in lowered for attr in _HTML_ATTRIBUTES):
        return "html fragment"
    words = _words(stripped)
    if _has_adjacent_duplicate(words):
        return "duplicate word"
    if _has_repeated_phrase(words):
        return "repeated phrase"
    if _confused_hits(stripped) >= _CONFUSED_LIMIT:
        return "confused output"
    return None


def is_invalid_summary(summary: str, min_length: int = 20) -> bool:
    return invalid_reason(summary, min_length) is not None


def _collapse_repeats(tokens: list[str]) -> list[str]:
    for size in range(6, 0, -1):
        result: list[str] = []
        index = 0
        while index < len(tokens):
            chunk = tokens[index:index + size]
            key = _words(" ".join(chunk))
            following = index + size
            if key and len(chunk) == size:
                while following + size <= len(tokens) and _words(" ".join(tokens[following:following + size])) == key:
                    following += size
            if following > index + size:
                result.extend(chunk)
                index = following
            else:
                result.append(tokens[index])
                index += 1
        tokens = result
    return tokens


def salvage_summary(summary: str) -> str:
    """Strip markup and collapse consecutive repeated phrases, line by line."""
    text = _HTML_TAG_FULL.sub(" ", summary)
    lines = []
    for line in text.splitlines():
        tokens = line.split()
        if not tokens:
            continue
        lines.append(" ".join(_collapse_repeats(tokens)))
    return "\n".join(lines).strip()


class PageSummarizer:
    """Produces a short TL;DR with one retry and a deterministic salvage pass."""

    def __init__(self, engine: InferenceEngine, config: Optional[Dict[str, Any]] = None) -> None:
        settings = section("summarizer", config)
        self._engine = engine
        self.prefix_chars = int(settings.get("prefix_chars", 1500))
        self.retry_prefix_chars = int(settings.get("retry_prefix_chars", 800))
        self.min_length = int(settings.get("min_length", 20))

    async def summarize(self, title: str, text: str) -> str:
        first = (await call(self._engine.raw_generate, build_prompt(title, text, self.prefix_chars))).strip()
        reason = invalid_reason(first, self.min_length)
        if reason is None:
            return first
        logger.info("TL;DR rejected (%s), retrying with a shorter prompt", reason)

        retry = (
            await call(self._engine.raw_generate, build_retry_prompt(title, text, self.retry_prefix_chars))
        ).strip()
        reason = invalid_reason(retry, self.min_length)
        if reason is None:
            return retry
        logger.info("TL;DR retry rejected (%s), salvaging", reason)

        salvaged = salvage_summary(retry)
        if not is_invalid_summary(salvaged, self.min_length):
            return salvaged
        logger.warning("Unable to produce a usable TL;DR for %r", title)
        return UNABLE_TO_SUMMARIZE


__all__ = [
    "PageSummarizer",
    "build_prompt",
    "build_retry_prompt",
    "invalid_reason",
    "is_invalid_summary",
    "salvage_summary",
    "UNABLE_TO_SUMMARIZE",
]
