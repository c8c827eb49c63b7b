"""Token estimation for conversation budgeting."""
from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_PUNCTUATION = frozenset(".,!?;:'\"-()[]{}@#$%^&*+=|\\/<>~`")
_ROLE_MARKERS = ("user:", "assistant:")


class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int:
        ...


class HeuristicTokenEstimator:
    """Word-length based approximation used when no tokenizer is available."""

    def estimate(self, text: str) -> int:
        if not text or text.isspace():
            return 0

        words = text.split()
        count = 0
        for word in words:
            length = len(word)
            if length <= 3:
                count += 1
            elif length <= 8:
                count += 2
            else:
                count += 3

        count += sum(1 for char in text if char in _PUNCTUATION)
        count += max(1, len(words) // 10)

        # BOS/EOS overhead for conversation-shaped text
        if any(marker in text for marker in _ROLE_MARKERS):
            count += 2

        return count


class TokenizerEstimator:
    """Exact counts from a tokenizer exposing ``encode(text)``.

    Falls back to the heuristic whenever the tokenizer raises, so callers can
    plug in a real tokenizer without changing eviction behaviour.
    """

    def __init__(self, tokenizer: Any, fallback: TokenEstimator | None = None) -> None:
        self._tokenizer = tokenizer
        self._fallback = fallback or HeuristicTokenEstimator()

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        try:
            encoded = self._tokenizer.encode(text)
        except Exception as exc:
            logger.warning("Tokenizer failed, using fallback estimation: %s", exc)
            return self._fallback.estimate(text)
        ids = getattr(encoded, "ids", encoded)
        return len(ids)


_DEFAULT = HeuristicTokenEstimator()


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text`` with the default heuristic."""
    return _DEFAULT.estimate(text)


__all__ = ["TokenEstimator", "HeuristicTokenEstimator", "TokenizerEstimator", "estimate_tokens"]
