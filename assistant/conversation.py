"""Bounded conversation history with message-count and token-budget eviction."""
from __future__ import annotations

import json
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from assistant.tokens import HeuristicTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 1000
DEFAULT_MAX_SESSION_TOKENS = 32000

_SENSITIVE_KEYWORDS = (
    "password",
    "credit card",
    "ssn",
    "social security",
    "api key",
    "token",
    "private key",
)

_STOPWORDS = frozenset(
    """
    the a an and or but in on at to for of with by how what where when why who can could would should will
    do does did is are was were be been have has had get got make made take took go went come came see saw
    know knew think thought tell told say said give gave find found work worked call called try tried ask
    asked need needed feel felt become became leave left put let mean meant keep kept start started seem
    seemed help helped show showed hear heard play played run ran move moved live lived believe believed
    bring brought happen happened write wrote provide provided it this that i you we they he she me my your
    our their is not no yes so if then than there here just also about into from up out
    """.split()
)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    def __str__(self) -> str:
        return self.value


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(eq=False)
class Message:
    """A single conversation entry.

    ``content`` may be rewritten once after creation (streaming placeholders);
    every other field is fixed. ``estimated_tokens`` is assigned by the store.
    """

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    context_snapshot: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    estimated_tokens: int = field(default=0, init=False)
    _rewritten: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.role = Role(self.role)

    @property
    def rewritten(self) -> bool:
        return self._rewritten

    @property
    def contains_sensitive_info(self) -> bool:
        lowered = self.content.lower()
        return any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS)

    def metadata_text(self) -> str:
        if not self.metadata:
            return ""
        return json.dumps(self.metadata, sort_keys=True, default=str)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "context_snapshot": self.context_snapshot,
            "metadata": self.metadata,
            "estimated_tokens": self.estimated_tokens,
        }


@dataclass(frozen=True)
class ConversationSummary:
    session_id: str
    message_count: int
    user_messages: int
    assistant_messages: int
    start_time: datetime
    end_time: datetime
    total_tokens: int
    topics: tuple[str, ...]

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ConversationStatistics:
    total_messages: int
    messages_last_hour: int
    messages_last_day: int
    average_message_length: float
    longest_message: Optional[Message]
    shortest_message: Optional[Message]
    most_active_hour: Optional[int]


@dataclass(frozen=True)
class ConversationExport:
    session_id: str
    exported_at: datetime
    messages: tuple[Message, ...]
    summary: ConversationSummary

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "exported_at": self.exported_at.isoformat(),
            "messages": [message.as_dict() for message in self.messages],
            "summary": {
                "message_count": self.summary.message_count,
                "user_messages": self.summary.user_messages,
                "assistant_messages": self.summary.assistant_messages,
                "total_tokens": self.summary.total_tokens,
                "topics": list(self.summary.topics),
            },
        }


class ConversationStore:
    """Ordered message log owned by a single assistant instance.

    After every mutation ``len(messages) <= max_messages`` and
    ``total_tokens <= max_session_tokens`` (as far as non-system messages can
    be evicted), with ``total_tokens`` equal to the sum over stored messages.
    """

    def __init__(
        self,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        max_session_tokens: int = DEFAULT_MAX_SESSION_TOKENS,
        estimator: TokenEstimator | None = None,
    ) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        if max_session_tokens <= 0:
            raise ValueError("max_session_tokens must be positive")
        self.max_messages = int(max_messages)
        self.max_session_tokens = int(max_session_tokens)
        self._estimator = estimator or HeuristicTokenEstimator()
        self._messages: list[Message] = []
        self._total_tokens = 0
        self._session_id = str(uuid.uuid4())
        logger.debug("Conversation session %s started", self._session_id)

    # ------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return any(message.id == message_id for message in self._messages)

    # ------------------------------------------------------------------
    def add_message(self, message: Message) -> Message:
        message.estimated_tokens = self._estimate(message)
        self._messages.append(message)
        self._total_tokens += message.estimated_tokens
        logger.debug("Added %s message (%d tokens)", message.role.value, message.estimated_tokens)
        self._enforce_limits()
        return message

    def update_message(self, message_id: str, content: str) -> Message:
        """Rewrite a message's content once, keeping the token total exact."""
        message = self.get(message_id)
        if message is None:
            raise KeyError(f"Unknown message id: {message_id}")
        if message.rewritten:
            raise ValueError(f"Message {message_id} has already been rewritten")
        self._total_tokens -= message.estimated_tokens
        message.content = content
        message._rewritten = True
        message.estimated_tokens = self._estimate(message)
        self._total_tokens += message.estimated_tokens
        self._enforce_limits()
        return message

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def get_recent(self, limit: int = 20) -> list[Message]:
        if limit <= 0:
            return []
        return list(self._messages[-limit:])

    def clear(self) -> str:
        previous = len(self._messages)
        self._messages.clear()
        self._total_tokens = 0
        self._session_id = str(uuid.uuid4())
        logger.info("Cleared %d messages from conversation history", previous)
        return self._session_id

    # ------------------------------------------------------------------
    def messages_by_role(self, role: Role | str) -> list[Message]:
        wanted = Role(role)
        return [message for message in self._messages if message.role is wanted]

    def messages_between(self, start: datetime, end: datetime) -> list[Message]:
        return [message for message in self._messages if start <= message.timestamp <= end]

    def search(self, query: str) -> list[Message]:
        needle = query.lower()
        return [message for message in self._messages if needle in message.content.lower()]

    def context_for_ai(self, max_tokens: int = 8000) -> list[Message]:
        """Newest messages that fit in ``max_tokens``, in chronological order."""
        selected: list[Message] = []
        used = 0
        for message in reversed(self._messages):
            if used + message.estimated_tokens > max_tokens:
                break
            selected.append(message)
            used += message.estimated_tokens
        selected.reverse()
        return selected

    def summary(self) -> ConversationSummary:
        now = _utcnow()
        return ConversationSummary(
            session_id=self._session_id,
            message_count=len(self._messages),
            user_messages=len(self.messages_by_role(Role.USER)),
            assistant_messages=len(self.messages_by_role(Role.ASSISTANT)),
            start_time=self._messages[0].timestamp if self._messages else now,
            end_time=self._messages[-1].timestamp if self._messages else now,
            total_tokens=self._total_tokens,
            topics=tuple(self._extract_topics()),
        )

    def statistics(self) -> ConversationStatistics:
        now = _utcnow()
        if self._messages:
            average = sum(len(message.content) for message in self._messages) / len(self._messages)
            longest = max(self._messages, key=lambda message: len(message.content))
            shortest = min(self._messages, key=lambda message: len(message.content))
            hours = Counter(message.timestamp.hour for message in self._messages)
            most_active: Optional[int] = hours.most_common(1)[0][0]
        else:
            average, longest, shortest, most_active = 0.0, None, None, None
        return ConversationStatistics(
            total_messages=len(self._messages),
            messages_last_hour=len(self.messages_between(now - timedelta(hours=1), now)),
            messages_last_day=len(self.messages_between(now - timedelta(days=1), now)),
            average_message_length=average,
            longest_message=longest,
            shortest_message=shortest,
            most_active_hour=most_active,
        )

    def export(self) -> ConversationExport:
        return ConversationExport(
            session_id=self._session_id,
            exported_at=_utcnow(),
            messages=tuple(self._messages),
            summary=self.summary(),
        )

    # ------------------------------------------------------------------
    def _estimate(self, message: Message) -> int:
        return self._estimator.estimate(message.content) + self._estimator.estimate(message.metadata_text())

    def _enforce_limits(self) -> None:
        while self._total_tokens > self.max_session_tokens:
            index = next(
                (i for i, message in enumerate(self._messages) if message.role is not Role.SYSTEM),
                None,
            )
            if index is None:
                logger.warning(
                    "System messages alone hold %d tokens, over the %d token budget",
                    self._total_tokens,
                    self.max_session_tokens,
                )
                break
            removed = self._messages.pop(index)
            self._total_tokens -= removed.estimated_tokens
            logger.debug("Evicted %s message to enforce token limit", removed.role.value)

        while len(self._messages) > self.max_messages:
            removed = self._messages.pop(0)
            self._total_tokens -= removed.estimated_tokens
            logger.debug("Evicted oldest message to enforce message limit")

    def _extract_topics(self, limit: int = 10) -> list[str]:
        frequency: Counter[str] = Counter()
        for message in self._messages:
            for word in message.content.lower().split():
                cleaned = word.strip(".,!?;:'\"()[]{}<>-")
                if cleaned and cleaned not in _STOPWORDS:
                    frequency[cleaned] += 1
        return [word for word, _ in frequency.most_common(limit)]


__all__ = [
    "Role",
    "Message",
    "ConversationStore",
    "ConversationSummary",
    "ConversationStatistics",
    "ConversationExport",
    "DEFAULT_MAX_MESSAGES",
    "DEFAULT_MAX_SESSION_TOKENS",
]
