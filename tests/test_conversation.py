from __future__ import annotations

import random
from datetime import timedelta

import pytest

from assistant.conversation import ConversationStore, Message, Role
from assistant.tokens import estimate_tokens


class _WordCounter:
    def estimate(self, text: str) -> int:
        return len(text.split())


def _words(count: int) -> str:
    return " ".join(["word"] * count)


def test_budget_invariant_holds_after_every_insert() -> None:
    rng = random.Random(7)
    store = ConversationStore()
    roles = [Role.USER, Role.ASSISTANT]
    for _ in range(1500):
        content = " ".join("lorem" * rng.randint(1, 3) for _ in range(rng.randint(1, 400)))
        store.add_message(Message(rng.choice(roles), content))
        assert store.total_tokens <= 32000
        assert store.message_count <= 1000
        assert store.total_tokens == sum(message.estimated_tokens for message in store.get_recent(len(store)))


def test_message_limit_evicts_from_front() -> None:
    store = ConversationStore(max_messages=3)
    messages = [store.add_message(Message(Role.USER, f"message {index}")) for index in range(5)]
    remaining = store.get_recent(10)
    assert [message.id for message in remaining] == [message.id for message in messages[2:]]


def test_token_eviction_skips_system_message() -> None:
    store = ConversationStore(max_session_tokens=30, estimator=_WordCounter())
    system = store.add_message(Message(Role.SYSTEM, _words(5)))
    first = store.add_message(Message(Role.USER, _words(10)))
    second = store.add_message(Message(Role.ASSISTANT, _words(10)))
    store.add_message(Message(Role.USER, _words(10)))

    assert system.id in store
    assert first.id not in store
    assert second.id in store
    assert store.total_tokens == 25


def test_token_eviction_stops_when_only_system_messages_remain(caplog: pytest.LogCaptureFixture) -> None:
    store = ConversationStore(max_session_tokens=5, estimator=_WordCounter())
    with caplog.at_level("WARNING", logger="assistant.conversation"):
        store.add_message(Message(Role.SYSTEM, _words(8)))
    assert store.message_count == 1
    assert store.total_tokens == 8
    assert "over the 5 token budget" in caplog.text


def test_get_recent_is_chronological() -> None:
    store = ConversationStore()
    for index in range(5):
        store.add_message(Message(Role.USER, f"m{index}"))
    assert [message.content for message in store.get_recent(3)] == ["m2", "m3", "m4"]
    assert store.get_recent(0) == []


def test_clear_issues_new_session() -> None:
    store = ConversationStore()
    store.add_message(Message(Role.USER, "hello"))
    previous = store.session_id
    new_id = store.clear()
    assert new_id != previous
    assert store.session_id == new_id
    assert store.message_count == 0
    assert store.total_tokens == 0


def test_update_message_rewrites_once() -> None:
    store = ConversationStore()
    placeholder = store.add_message(Message(Role.ASSISTANT, ""))
    assert placeholder.estimated_tokens == 0

    store.update_message(placeholder.id, "The final streamed answer.")
    assert placeholder.content == "The final streamed answer."
    assert store.total_tokens == estimate_tokens("The final streamed answer.")

    with pytest.raises(ValueError):
        store.update_message(placeholder.id, "again")
    with pytest.raises(KeyError):
        store.update_message("missing", "text")


def test_queries_and_summary() -> None:
    store = ConversationStore()
    store.add_message(Message(Role.USER, "Tell me about Python asyncio"))
    store.add_message(Message(Role.ASSISTANT, "Asyncio schedules coroutines on an event loop"))
    store.add_message(Message(Role.USER, "And python threads?"))

    assert len(store.messages_by_role("user")) == 2
    assert [message.role for message in store.search("PYTHON")] == [Role.USER, Role.USER]

    first = store.get_recent(3)[0]
    window = store.messages_between(first.timestamp - timedelta(seconds=1), first.timestamp)
    assert first in window

    summary = store.summary()
    assert summary.session_id == store.session_id
    assert summary.user_messages == 2
    assert summary.assistant_messages == 1
    assert "python" in summary.topics

    stats = store.statistics()
    assert stats.total_messages == 3
    assert stats.messages_last_hour == 3
    assert stats.longest_message is not None

    exported = store.export().as_dict()
    assert len(exported["messages"]) == 3
    assert exported["summary"]["message_count"] == 3


def test_context_for_ai_keeps_newest_within_budget() -> None:
    store = ConversationStore(estimator=_WordCounter())
    for count in (5, 5, 5):
        store.add_message(Message(Role.USER, _words(count)))
    selected = store.context_for_ai(max_tokens=11)
    assert selected == store.get_recent(2)


def test_sensitive_content_flag() -> None:
    assert Message(Role.USER, "my password is hunter2").contains_sensitive_info
    assert not Message(Role.USER, "what is the weather").contains_sensitive_info
