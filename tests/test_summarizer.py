from __future__ import annotations

import asyncio

import pytest

from assistant.collaborators import PageContext
from assistant.errors import Busy, ContextProcessingFailed, InferenceError, NotInitialized
from assistant.state import Activity
from assistant.summarizer import (
    UNABLE_TO_SUMMARIZE,
    build_prompt,
    invalid_reason,
    is_invalid_summary,
    salvage_summary,
)
from tests.fakes import Harness

PAGE = "Python 3.13 ships a new interactive interpreter. " * 60


@pytest.mark.parametrize(
    ("text", "invalid"),
    [
        ("I understand, I understand, please provide more context", True),
        ("📰\n• Point one\n• Point two", False),
        ('<div class="summary">Point one and point two</div>', True),
        ("it it is great", True),
    ],
)
def test_invalid_output_detector(text: str, invalid: bool) -> None:
    assert is_invalid_summary(text) is invalid


def test_detector_reasons() -> None:
    assert invalid_reason("short") == "too short"
    assert invalid_reason('see <a href="x">the link</a> for details') == "html fragment"
    assert invalid_reason("👍 The release is great great for everyone") == "duplicate word"
    looping = "• the model is fast the model is fast the model is fast"
    assert invalid_reason(looping) == "repeated phrase"
    assert invalid_reason("📰 As an AI I cannot summarize this page for you") == "confused output"


def test_salvage_collapses_repeats_and_strips_markup() -> None:
    salvaged = salvage_summary("📰\n• <b>Great Great</b> news about the launch\n• it is fast it is fast it is fast")
    assert salvaged == "📰\n• Great news about the launch\n• it is fast"


def test_prompt_uses_bounded_prefix() -> None:
    prompt = build_prompt("Title", "x" * 5000)
    assert "x" * 1500 in prompt
    assert "x" * 1501 not in prompt


def _summarize(harness: Harness, **kwargs):
    async def scenario():
        assistant = await harness.ready()
        activities = []
        assistant.subscribe(lambda state: activities.append(state.activity.kind))
        result = await assistant.summarize_page(**kwargs)
        return assistant, result, activities

    return asyncio.run(scenario())


def test_valid_first_attempt_is_returned() -> None:
    harness = Harness()
    harness.engine.raw_outputs = ["📰\n• Python gets a new REPL\n• Colors and multiline editing"]

    assistant, result, activities = _summarize(harness, page_title="Release", page_text=PAGE)

    assert result.startswith("📰")
    assert len(harness.engine.prompts) == 1
    assert "Title: Release" in harness.engine.prompts[0]
    assert activities == [Activity.TYPING, Activity.IDLE]
    assert assistant.store.message_count == 0


def test_invalid_output_is_retried_with_shorter_prompt() -> None:
    harness = Harness()
    harness.engine.raw_outputs = ["I understand. I understand.", "👍\n• A faster interpreter\n• Better errors"]

    _, result, _ = _summarize(harness, page_title="Release", page_text=PAGE)

    assert result == "👍\n• A faster interpreter\n• Better errors"
    first, retry = harness.engine.prompts
    assert len(retry) < len(first)


def test_retry_output_is_salvaged() -> None:
    harness = Harness()
    harness.engine.raw_outputs = ["<p>", "📰\n• Great Great news about the interpreter"]

    _, result, _ = _summarize(harness, page_title="Release", page_text=PAGE)

    assert result == "📰\n• Great news about the interpreter"


def test_unsalvageable_output_returns_sentinel() -> None:
    harness = Harness()
    harness.engine.raw_outputs = ["as an AI i cannot", "I apologize, could you please clarify"]

    assistant, result, _ = _summarize(harness, page_title="Release", page_text=PAGE)

    assert result == UNABLE_TO_SUMMARIZE
    assert assistant.state.activity.kind is Activity.IDLE


def test_page_is_read_from_context_provider() -> None:
    harness = Harness()
    harness.context.set_page(PageContext(title="From Provider", text=PAGE))
    harness.engine.raw_outputs = ["📰\n• Python gets a new REPL\n• Colors everywhere"]

    _summarize(harness)

    assert "Title: From Provider" in harness.engine.prompts[0]


def test_empty_page_fails() -> None:
    harness = Harness()
    with pytest.raises(ContextProcessingFailed):
        _summarize(harness, page_title="Blank", page_text="   ")


def test_summary_requires_initialization() -> None:
    harness = Harness()
    with pytest.raises(NotInitialized):
        asyncio.run(harness.build().summarize_page("t", PAGE))


def test_summary_while_busy_fails_fast() -> None:
    harness = Harness()
    harness.engine.fragments = ["a", "b"]

    async def scenario():
        assistant = await harness.ready()
        stream = assistant.process_streaming_query("hi", include_context=False)
        await stream.__anext__()
        try:
            with pytest.raises(Busy):
                await assistant.summarize_page("t", PAGE)
        finally:
            await stream.aclose()

    asyncio.run(scenario())
    assert harness.engine.prompts == []


def test_corrupt_summary_resets_engine_but_keeps_conversation() -> None:
    harness = Harness()
    harness.engine.raw_error = InferenceError("KV cache sequence position mismatch")

    async def scenario():
        assistant = await harness.ready()
        await assistant.process_query("hello", include_context=False)
        session = assistant.store.session_id
        with pytest.raises(InferenceError):
            await assistant.summarize_page("t", PAGE)
        return assistant, session

    assistant, session = asyncio.run(scenario())
    assert assistant.store.message_count == 2
    assert assistant.store.session_id == session
    assert harness.engine.resets == 1
    assert "KV cache sequence position mismatch" in assistant.state.last_error
    assert assistant.state.activity.kind is Activity.IDLE
