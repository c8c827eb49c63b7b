from __future__ import annotations

import asyncio

import pytest

from assistant.conversation import Role
from assistant.errors import InferenceError, NotInitialized
from assistant.state import Activity, AssistantState
from tests.fakes import Harness


def test_fragments_are_accumulated_into_the_placeholder() -> None:
    harness = Harness()
    observed: list[tuple[str, Activity]] = []

    async def scenario():
        assistant = await harness.ready()
        fragments = []
        async for fragment in assistant.process_streaming_query("greet me", include_context=False):
            # state seen by the consumer while the sequence is still live
            observed.append((assistant.state.streaming_text, assistant.state.activity.kind))
            fragments.append(fragment)
        return assistant, fragments

    assistant, fragments = asyncio.run(scenario())
    assert fragments == ["Hel", "lo"]
    assert observed == [("Hel", Activity.STREAMING), ("Hello", Activity.STREAMING)]

    user, reply = assistant.messages
    assert user.role is Role.USER and user.content == "greet me"
    assert reply.role is Role.ASSISTANT and reply.content == "Hello"
    assert reply.estimated_tokens > 0
    assert assistant.state.activity.kind is Activity.IDLE
    assert assistant.state.streaming_text == ""


def test_streaming_state_names_the_placeholder() -> None:
    harness = Harness()
    snapshots: list[AssistantState] = []

    async def scenario():
        assistant = await harness.ready()
        assistant.subscribe(snapshots.append)
        async for _ in assistant.process_streaming_query("hi", include_context=False):
            pass
        return assistant

    assistant = asyncio.run(scenario())
    placeholder_id = assistant.messages[1].id
    streaming = [snapshot for snapshot in snapshots if snapshot.activity.kind is Activity.STREAMING]
    assert streaming
    assert {snapshot.activity.message_id for snapshot in streaming} == {placeholder_id}


def test_failure_overwrites_placeholder_with_apology() -> None:
    harness = Harness()
    harness.engine.fragments = ["Par"]
    harness.engine.stream_error = InferenceError("connection dropped")

    async def scenario():
        assistant = await harness.ready()
        received = []
        with pytest.raises(InferenceError) as excinfo:
            async for fragment in assistant.process_streaming_query("tell me", include_context=False):
                received.append(fragment)
        return assistant, received, excinfo.value

    assistant, received, err = asyncio.run(scenario())
    assert received == ["Par"]
    assert err is harness.engine.stream_error
    reply = assistant.messages[1]
    assert reply.content.startswith("Sorry, I encountered an error:")
    assert "connection dropped" in reply.content
    assert assistant.state.activity.kind is Activity.IDLE
    assert assistant.state.last_error == "Inference Error: connection dropped"


def test_abandoned_stream_runs_failure_cleanup() -> None:
    harness = Harness()
    harness.engine.fragments = ["one ", "two ", "three"]

    async def scenario():
        assistant = await harness.ready()
        stream = assistant.process_streaming_query("count", include_context=False)
        first = await stream.__anext__()
        assert assistant.state.activity.kind is Activity.STREAMING
        await stream.aclose()
        # the lock must be released for the next query
        response = await assistant.process_query("next", include_context=False)
        return assistant, first, response

    assistant, first, response = asyncio.run(scenario())
    assert first == "one "
    assert response.text == "Sure, here is the answer."
    assert "Streaming cancelled" in assistant.messages[1].content
    assert assistant.state.activity.kind is Activity.IDLE


def test_breaking_out_of_scoped_stream_releases_the_assistant() -> None:
    harness = Harness()
    harness.engine.fragments = ["one ", "two ", "three"]

    async def scenario():
        assistant = await harness.ready()
        async with assistant.stream_query("count", include_context=False) as stream:
            async for fragment in stream:
                break
        # ``stream`` is still referenced here
        after_break = assistant.state.activity.kind
        response = await asyncio.wait_for(assistant.process_query("next", include_context=False), 1)
        return assistant, stream, fragment, after_break, response

    assistant, stream, fragment, after_break, response = asyncio.run(scenario())
    assert stream is not None
    assert fragment == "one "
    assert after_break is Activity.IDLE
    assert response.text == "Sure, here is the answer."
    assert "Streaming cancelled" in assistant.messages[1].content


def test_streaming_gates_match_query_pipeline() -> None:
    harness = Harness()
    assistant = harness.build()

    async def scenario():
        async for _ in assistant.process_streaming_query("hi"):
            pass

    with pytest.raises(NotInitialized):
        asyncio.run(scenario())
    assert assistant.store.message_count == 0


def test_streaming_corruption_triggers_reset() -> None:
    harness = Harness()
    harness.engine.fragments = []
    harness.engine.stream_error = InferenceError("KV cache sequence position mismatch")

    async def scenario():
        assistant = await harness.ready()
        with pytest.raises(InferenceError):
            async for _ in assistant.process_streaming_query("hi", include_context=False):
                pass
        return assistant

    assistant = asyncio.run(scenario())
    assert harness.engine.resets == 1
    assert assistant.store.message_count == 0
    assert assistant.state.last_error == "Inference Error: KV cache sequence position mismatch"


def test_queries_are_serialized() -> None:
    harness = Harness()
    harness.engine.fragments = ["a", "b", "c"]

    async def consume(assistant):
        return [fragment async for fragment in assistant.process_streaming_query("stream", include_context=False)]

    async def scenario():
        assistant = await harness.ready()
        streamed, response = await asyncio.gather(
            consume(assistant), assistant.process_query("sync", include_context=False)
        )
        return assistant, streamed, response

    assistant, streamed, _ = asyncio.run(scenario())
    assert streamed == ["a", "b", "c"]
    contents = [message.content for message in assistant.messages]
    assert contents == ["stream", "abc", "sync", "Sure, here is the answer."]
