# assistant/coordinator.py
"""The assistant's single owner of conversation and activity state.

Every pipeline that touches the conversation store runs under one
``asyncio.Lock``; a streaming query keeps the lock until its fragment
sequence has terminated, so the store never has two writers.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Optional

from assistant.collaborators import (
    AIResponse,
    ContextProvider,
    FrameworkRuntime,
    HardwareCapabilities,
    InferenceEngine,
    ModelDownloader,
    PrivacyManager,
    ResourceTelemetry,
    call,
)
from assistant.config import section
from assistant.context import StaticContextProvider, format_context
from assistant.conversation import ConversationStore, Message, Role
from assistant.errors import AssistantError, Busy, ContextProcessingFailed, InferenceError, NotInitialized
from assistant.gate import ResourceGate
from assistant.hardware import HardwareDescriptor
from assistant.initializer import InitializationSequencer
from assistant.model_adapter import RuntimeFramework, RuntimeInferenceEngine
from assistant.privacy import LocalPrivacyManager
from assistant.recovery import ErrorRecoveryManager
from assistant.state import ActivityState, AssistantState, StateStore, Subscriber
from assistant.summarizer import PageSummarizer
from assistant.telemetry import MemoryMonitor, MemoryThresholds
from assistant.weights import ModelWeights

logger = logging.getLogger(__name__)

_SUMMARY_WINDOW = 20


@dataclass(frozen=True)
class AssistantStatus:
    is_initialized: bool
    activity: ActivityState
    message_count: int
    last_error: Optional[str]

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_initialized": self.is_initialized,
            "activity": self.activity.as_dict(),
            "message_count": self.message_count,
            "last_error": self.last_error,
        }


class AssistantCoordinator:
    def __init__(
        self,
        *,
        engine: InferenceEngine,
        privacy: PrivacyManager,
        telemetry: ResourceTelemetry,
        context_provider: ContextProvider,
        hardware: HardwareCapabilities,
        downloader: Optional[ModelDownloader] = None,
        framework: Optional[FrameworkRuntime] = None,
        store: Optional[ConversationStore] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        conversation_cfg = section("conversation", config)
        self._config = config
        self._engine = engine
        self._privacy = privacy
        self._telemetry = telemetry
        self._context_provider = context_provider
        self._hardware = hardware
        self._downloader = downloader
        self._framework = framework
        self._store = store or ConversationStore(
            max_messages=int(conversation_cfg.get("max_messages", 1000)),
            max_session_tokens=int(conversation_cfg.get("max_session_tokens", 32000)),
        )
        self._history_window = int(conversation_cfg.get("history_window", 10))
        self._state = StateStore()
        self._gate = ResourceGate(telemetry)
        self._recovery = ErrorRecoveryManager(self._store, engine, self._state)
        self._summarizer = PageSummarizer(engine, config)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Observation
    @property
    def state(self) -> AssistantState:
        return self._state.current

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def messages(self) -> list[Message]:
        return self._store.get_recent(self._store.message_count)

    @property
    def is_initialized(self) -> bool:
        return self._state.current.is_initialized

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self._state.subscribe(callback)

    def get_status(self) -> AssistantStatus:
        current = self._state.current
        return AssistantStatus(
            is_initialized=current.is_initialized,
            activity=current.activity,
            message_count=self._store.message_count,
            last_error=current.last_error,
        )

    # ------------------------------------------------------------------
    # Initialization
    async def initialize_steps(self) -> AsyncIterator[str]:
        """Run initialization, yielding each human-readable status update."""
        async with self._lock:
            sequencer = InitializationSequencer(
                hardware=self._hardware,
                engine=self._engine,
                privacy=self._privacy,
                framework=self._framework,
                downloader=self._downloader,
                state=self._state,
                config=self._config,
            )
            async for status in sequencer.run():
                yield status

    async def initialize(self) -> bool:
        async for _ in self.initialize_steps():
            pass
        return self._state.current.is_initialized

    # ------------------------------------------------------------------
    # Pipelines
    def _require_ready(self) -> None:
        if not self._state.current.is_initialized:
            raise NotInitialized()
        self._gate.check_safe_to_run()

    async def _build_context(self, include_context: bool, include_history: bool) -> Optional[str]:
        if not include_context:
            return None
        page = await call(self._context_provider.extract_current_page_context)
        history = self._store.get_recent(self._history_window) if include_history else []
        return format_context(page, history, include_history=include_history)

    def _snapshot(self, context: Optional[str]) -> Optional[str]:
        snapshot = getattr(self._privacy, "snapshot", None)
        if snapshot is None:
            return context
        return snapshot(context)

    async def process_query(
        self, query: str, include_context: bool = True, include_history: bool = True
    ) -> AIResponse:
        async with self._lock:
            self._require_ready()
            self._state.set_activity(ActivityState.processing())
            try:
                context = await self._build_context(include_context, include_history)
                self._store.add_message(Message(Role.USER, query, context_snapshot=self._snapshot(context)))
                history = self._store.get_recent(self._history_window)
                response = await call(self._engine.generate, query, context, history)
                self._store.add_message(Message(Role.ASSISTANT, response.text, metadata=dict(response.metadata)))
                logger.info(
                    "Query answered in %.2fs (%d tokens)", response.processing_time, response.token_count
                )
                return response
            except Exception as exc:
                logger.error("Query processing failed: %s", exc)
                await self._recovery.on_error(exc)
                raise
            finally:
                self._state.set_activity(ActivityState.idle())

    async def process_streaming_query(
        self, query: str, include_context: bool = True, include_history: bool = True
    ) -> AsyncIterator[str]:
        """Stream response fragments.

        The lock is held until the generator finishes or is closed. A consumer
        that stops iterating early must call ``aclose()`` (or use
        :meth:`stream_query`), otherwise later pipelines wait on the lock.
        """
        async with self._lock:
            self._require_ready()
            placeholder_id: Optional[str] = None
            buffer = ""
            try:
                context = await self._build_context(include_context, include_history)
                self._store.add_message(Message(Role.USER, query, context_snapshot=self._snapshot(context)))
                history = self._store.get_recent(self._history_window)
                placeholder = self._store.add_message(Message(Role.ASSISTANT, ""))
                placeholder_id = placeholder.id
                self._state.update(activity=ActivityState.streaming(placeholder_id), streaming_text="")

                async for fragment in self._engine.generate_streaming(query, context, history):
                    buffer += fragment
                    self._state.update(streaming_text=buffer)
                    yield fragment

                if placeholder_id in self._store:
                    self._store.update_message(placeholder_id, buffer)
                self._state.update(activity=ActivityState.idle(), streaming_text="")
            except (GeneratorExit, asyncio.CancelledError):
                logger.info("Streaming query abandoned by consumer")
                await self._fail_stream(placeholder_id, InferenceError("Streaming cancelled"))
                raise
            except Exception as exc:
                logger.error("Streaming query failed: %s", exc)
                await self._fail_stream(placeholder_id, exc)
                raise

    def stream_query(
        self, query: str, include_context: bool = True, include_history: bool = True
    ) -> AsyncContextManager[AsyncIterator[str]]:
        """Scope a streaming query to an ``async with`` block.

        Leaving the block closes the stream, so breaking out of the loop runs
        the cancellation cleanup even while a reference is still held.
        """
        return contextlib.aclosing(self.process_streaming_query(query, include_context, include_history))

    async def _fail_stream(self, placeholder_id: Optional[str], err: BaseException) -> None:
        self._state.update(activity=ActivityState.idle(), streaming_text="")
        if placeholder_id is not None:
            message = self._store.get(placeholder_id)
            if message is not None and not message.rewritten:
                self._store.update_message(placeholder_id, f"Sorry, I encountered an error: {err}")
        await self._recovery.on_error(err)

    async def summarize_page(self, page_title: Optional[str] = None, page_text: Optional[str] = None) -> str:
        if not self._state.current.is_initialized:
            raise NotInitialized()
        if self._state.current.activity.is_busy or self._lock.locked():
            raise Busy()
        async with self._lock:
            self._gate.check_safe_to_run()
            title, text = page_title, page_text
            if text is None:
                page = await call(self._context_provider.extract_current_page_context)
                if page is not None:
                    title = title or page.title
                    text = page.text
            if not text or not text.strip():
                raise ContextProcessingFailed("no readable content on the current page")

            self._state.set_activity(ActivityState.typing())
            try:
                return await self._summarizer.summarize(title or "Untitled page", text)
            except Exception as exc:
                logger.error("Page summary failed: %s", exc)
                await self._recovery.on_error(exc, clear_store=False)
                raise
            finally:
                self._state.set_activity(ActivityState.idle())

    async def get_conversation_summary(self) -> str:
        async with self._lock:
            self._require_ready()
            recent = self._store.get_recent(_SUMMARY_WINDOW)
            if not recent:
                return "No conversation yet."
            transcript = "\n".join(f"{message.role.value}: {message.content}" for message in recent)
            prompt = f"Summarize this conversation in 2-3 sentences.\n\n{transcript}\n\nSummary:"
            try:
                return (await call(self._engine.raw_generate, prompt)).strip()
            except Exception as exc:
                logger.error("Conversation summary failed: %s", exc)
                await self._recovery.on_error(exc)
                raise

    async def perform_health_check(self) -> bool:
        try:
            await self.process_query("Hello", include_context=False, include_history=False)
        except AssistantError as exc:
            logger.warning("AI health check failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Conversation management
    async def clear_conversation(self) -> str:
        async with self._lock:
            return self._store.clear()

    async def reset_conversation_state(self) -> str:
        async with self._lock:
            return await self._recovery.reset()


def create_assistant(
    context_provider: Optional[ContextProvider] = None,
    config: Optional[Dict[str, Any]] = None,
) -> AssistantCoordinator:
    """Wire the coordinator to the local runtime collaborators described by ``config``."""
    weights = ModelWeights.from_config(config)
    engine = RuntimeInferenceEngine(weights=weights, config=config)
    return AssistantCoordinator(
        engine=engine,
        privacy=LocalPrivacyManager(config),
        telemetry=MemoryMonitor(MemoryThresholds.from_mapping(section("resources", config))),
        context_provider=context_provider or StaticContextProvider(),
        hardware=HardwareDescriptor(config=config),
        downloader=weights,
        framework=RuntimeFramework(engine),
        config=config,
    )


__all__ = ["AssistantCoordinator", "AssistantStatus", "create_assistant"]
