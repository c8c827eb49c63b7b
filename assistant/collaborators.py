"""Interfaces the assistant core expects from its collaborators.

Methods may be plain functions or coroutines; the coordinator awaits
coroutine results and runs plain calls on a worker thread.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol, Sequence, TypeVar, Union

from assistant.conversation import Message

T = TypeVar("T")


@dataclass(frozen=True)
class AIResponse:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    processing_time: float = 0.0
    token_count: int = 0

    @property
    def tokens_per_second(self) -> float:
        if self.processing_time <= 0:
            return 0.0
        return self.token_count / self.processing_time


@dataclass(frozen=True)
class DownloadInfo:
    size_bytes: int


class DownloadState(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadStatus:
    state: DownloadState
    fraction: float = 0.0
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.state in (DownloadState.COMPLETED, DownloadState.FAILED)


@dataclass(frozen=True)
class PageContext:
    title: str
    text: str
    url: Optional[str] = None


class InferenceEngine(Protocol):
    def is_ready(self) -> Union[bool, Awaitable[bool]]:
        ...

    def download_info(self) -> DownloadInfo:
        ...

    def initialize(self) -> Union[None, Awaitable[None]]:
        ...

    def generate(
        self, query: str, context: Optional[str], history: Sequence[Message]
    ) -> Union[AIResponse, Awaitable[AIResponse]]:
        ...

    def generate_streaming(
        self, query: str, context: Optional[str], history: Sequence[Message]
    ) -> AsyncIterator[str]:
        ...

    def reset_conversation_state(self) -> Union[None, Awaitable[None]]:
        ...

    def raw_generate(self, prompt: str) -> Union[str, Awaitable[str]]:
        ...


class ModelDownloader(Protocol):
    def start_download(self) -> None:
        ...

    def status(self) -> DownloadStatus:
        ...


class FrameworkRuntime(Protocol):
    def initialize(self) -> Union[None, Awaitable[None]]:
        ...


class PrivacyManager(Protocol):
    def initialize(self) -> Union[None, Awaitable[None]]:
        ...


class ResourceTelemetry(Protocol):
    def is_safe_to_run(self) -> bool:
        ...

    def current_status(self) -> Any:
        ...


class ContextProvider(Protocol):
    def extract_current_page_context(self) -> Union[Optional[PageContext], Awaitable[Optional[PageContext]]]:
        ...


class HardwareCapabilities(Protocol):
    def supports_profile(self, profile: str) -> bool:
        ...

    def total_memory_gb(self) -> float:
        ...


async def call(func: Callable[..., Any], *args: Any) -> Any:
    """Invoke a collaborator method, awaiting coroutines and threading blocking calls."""
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = [
    "AIResponse",
    "DownloadInfo",
    "DownloadState",
    "DownloadStatus",
    "PageContext",
    "InferenceEngine",
    "ModelDownloader",
    "FrameworkRuntime",
    "PrivacyManager",
    "ResourceTelemetry",
    "ContextProvider",
    "HardwareCapabilities",
    "call",
]
