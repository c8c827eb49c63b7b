"""Error taxonomy shared by the assistant pipelines."""
from __future__ import annotations

from typing import Optional


class AssistantError(RuntimeError):
    """Base class for every failure surfaced by the assistant core."""

    code = "assistant_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message())
        self.message = str(self)

    @classmethod
    def default_message(cls) -> str:
        return "AI Assistant error"


class NotInitialized(AssistantError):
    code = "not_initialized"

    @classmethod
    def default_message(cls) -> str:
        return "AI Assistant not initialized"


class UnsupportedHardware(AssistantError):
    code = "unsupported_hardware"

    def __init__(self, message: str = "") -> None:
        super().__init__(f"Unsupported Hardware: {message}" if message else "")


class InsufficientMemory(AssistantError):
    code = "insufficient_memory"

    def __init__(self, message: str = "") -> None:
        super().__init__(f"Insufficient Memory: {message}" if message else "")


class MemoryPressure(AssistantError):
    code = "memory_pressure"

    def __init__(self, level: str, available_gb: float) -> None:
        self.level = str(level)
        self.available_gb = float(available_gb)
        super().__init__(
            f"AI operations suspended due to {self.level.lower()} memory pressure "
            f"({self.available_gb:.1f} GB available)"
        )


class ModelNotAvailable(AssistantError):
    code = "model_not_available"

    @classmethod
    def default_message(cls) -> str:
        return "AI model not available"


class DownloadFailed(AssistantError):
    code = "download_failed"

    def __init__(self, message: str = "") -> None:
        super().__init__(f"Model download failed: {message}" if message else "Model download failed")


class ContextProcessingFailed(AssistantError):
    code = "context_processing_failed"

    def __init__(self, message: str = "") -> None:
        super().__init__(f"Context Processing Failed: {message}" if message else "")


class InferenceError(AssistantError):
    """Failure reported by the inference engine.

    ``reason`` is an optional machine-readable code from the engine, e.g.
    ``kv_cache_inconsistent`` when the decoder state is known to be corrupt.
    """

    code = "inference_error"

    def __init__(self, message: str = "", *, reason: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(f"Inference Error: {message}" if message else "")


class Busy(AssistantError):
    code = "busy"

    @classmethod
    def default_message(cls) -> str:
        return "AI Assistant is busy with another request"


KV_CACHE_INCONSISTENT = "kv_cache_inconsistent"


__all__ = [
    "AssistantError",
    "NotInitialized",
    "UnsupportedHardware",
    "InsufficientMemory",
    "MemoryPressure",
    "ModelNotAvailable",
    "DownloadFailed",
    "ContextProcessingFailed",
    "InferenceError",
    "Busy",
    "KV_CACHE_INCONSISTENT",
]
