"""Observable assistant state: readiness, activity and the last error."""
from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Activity(str, Enum):
    IDLE = "idle"
    TYPING = "typing"
    STREAMING = "streaming"
    PROCESSING = "processing"


@dataclass(frozen=True, slots=True)
class ActivityState:
    """What the assistant is doing right now.

    ``message_id`` is set only for ``STREAMING`` and names the placeholder
    message receiving the stream.
    """

    kind: Activity = Activity.IDLE
    message_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is Activity.STREAMING and not self.message_id:
            raise ValueError("Streaming state requires a message id")
        if self.kind is not Activity.STREAMING and self.message_id is not None:
            raise ValueError(f"{self.kind.value} state does not carry a message id")

    @classmethod
    def idle(cls) -> "ActivityState":
        return cls(Activity.IDLE)

    @classmethod
    def typing(cls) -> "ActivityState":
        return cls(Activity.TYPING)

    @classmethod
    def processing(cls) -> "ActivityState":
        return cls(Activity.PROCESSING)

    @classmethod
    def streaming(cls, message_id: str) -> "ActivityState":
        return cls(Activity.STREAMING, message_id)

    @property
    def is_idle(self) -> bool:
        return self.kind is Activity.IDLE

    @property
    def is_busy(self) -> bool:
        return self.kind is not Activity.IDLE

    def as_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message_id": self.message_id}

    def __str__(self) -> str:
        if self.kind is Activity.STREAMING:
            return f"streaming({self.message_id})"
        return self.kind.value


@dataclass(frozen=True, slots=True)
class Readiness:
    hardware_validated: bool = False
    model_available: bool = False
    framework_initialized: bool = False
    privacy_initialized: bool = False
    inference_engine_initialized: bool = False

    @property
    def is_initialized(self) -> bool:
        return all(
            (
                self.hardware_validated,
                self.model_available,
                self.framework_initialized,
                self.privacy_initialized,
                self.inference_engine_initialized,
            )
        )


@dataclass(frozen=True, slots=True)
class AssistantState:
    is_initialized: bool = False
    initialization_status: str = "Not initialized"
    activity: ActivityState = ActivityState()
    streaming_text: str = ""
    last_error: Optional[str] = None
    download_progress: Optional[float] = None
    readiness: Readiness = Readiness()


Subscriber = Callable[[AssistantState], None]


class StateStore:
    """Single owner of :class:`AssistantState`.

    Each update replaces the snapshot and delivers the new immutable value to
    every subscriber. Subscribers observe; only the coordinator writes.
    """

    def __init__(self, initial: AssistantState | None = None) -> None:
        self._lock = threading.RLock()
        self._state = initial or AssistantState()
        self._subscribers: list[Subscriber] = []

    @property
    def current(self) -> AssistantState:
        with self._lock:
            return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def update(self, **changes: Any) -> AssistantState:
        with self._lock:
            self._state = dataclasses.replace(self._state, **changes)
            snapshot = self._state
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("State subscriber raised; continuing")
        return snapshot

    def set_activity(self, activity: ActivityState) -> AssistantState:
        return self.update(activity=activity)


__all__ = ["Activity", "ActivityState", "Readiness", "AssistantState", "StateStore", "Subscriber"]
