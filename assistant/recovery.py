"""Error recovery: record failures and reset after decoder-state corruption."""
from __future__ import annotations

import logging
from typing import Optional

from assistant.collaborators import InferenceEngine, call
from assistant.conversation import ConversationStore
from assistant.errors import KV_CACHE_INCONSISTENT
from assistant.state import ActivityState, StateStore

logger = logging.getLogger(__name__)

# Best-effort fallback for engines that do not report a typed reason.
LEGACY_CORRUPTION_SIGNATURES = (
    "kv cache",
    "kv-cache",
    "key/value cache",
    "sequence position",
    "position ids",
    "decoder state",
    "cache is inconsistent",
)


def is_corruption(err: BaseException) -> bool:
    reason = getattr(err, "reason", None)
    if reason:
        return reason == KV_CACHE_INCONSISTENT
    description = str(err).lower()
    return any(signature in description for signature in LEGACY_CORRUPTION_SIGNATURES)


class ErrorRecoveryManager:
    """Applies the recovery policy after a pipeline failure.

    ``on_error`` never raises: the caller re-raises the original error
    itself once recovery has run.
    """

    def __init__(self, store: ConversationStore, engine: InferenceEngine, state: StateStore) -> None:
        self._store = store
        self._engine = engine
        self._state = state

    async def reset(self) -> str:
        """Drop history and cached decode state; returns the new session id."""
        session_id = self._store.clear()
        await call(self._engine.reset_conversation_state)
        self._state.update(last_error=None, activity=ActivityState.idle(), streaming_text="")
        logger.info("Conversation state fully reset (session %s)", session_id)
        return session_id

    async def on_error(self, err: BaseException, *, clear_store: bool = True) -> None:
        """Record ``err`` and reset after corruption.

        With ``clear_store=False`` only the engine's decode state is dropped
        and the stored conversation is left untouched.
        """
        reset_failure: Optional[BaseException] = None
        if is_corruption(err):
            logger.warning("Decoder state corruption detected, resetting conversation: %s", err)
            try:
                if clear_store:
                    await self.reset()
                else:
                    await call(self._engine.reset_conversation_state)
            except Exception as exc:
                reset_failure = exc
                logger.warning("Conversation reset failed: %s", exc)
        last_error = str(err)
        if reset_failure is not None:
            last_error = f"{last_error} (reset failed: {reset_failure})"
        self._state.update(last_error=last_error, activity=ActivityState.idle(), streaming_text="")


__all__ = ["ErrorRecoveryManager", "is_corruption", "LEGACY_CORRUPTION_SIGNATURES"]
