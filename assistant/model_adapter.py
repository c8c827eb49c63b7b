# assistant/model_adapter.py
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional, Sequence

import httpx  # type: ignore[import-untyped]

from assistant.collaborators import AIResponse, DownloadInfo
from assistant.config import section
from assistant.conversation import Message
from assistant.errors import InferenceError
from assistant.tokens import estimate_tokens
from assistant.weights import ModelWeights

logger = logging.getLogger(__name__)

_TEMPLATE_ARTIFACTS = ("<|endoftext|>", "<|user|>", "<|assistant|>", "<end_of_turn>", "<start_of_turn>")

TransportFactory = Callable[[], Optional[httpx.AsyncBaseTransport]]


def clean_response(text: str) -> str:
    cleaned = text
    for artifact in _TEMPLATE_ARTIFACTS:
        cleaned = cleaned.replace(artifact, "")
    return cleaned.strip()


def _history_payload(history: Sequence[Message]) -> list[dict[str, str]]:
    return [{"role": message.role.value, "content": message.content} for message in history]


class _RuleBasedEngine:
    """Deterministic engine used when ML mode is disabled."""

    async def is_ready(self) -> bool:
        return True

    def download_info(self) -> DownloadInfo:
        return DownloadInfo(size_bytes=0)

    async def initialize(self) -> None:
        return None

    async def generate(self, query: str, context: Optional[str], history: Sequence[Message]) -> AIResponse:
        started = time.perf_counter()
        text = self._compose(query, context, history)
        return AIResponse(
            text=text,
            metadata={"model": "rules", "context_used": bool(context)},
            processing_time=time.perf_counter() - started,
            token_count=estimate_tokens(text),
        )

    async def generate_streaming(
        self, query: str, context: Optional[str], history: Sequence[Message]
    ) -> AsyncIterator[str]:
        text = self._compose(query, context, history)
        words = text.split(" ")
        for index, word in enumerate(words):
            yield word if index == len(words) - 1 else word + " "

    async def reset_conversation_state(self) -> None:
        return None

    async def raw_generate(self, prompt: str) -> str:
        sentences = self._segments(self._content_section(prompt))[:3]
        if not sentences:
            return "📰\n• No readable content found"
        return "📰\n" + "\n".join(f"• {sentence}" for sentence in sentences)

    def _compose(self, query: str, context: Optional[str], history: Sequence[Message]) -> str:
        cleaned = query.strip() or "an unspecified request"
        parts = [f"You asked about: {cleaned}."]
        if context:
            first = self._segments(context)[:1]
            if first:
                parts.append(f"The current page mentions: {first[0]}.")
        if len(history) > 1:
            # history ends with the message being answered
            parts.append(f"This conversation has {len(history) - 1} earlier messages.")
        return " ".join(parts)

    def _content_section(self, prompt: str) -> str:
        marker = prompt.find("Content:")
        if marker == -1:
            return prompt
        return prompt[marker + len("Content:"):]

    def _segments(self, text: str) -> list[str]:
        return [sentence.strip() for sentence in re.split(r"[\.;\n!?]+", text) if len(sentence.strip().split()) >= 3]


class RuntimeInferenceEngine:
    """Inference engine backed by a local HTTP model runtime."""

    def __init__(
        self,
        *,
        url: str | None = None,
        weights: ModelWeights | None = None,
        timeout: float | None = None,
        transport_factory: TransportFactory | None = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._config = config
        self._url_override = url
        self._weights = weights
        self._timeout = timeout
        self._transport_factory = transport_factory
        self._rule_engine = _RuleBasedEngine()

    def _model_config(self) -> Dict[str, Any]:
        return section("model", self._config)

    def mode(self) -> str:
        return str(self._model_config().get("mode", "ml"))

    def runtime_url(self) -> str:
        if self._url_override:
            return self._url_override.rstrip("/")
        return str(self._model_config().get("runtime_url", "http://127.0.0.1:9000")).rstrip("/")

    def _request_timeout(self) -> float:
        if self._timeout is not None:
            return float(self._timeout)
        return float(self._model_config().get("request_timeout_seconds", 120.0))

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport_factory() if self._transport_factory else None
        return httpx.AsyncClient(base_url=self.runtime_url(), transport=transport, timeout=self._request_timeout())

    async def _call_runtime(self, method: str, path: str, payload: dict | None = None) -> dict:
        base_url = self.runtime_url()
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload)
                response.raise_for_status()
        except httpx.RequestError as exc:
            raise InferenceError(
                f"Unable to reach the model runtime at {base_url}. Start the runtime and try again."
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise self._status_error(exc.response) from exc

        try:
            data = response.json()
        except Exception as exc:
            raise InferenceError("Runtime returned invalid JSON payload.") from exc
        if not isinstance(data, dict):
            raise InferenceError("Runtime returned invalid JSON payload.")
        return data

    def _status_error(self, response: httpx.Response) -> InferenceError:
        detail_payload: object = response.text
        try:
            detail_payload = response.json()
        except Exception:
            pass
        reason = None
        if isinstance(detail_payload, dict):
            reason = detail_payload.get("reason")
            detail = str(detail_payload.get("error") or json.dumps(detail_payload, default=str))
        else:
            detail = str(detail_payload)
        return InferenceError(f"Runtime request failed with HTTP {response.status_code}: {detail}", reason=reason)

    # ------------------------------------------------------------------
    async def is_ready(self) -> bool:
        if self.mode() != "ml":
            return await self._rule_engine.is_ready()
        if self._weights is None:
            return True
        return self._weights.is_present()

    def download_info(self) -> DownloadInfo:
        if self._weights is not None:
            return DownloadInfo(size_bytes=self._weights.size_bytes)
        return DownloadInfo(size_bytes=int(self._model_config().get("size_bytes") or 0))

    async def initialize(self) -> None:
        if self.mode() != "ml":
            return await self._rule_engine.initialize()
        payload: dict[str, Any] = {}
        if self._weights is not None:
            payload["model_path"] = str(self._weights.destination)
        await self._call_runtime("POST", "/load", payload)

    async def generate(self, query: str, context: Optional[str], history: Sequence[Message]) -> AIResponse:
        if self.mode() != "ml":
            return await self._rule_engine.generate(query, context, history)

        started = time.perf_counter()
        data = await self._call_runtime(
            "POST",
            "/chat",
            {"query": query, "context": context, "history": _history_payload(history)},
        )
        text = clean_response(str(data.get("text", "")))
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        return AIResponse(
            text=text,
            metadata=metadata,
            processing_time=time.perf_counter() - started,
            token_count=int(data.get("token_count") or estimate_tokens(text)),
        )

    async def generate_streaming(
        self, query: str, context: Optional[str], history: Sequence[Message]
    ) -> AsyncIterator[str]:
        if self.mode() != "ml":
            async for fragment in self._rule_engine.generate_streaming(query, context, history):
                yield fragment
            return

        payload = {"query": query, "context": context, "history": _history_payload(history)}
        base_url = self.runtime_url()
        try:
            async with self._client() as client:
                async with client.stream("POST", "/chat/stream", json=payload) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise self._status_error(response)
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            event = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise InferenceError("Runtime streamed an invalid event.") from exc
                        if event.get("error"):
                            raise InferenceError(str(event["error"]), reason=event.get("reason"))
                        delta = event.get("delta")
                        if delta:
                            yield str(delta)
                        if event.get("done"):
                            break
        except httpx.RequestError as exc:
            raise InferenceError(
                f"Unable to reach the model runtime at {base_url}. Start the runtime and try again."
            ) from exc

    async def reset_conversation_state(self) -> None:
        if self.mode() != "ml":
            return await self._rule_engine.reset_conversation_state()
        await self._call_runtime("POST", "/reset", {})

    async def raw_generate(self, prompt: str) -> str:
        if self.mode() != "ml":
            return await self._rule_engine.raw_generate(prompt)
        data = await self._call_runtime("POST", "/predict", {"prompt": prompt, "params": {"raw": True}})
        return clean_response(str(data.get("text", "")))

    async def health(self) -> dict:
        return await self._call_runtime("GET", "/health")


class RuntimeFramework:
    """Framework-level bring-up: confirms the runtime process answers health checks."""

    def __init__(self, engine: RuntimeInferenceEngine) -> None:
        self._engine = engine

    async def initialize(self) -> None:
        if self._engine.mode() != "ml":
            return
        data = await self._engine.health()
        status = str(data.get("status", "ok"))
        if status not in {"ok", "ready"}:
            raise InferenceError(f"Runtime reported status {status!r}")
        logger.info("Model runtime healthy at %s", self._engine.runtime_url())


__all__ = ["RuntimeInferenceEngine", "RuntimeFramework", "clean_response"]
