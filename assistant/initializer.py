"""Ordered bring-up of the assistant runtime."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, AsyncIterator, Dict, Optional

from assistant.collaborators import (
    DownloadState,
    FrameworkRuntime,
    HardwareCapabilities,
    InferenceEngine,
    ModelDownloader,
    PrivacyManager,
    call,
)
from assistant.config import section
from assistant.errors import DownloadFailed, InsufficientMemory, ModelNotAvailable, UnsupportedHardware
from assistant.state import Readiness, StateStore

logger = logging.getLogger(__name__)


class InitializationSequencer:
    """Runs the initialization protocol and reports progress as status text.

    Hardware validation and model availability are fatal when they fail.
    Framework and privacy bring-up run concurrently and only degrade
    readiness; the inference engine starts after both have been attempted.
    """

    def __init__(
        self,
        *,
        hardware: HardwareCapabilities,
        engine: InferenceEngine,
        privacy: PrivacyManager,
        state: StateStore,
        framework: Optional[FrameworkRuntime] = None,
        downloader: Optional[ModelDownloader] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._hardware = hardware
        self._engine = engine
        self._privacy = privacy
        self._framework = framework
        self._downloader = downloader
        self._state = state
        self._profile = str(section("model", config).get("profile", "mlx"))
        self._min_memory_gb = float(section("hardware", config).get("min_memory_gb", 8))
        self._poll_interval = float(section("initialization", config).get("poll_interval_seconds", 0.5))
        self.error: Optional[BaseException] = None

    def _status(self, text: str, **changes: Any) -> str:
        logger.info("%s", text)
        self._state.update(initialization_status=text, **changes)
        return text

    def _mark(self, **flags: bool) -> None:
        readiness = dataclasses.replace(self._state.current.readiness, **flags)
        self._state.update(readiness=readiness)

    async def run(self) -> AsyncIterator[str]:
        self.error = None
        self._state.update(is_initialized=False, readiness=Readiness(), last_error=None, download_progress=None)

        try:
            yield self._status("Validating hardware...")
            await self._validate_hardware()
            self._mark(hardware_validated=True)

            yield self._status("Checking model availability...")
            async for update in self._ensure_model():
                yield update
            self._mark(model_available=True)
        except Exception as exc:
            self.error = exc
            logger.error("Initialization failed: %s", exc)
            yield self._status("Initialization failed", last_error=str(exc))
            return

        yield self._status("Initializing runtime and privacy protection...")
        framework_ok, privacy_ok = await self._parallel_init()
        self._mark(framework_initialized=framework_ok, privacy_initialized=privacy_ok)

        yield self._status("Loading inference engine...")
        try:
            await call(self._engine.initialize)
        except Exception as exc:
            logger.error("Inference engine initialization failed: %s", exc)
            self._record(exc)
        else:
            self._mark(inference_engine_initialized=True)

        readiness = self._state.current.readiness
        if readiness.is_initialized:
            yield self._status("AI Assistant ready", is_initialized=True)
        else:
            yield self._status("Initialization incomplete", is_initialized=False)

    def _record(self, exc: BaseException) -> None:
        if self.error is None:
            self.error = exc
            self._state.update(last_error=str(exc))

    async def _validate_hardware(self) -> None:
        if not await call(self._hardware.supports_profile, self._profile):
            raise UnsupportedHardware(f"runtime profile '{self._profile}' is not supported on this machine")
        total_gb = float(await call(self._hardware.total_memory_gb))
        if total_gb < self._min_memory_gb:
            raise InsufficientMemory(
                f"{self._min_memory_gb:.0f} GB RAM required, {total_gb:.1f} GB installed"
            )

    async def _ensure_model(self) -> AsyncIterator[str]:
        if await call(self._engine.is_ready):
            return
        if self._downloader is None:
            raise ModelNotAvailable()

        info = await call(self._engine.download_info)
        size_gb = info.size_bytes / 1_000_000_000
        yield self._status(f"Downloading AI model ({size_gb:.1f} GB)...", download_progress=0.0)
        await call(self._downloader.start_download)

        last_percent = -1
        while True:
            status = await call(self._downloader.status)
            if status.state is DownloadState.FAILED:
                raise DownloadFailed(status.error or "unknown error")
            if await call(self._engine.is_ready):
                self._state.update(download_progress=1.0)
                break
            if status.state is DownloadState.COMPLETED:
                raise ModelNotAvailable("download finished but the model is not usable")
            percent = int(status.fraction * 100)
            if percent != last_percent:
                last_percent = percent
                yield self._status(f"Downloading AI model: {percent}%", download_progress=status.fraction)
            await asyncio.sleep(self._poll_interval)

    async def _parallel_init(self) -> tuple[bool, bool]:
        framework_branch = call(self._framework.initialize) if self._framework is not None else _noop()
        results = await asyncio.gather(
            framework_branch,
            call(self._privacy.initialize),
            return_exceptions=True,
        )
        outcome = []
        for name, result in zip(("framework", "privacy"), results):
            if isinstance(result, BaseException):
                logger.warning("%s initialization failed: %s", name.capitalize(), result)
                self._record(result)
                outcome.append(False)
            else:
                outcome.append(True)
        return outcome[0], outcome[1]


async def _noop() -> None:
    return None


__all__ = ["InitializationSequencer"]
