"""Locate and download model weights for offline inference."""
from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from huggingface_hub import snapshot_download  # type: ignore[import-untyped]

from assistant.collaborators import DownloadState, DownloadStatus
from assistant.config import section

logger = logging.getLogger(__name__)

ALLOW_PATTERNS: Iterable[str] = (
    "*.json",
    "*.safetensors",
    "tokenizer.*",
    "*.model",
    "*.txt",
)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
_WEIGHT_SUFFIXES = (".safetensors", ".gguf", ".npz")


def _resolve_models_root(configured: str | None = None) -> Path:
    base = os.environ.get("ML_MODELS_DIR") or configured
    if base:
        return Path(base).expanduser().resolve()
    return PROJECT_ROOT / "ml_models"


class ModelWeights:
    """Presence checks and background download of one model snapshot."""

    def __init__(
        self,
        repo_id: str,
        *,
        dir_name: str,
        models_dir: str | None = None,
        size_bytes: int = 0,
    ) -> None:
        self.repo_id = repo_id
        self.destination = _resolve_models_root(models_dir) / dir_name
        self.size_bytes = int(size_bytes)
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._state = DownloadState.COMPLETED if self._files_present() else DownloadState.PENDING
        self._error: Optional[str] = None

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "ModelWeights":
        model_cfg = section("model", config)
        return cls(
            str(model_cfg.get("repo_id")),
            dir_name=str(model_cfg.get("model_dir_name")),
            models_dir=str(model_cfg.get("models_dir") or "") or None,
            size_bytes=int(model_cfg.get("size_bytes") or 0),
        )

    def is_present(self) -> bool:
        """True once usable weights are on disk.

        Finished shards of an in-flight or failed download do not count;
        only the manifest written after a complete snapshot does.
        """
        with self._lock:
            state = self._state
        if state is DownloadState.DOWNLOADING:
            return False
        return self._files_present(require_manifest=state is DownloadState.FAILED)

    def _files_present(self, *, require_manifest: bool = False) -> bool:
        if not self.destination.is_dir():
            return False
        if (self.destination / "manifest.json").exists():
            return True
        if require_manifest:
            return False
        return any(path.suffix in _WEIGHT_SUFFIXES for path in self.destination.iterdir())

    def downloaded_bytes(self) -> int:
        if not self.destination.exists():
            return 0
        return sum(path.stat().st_size for path in self.destination.rglob("*") if path.is_file())

    def start_download(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            if self._files_present(require_manifest=self._state is DownloadState.FAILED):
                self._state = DownloadState.COMPLETED
                return
            self._state = DownloadState.DOWNLOADING
            self._error = None
            self._thread = threading.Thread(target=self._download, name="model-download", daemon=True)
            self._thread.start()

    def status(self) -> DownloadStatus:
        with self._lock:
            state = self._state
            error = self._error
        if state is DownloadState.COMPLETED:
            return DownloadStatus(state, 1.0)
        if state is DownloadState.FAILED:
            return DownloadStatus(state, 0.0, error)
        fraction = 0.0
        if self.size_bytes > 0:
            fraction = min(0.99, self.downloaded_bytes() / self.size_bytes)
        return DownloadStatus(state, fraction)

    def _download(self) -> None:
        logger.info("Fetching %s from Hugging Face", self.repo_id)
        try:
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            snapshot_path = Path(
                snapshot_download(
                    repo_id=self.repo_id,
                    allow_patterns=list(ALLOW_PATTERNS),
                    local_dir=str(self.destination),
                )
            )
            if snapshot_path.resolve() != self.destination.resolve():
                if self.destination.exists():
                    shutil.rmtree(self.destination)
                shutil.copytree(snapshot_path, self.destination)
            manifest = {
                "repo": self.repo_id,
                "source": "huggingface",
                "files": sorted(p.name for p in self.destination.iterdir()),
            }
            (self.destination / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        except Exception as exc:
            logger.error("Model download failed: %s", exc)
            with self._lock:
                self._state = DownloadState.FAILED
                self._error = str(exc)
            return
        logger.info("Model copied to %s", self.destination)
        with self._lock:
            self._state = DownloadState.COMPLETED


__all__ = ["ModelWeights", "ALLOW_PATTERNS"]
