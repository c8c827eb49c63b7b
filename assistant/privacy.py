"""Local privacy controls applied to data the assistant keeps."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from assistant.config import section

logger = logging.getLogger(__name__)

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b"), "[email]"),
    (re.compile(r"\b(?:\d[ -]?){13,16}\b"), "[card]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[ssn]"),
    (re.compile(r"\b(?:sk|pk|api|key)[-_][A-Za-z0-9_-]{12,}\b"), "[secret]"),
)


def _default_state_dir() -> Path:
    return Path.home() / ".ondevice-assistant"


class LocalPrivacyManager:
    """Prepares on-disk state and scrubs sensitive values from stored context."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        settings = section("privacy", config)
        raw_dir = str(settings.get("state_dir") or "")
        self.state_dir = Path(raw_dir).expanduser() if raw_dir else _default_state_dir()
        self.store_context_snapshots = bool(settings.get("store_context_snapshots", True))
        self.redact_sensitive = bool(settings.get("redact_sensitive", True))
        self.initialized = False

    def initialize(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.state_dir.chmod(0o700)
        self.initialized = True
        logger.info("Privacy protection ready (state dir %s)", self.state_dir)

    def redact(self, text: str) -> str:
        if not self.redact_sensitive:
            return text
        for pattern, replacement in _REDACTIONS:
            text = pattern.sub(replacement, text)
        return text

    def snapshot(self, context: Optional[str]) -> Optional[str]:
        """The form of ``context`` that may be stored alongside a message."""
        if context is None or not self.store_context_snapshots:
            return None
        return self.redact(context)


__all__ = ["LocalPrivacyManager"]
