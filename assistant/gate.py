"""Per-call resource gate run before any inference work."""
from __future__ import annotations

import logging

from assistant.collaborators import ResourceTelemetry
from assistant.errors import MemoryPressure

logger = logging.getLogger(__name__)


class ResourceGate:
    """Live memory-pressure check; sampled on every call, never cached."""

    def __init__(self, telemetry: ResourceTelemetry) -> None:
        self._telemetry = telemetry

    def check_safe_to_run(self) -> None:
        if self._telemetry.is_safe_to_run():
            return
        status = self._telemetry.current_status()
        level = getattr(status.pressure_level, "value", status.pressure_level)
        logger.warning("Inference refused: %s memory pressure (%.1f GB available)", level, status.available_gb)
        raise MemoryPressure(str(level), status.available_gb)

    def is_open(self) -> bool:
        try:
            self.check_safe_to_run()
        except MemoryPressure:
            return False
        return True


__all__ = ["ResourceGate"]
