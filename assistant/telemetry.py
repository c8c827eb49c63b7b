"""Memory telemetry used to gate inference under resource pressure."""
from __future__ import annotations

import logging
import platform
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import psutil  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

_GB = 1024 ** 3


class PressureLevel(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"
    CRITICAL = "Critical"


class AIRecommendation(str, Enum):
    OPTIMAL = "Optimal - Full AI capabilities available"
    REDUCED = "Reduced - Use lighter model quantization"
    MINIMAL = "Minimal - Consider disabling AI features"
    CRITICAL = "Critical - AI operations should be suspended"


class Quantization(str, Enum):
    Q8_0 = "Q8_0"
    Q4_K_M = "Q4_K_M"
    Q4_0 = "Q4_0"
    SUSPENDED = "SUSPENDED"


@dataclass(frozen=True, slots=True)
class MemoryThresholds:
    critical_gb: float = 0.5
    warning_gb: float = 1.0
    optimal_gb: float = 4.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "MemoryThresholds":
        if not data:
            return cls()
        kwargs: dict[str, float] = {}
        for name in ("critical_gb", "warning_gb", "optimal_gb"):
            value = data.get(name)
            if value is not None:
                kwargs[name] = float(value)  # type: ignore[arg-type]
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class MemoryStatus:
    total_gb: float
    available_gb: float
    used_gb: float
    pressure_level: PressureLevel
    recommendation: AIRecommendation

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_gb": round(self.total_gb, 2),
            "available_gb": round(self.available_gb, 2),
            "used_gb": round(self.used_gb, 2),
            "pressure_level": self.pressure_level.value,
            "recommendation": self.recommendation.value,
        }


MemorySampler = Callable[[], tuple[float, float]]


def _sample_virtual_memory() -> tuple[float, float]:
    vm = psutil.virtual_memory()
    return float(vm.total) / _GB, float(vm.available) / _GB


class MemoryMonitor:
    """Live memory sampling with pressure classification.

    ``sampler`` returns ``(total_gb, available_gb)``; it defaults to
    ``psutil.virtual_memory``.
    """

    def __init__(
        self,
        thresholds: MemoryThresholds | None = None,
        *,
        sampler: Optional[MemorySampler] = None,
    ) -> None:
        self._thresholds = thresholds or MemoryThresholds()
        self._sampler = sampler or _sample_virtual_memory

    @property
    def thresholds(self) -> MemoryThresholds:
        return self._thresholds

    def current_status(self) -> MemoryStatus:
        total, available = self._sampler()
        total = max(total, 1.0)
        available = max(min(available, total), 0.0)
        level = self._pressure_level(available)
        return MemoryStatus(
            total_gb=total,
            available_gb=available,
            used_gb=total - available,
            pressure_level=level,
            recommendation=self._recommendation(available, level),
        )

    def is_safe_to_run(self) -> bool:
        status = self.current_status()
        return status.pressure_level is not PressureLevel.CRITICAL and status.available_gb > self._thresholds.warning_gb

    def recommended_quantization(self) -> Quantization:
        available = self.current_status().available_gb
        if available >= self._thresholds.optimal_gb:
            return Quantization.Q8_0
        if available >= 2.0:
            return Quantization.Q4_K_M
        if available >= self._thresholds.warning_gb:
            return Quantization.Q4_0
        return Quantization.SUSPENDED

    def _pressure_level(self, available: float) -> PressureLevel:
        if available < self._thresholds.critical_gb:
            return PressureLevel.CRITICAL
        if available < self._thresholds.warning_gb:
            return PressureLevel.WARNING
        return PressureLevel.NORMAL

    def _recommendation(self, available: float, level: PressureLevel) -> AIRecommendation:
        if level is PressureLevel.CRITICAL:
            return AIRecommendation.CRITICAL
        if level is PressureLevel.WARNING:
            return AIRecommendation.MINIMAL
        if available >= self._thresholds.optimal_gb:
            return AIRecommendation.OPTIMAL
        return AIRecommendation.REDUCED


def collect_system_metrics(*, started_at: Optional[float] = None) -> dict[str, Any]:
    """Collect host telemetry for status output.

    Parameters
    ----------
    started_at:
        Epoch timestamp of the assistant start. Used to compute uptime.
    """

    metrics: dict[str, Any] = {
        "hostname": platform.node(),
        "platform": platform.platform(),
        "machine": platform.machine(),
        "uptime_seconds": None,
    }

    if started_at is not None:
        metrics["uptime_seconds"] = max(0.0, time.time() - float(started_at))

    try:
        metrics["cpu_percent"] = float(psutil.cpu_percent(interval=None))
    except Exception:
        metrics["cpu_percent"] = None
    try:
        vm = psutil.virtual_memory()
        metrics["memory_percent"] = float(vm.percent)
        metrics["memory_total"] = int(vm.total)
        metrics["memory_available"] = int(vm.available)
    except Exception as exc:
        logger.debug("Memory metrics unavailable: %s", exc)

    return metrics


__all__ = [
    "PressureLevel",
    "AIRecommendation",
    "Quantization",
    "MemoryThresholds",
    "MemoryStatus",
    "MemoryMonitor",
    "collect_system_metrics",
]
