"""Host hardware description used to validate runtime profiles."""
from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import psutil  # type: ignore[import-untyped]

from assistant.config import find_model_profile, list_model_profiles

logger = logging.getLogger(__name__)

_GB = 1024 ** 3
_ARM_MACHINES = {"arm64", "aarch64"}
_X86_MACHINES = {"x86_64", "amd64", "i386", "i686"}


class ProcessorKind(str, Enum):
    APPLE_SILICON = "apple_silicon"
    INTEL = "intel"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ProcessorInfo:
    kind: ProcessorKind
    machine: str
    system: str
    logical_cores: int

    @property
    def description(self) -> str:
        if self.kind is ProcessorKind.APPLE_SILICON:
            return f"Apple Silicon ({self.logical_cores} cores)"
        if self.kind is ProcessorKind.INTEL:
            return f"Intel {self.machine} ({self.logical_cores} cores)"
        return f"{self.machine or 'unknown'} ({self.logical_cores} cores)"


class HardwareDescriptor:
    """Answer capability questions about the current machine.

    ``machine``, ``system`` and ``total_memory_bytes`` can be injected to
    describe a host other than the running one.
    """

    def __init__(
        self,
        *,
        machine: Optional[str] = None,
        system: Optional[str] = None,
        total_memory_bytes: Optional[int] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._machine = (machine if machine is not None else platform.machine()).lower()
        self._system = system if system is not None else platform.system()
        self._total_memory_bytes = total_memory_bytes
        self._config = config

    def processor(self) -> ProcessorInfo:
        if self._machine in _ARM_MACHINES and self._system == "Darwin":
            kind = ProcessorKind.APPLE_SILICON
        elif self._machine in _X86_MACHINES:
            kind = ProcessorKind.INTEL
        else:
            kind = ProcessorKind.OTHER
        return ProcessorInfo(
            kind=kind,
            machine=self._machine,
            system=self._system,
            logical_cores=os.cpu_count() or 1,
        )

    def total_memory_gb(self) -> float:
        total = self._total_memory_bytes
        if total is None:
            total = int(psutil.virtual_memory().total)
        return float(total) / _GB

    def supports_profile(self, profile: str) -> bool:
        descriptor = find_model_profile(profile, self._config)
        if descriptor is None:
            logger.warning("Unknown runtime profile %r", profile)
            return False
        requires = descriptor.get("requires") or {}
        architectures = [str(item).lower() for item in requires.get("architectures") or []]
        systems = [str(item) for item in requires.get("systems") or []]
        if architectures and self._machine not in architectures:
            return False
        if systems and self._system not in systems:
            return False
        return True

    def recommended_profile(self) -> str:
        if self.processor().kind is ProcessorKind.APPLE_SILICON and self.supports_profile("mlx"):
            return "mlx"
        return "llama_cpp"

    def recommended_memory_limit_gb(self) -> int:
        total = int(self.total_memory_gb())
        kind = self.processor().kind
        if kind is ProcessorKind.APPLE_SILICON:
            # unified memory can be used more aggressively
            if total >= 32:
                return min(8, total // 3)
            if total >= 16:
                return min(4, total // 4)
            return min(2, total // 6)
        if kind is ProcessorKind.INTEL:
            return min(2, total // 8)
        return min(1, total // 10)

    def describe(self) -> dict[str, Any]:
        info = self.processor()
        return {
            "processor": info.description,
            "machine": info.machine,
            "system": info.system,
            "total_memory_gb": round(self.total_memory_gb(), 1),
            "recommended_profile": self.recommended_profile(),
            "profiles": {
                str(profile.get("id")): self.supports_profile(str(profile.get("id")))
                for profile in list_model_profiles(self._config)
            },
        }


__all__ = ["HardwareDescriptor", "ProcessorInfo", "ProcessorKind"]
