"""Configuration helpers for the on-device assistant.

Settings resolve in three layers: the built-in defaults below, the YAML file
named by ``$ASSIST_CONFIG`` (``config/assistant.yaml`` otherwise), and
environment overrides. ``ASSIST_CFG__MODEL__PROFILE=llama_cpp`` sets a single
key, while ``ASSIST_CONFIG_OVERRIDES`` carries a JSON or YAML mapping.
"""
from __future__ import annotations

import copy
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml  # type: ignore[import-untyped]

_DEFAULT_CONFIG: Dict[str, Any] = {
    "model": {
        "profile": "mlx",
        "mode": "ml",
        "runtime_url": "http://127.0.0.1:9000",
        "repo_id": "mlx-community/gemma-3n-E2B-it-4bit",
        "models_dir": "",
        "model_dir_name": "gemma-3n-e2b-it-4bit",
        "size_bytes": 4_790_000_000,
        "request_timeout_seconds": 120.0,
        "profiles": [
            {
                "id": "mlx",
                "label": "MLX (Apple Silicon)",
                "description": "GPU-accelerated inference through MLX; requires an Apple Silicon Mac.",
                "requires": {
                    "architectures": ["arm64", "aarch64"],
                    "systems": ["Darwin"],
                },
            },
            {
                "id": "llama_cpp",
                "label": "llama.cpp (CPU)",
                "description": "Portable CPU inference for Intel Macs and other hosts.",
                "requires": {},
            },
            {
                "id": "rules",
                "label": "Rules Engine",
                "description": "Deterministic offline responses without a language model.",
                "requires": {},
            },
        ],
    },
    "hardware": {
        "min_memory_gb": 8,
    },
    "resources": {
        "critical_gb": 0.5,
        "warning_gb": 1.0,
        "optimal_gb": 4.0,
    },
    "conversation": {
        "max_messages": 1000,
        "max_session_tokens": 32000,
        "history_window": 10,
        "context_max_tokens": 8000,
    },
    "initialization": {
        "poll_interval_seconds": 0.5,
    },
    "summarizer": {
        "prefix_chars": 1500,
        "retry_prefix_chars": 800,
        "min_length": 20,
    },
    "privacy": {
        "store_context_snapshots": True,
        "redact_sensitive": True,
        "state_dir": "",
    },
    "logging": {
        "level": "INFO",
    },
}



ENV_PREFIX = "ASSIST_CFG__"
ENV_MAPPING = "ASSIST_CONFIG_OVERRIDES"


def config_path() -> Path:
    """Return the configuration file path without loading it."""
    env = os.environ.get("ASSIST_CONFIG")
    if env:
        return Path(env).expanduser().resolve()
    return Path(__file__).resolve().parents[1] / "config" / "assistant.yaml"


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        current = base.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            base[key] = _merge(dict(current), value)
        else:
            base[key] = value
    return base


def parse_override_value(raw: Any) -> Any:
    """Coerce an override string the way YAML would read it ("3" -> 3, "false" -> False)."""
    if not isinstance(raw, str) or not raw.strip():
        return raw
    try:
        return yaml.safe_load(raw.strip())
    except yaml.YAMLError:
        return raw


def _key_path(raw: str) -> List[str]:
    return [part.strip().lower().replace("-", "_") for part in raw.split("__") if part.strip()]


def _set_path(target: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    *parents, leaf = path
    for key in parents:
        child = target.get(key)
        if not isinstance(child, dict):
            child = target[key] = {}
        target = child
    target[leaf] = value


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = _key_path(name[len(ENV_PREFIX):])
        if path:
            _set_path(overrides, path, parse_override_value(raw))

    payload = os.environ.get(ENV_MAPPING, "").strip()
    if payload:
        # JSON is a subset of YAML, so one parser covers both forms.
        try:
            mapping = yaml.safe_load(payload)
        except yaml.YAMLError:
            mapping = None
        if isinstance(mapping, dict):
            overrides = _merge(overrides, mapping)
    return overrides


@lru_cache(maxsize=4)
def _read_file(resolved_path: str) -> Dict[str, Any]:
    path = Path(resolved_path)
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def get_config(*, include_env: bool = True) -> Dict[str, Any]:
    """Return a fresh copy of the merged configuration."""
    merged = _merge(copy.deepcopy(_DEFAULT_CONFIG), copy.deepcopy(_read_file(str(config_path()))))
    if include_env:
        merged = _merge(merged, _env_overrides())
    return merged


def section(name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return one top-level section, falling back to the built-in defaults."""
    cfg = config if config is not None else get_config()
    defaults = copy.deepcopy(_DEFAULT_CONFIG.get(name, {}))
    value = cfg.get(name)
    if isinstance(value, dict):
        return _merge(defaults, value)
    return defaults


def list_model_profiles(config: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Return runtime profile descriptors; an empty or missing list means the built-ins."""
    cfg = config or get_config()
    profiles = cfg.get("model", {}).get("profiles")
    if not isinstance(profiles, list) or not profiles:
        profiles = _DEFAULT_CONFIG["model"]["profiles"]
    return [copy.deepcopy(profile) for profile in profiles if isinstance(profile, dict)]


def find_model_profile(profile_id: str, config: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return next((p for p in list_model_profiles(config) if p.get("id") == profile_id), None)


__all__ = [
    "config_path",
    "get_config",
    "section",
    "parse_override_value",
    "list_model_profiles",
    "find_model_profile",
]
