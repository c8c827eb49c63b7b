from __future__ import annotations

import json
from textwrap import dedent

import pytest

from assistant import config


def test_env_override_applies(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    cfg_path = tmp_path / "assistant.yaml"
    cfg_path.write_text(dedent(
        """
        model:
          profile: mlx
        privacy:
          redact_sensitive: true
        """
    ))
    monkeypatch.setenv("ASSIST_CONFIG", str(cfg_path))
    monkeypatch.setenv("ASSIST_CFG__MODEL__PROFILE", "llama_cpp")
    monkeypatch.setenv("ASSIST_CFG__PRIVACY__REDACT_SENSITIVE", "false")
    monkeypatch.setenv("ASSIST_CFG__RESOURCES__WARNING_GB", "1.5")

    data = config.get_config()
    assert data["model"]["profile"] == "llama_cpp"
    assert data["privacy"]["redact_sensitive"] is False
    assert data["resources"]["warning_gb"] == 1.5


def test_json_override_payload(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    cfg_path = tmp_path / "assistant.yaml"
    cfg_path.write_text("model:\n  mode: ml\n")
    monkeypatch.setenv("ASSIST_CONFIG", str(cfg_path))
    monkeypatch.setenv(
        "ASSIST_CONFIG_OVERRIDES",
        json.dumps({
            "model": {"mode": "rules"},
            "conversation": {"history_window": 4},
        }),
    )

    data = config.get_config()
    assert data["model"]["mode"] == "rules"
    assert data["conversation"]["history_window"] == 4
    assert data["conversation"]["max_messages"] == 1000


def test_yaml_mapping_override_and_malformed_payload(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("ASSIST_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("ASSIST_CONFIG_OVERRIDES", "summarizer: {prefix_chars: 600}")
    assert config.get_config()["summarizer"]["prefix_chars"] == 600

    monkeypatch.setenv("ASSIST_CONFIG_OVERRIDES", "{not: valid: [")
    data = config.get_config()
    assert data["summarizer"]["prefix_chars"] == 1500
    assert config.get_config(include_env=False)["model"]["profile"] == "mlx"


def test_section_fills_missing_keys_from_defaults() -> None:
    merged = config.section("summarizer", {"summarizer": {"prefix_chars": 900}})
    assert merged == {"prefix_chars": 900, "retry_prefix_chars": 800, "min_length": 20}
    assert config.section("hardware", {})["min_memory_gb"] == 8


def test_model_profiles_fall_back_to_builtins() -> None:
    ids = [profile["id"] for profile in config.list_model_profiles({"model": {}})]
    assert ids == ["mlx", "llama_cpp", "rules"]
    custom = {"model": {"profiles": [{"id": "cuda", "requires": {}}]}}
    assert config.find_model_profile("cuda", custom) == {"id": "cuda", "requires": {}}
    assert config.find_model_profile("mlx", custom) is None


def test_parse_override_value_coerces_scalars() -> None:
    assert config.parse_override_value("true") is True
    assert config.parse_override_value("3") == 3
    assert config.parse_override_value("0.5") == 0.5
    assert config.parse_override_value("mlx") == "mlx"
