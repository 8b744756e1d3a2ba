from __future__ import annotations

import pytest

from nccl_tools_runner.config import (
    DEFAULT_BASE_URL,
    ClientConfig,
    ConfigError,
    env_bool,
    env_float,
    load_config,
    parse_duration_to_seconds,
    validate_config,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("200ms", 0.2),
        ("2s", 2.0),
        ("2.5s", 2.5),
        ("1m", 60.0),
        ("1h", 3600.0),
        ("  5s ", 5.0),
    ],
)
def test_parse_duration_to_seconds(value: str, expected: float) -> None:
    assert parse_duration_to_seconds(value) == expected


def test_parse_duration_to_seconds_rejects_invalid() -> None:
    with pytest.raises(ConfigError):
        parse_duration_to_seconds("5")


def test_env_bool_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("X", raising=False)
    assert env_bool("X", default=True) is True
    assert env_bool("X", default=False) is False

    monkeypatch.setenv("X", "true")
    assert env_bool("X", default=False) is True

    monkeypatch.setenv("X", "0")
    assert env_bool("X", default=True) is False

    monkeypatch.setenv("X", "wat")
    with pytest.raises(ConfigError):
        env_bool("X", default=True)


def test_env_float(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("X", " ")
    assert env_float("X") is None
    monkeypatch.setenv("X", "1.5")
    assert env_float("X") == 1.5
    monkeypatch.setenv("X", "fast")
    with pytest.raises(ConfigError):
        env_float("X")


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "NCCL_TOOLS_URL",
        "NCCL_TOOLS_TIMEOUT",
        "NCCL_TOOLS_STREAM",
        "NCCL_TOOLS_CONNECT_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    cfg = load_config()
    assert cfg.base_url == DEFAULT_BASE_URL
    assert cfg.stream is True
    assert cfg.connect_timeout_s == 5.0
    assert cfg.api_url("nccl/run-stream") == "http://127.0.0.1:8098/api/v1/nccl/run-stream"


def test_load_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NCCL_TOOLS_URL", "http://dash.local:9000/")
    monkeypatch.setenv("NCCL_TOOLS_TIMEOUT", "30s")
    monkeypatch.setenv("NCCL_TOOLS_STREAM", "off")
    monkeypatch.setenv("NCCL_TOOLS_CONNECT_TIMEOUT", "2.5")
    cfg = load_config()
    assert cfg.request_timeout_s == 30.0
    assert cfg.connect_timeout_s == 2.5
    assert cfg.stream is False
    assert cfg.api_url("/nccl/stop") == "http://dash.local:9000/api/v1/nccl/stop"


@pytest.mark.parametrize(
    "cfg",
    [
        ClientConfig(base_url="dash.local:9000"),
        ClientConfig(request_timeout_s=0),
        ClientConfig(connect_timeout_s=-1.0),
    ],
)
def test_validate_config_rejects_invalid(cfg: ClientConfig) -> None:
    with pytest.raises(ConfigError):
        validate_config(cfg)


def test_load_config_rejects_bad_connect_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("NCCL_TOOLS_URL", "NCCL_TOOLS_TIMEOUT", "NCCL_TOOLS_STREAM"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NCCL_TOOLS_CONNECT_TIMEOUT", "0")
    with pytest.raises(ConfigError):
        load_config()
