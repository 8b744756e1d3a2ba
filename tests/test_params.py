from __future__ import annotations

from dataclasses import replace

import pytest

from nccl_tools_runner.errors import PreconditionError
from nccl_tools_runner.params import (
    DebugLevel,
    MessageSize,
    SizeUnit,
    TestParameters,
    default_parameters,
    parse_size_token,
    validate_parameters,
)


@pytest.mark.parametrize(
    ("token", "expected_bytes", "expected_token"),
    [
        ("1", 1, "1"),
        ("8K", 8 * 1024, "8K"),
        ("128m", 128 * 1024**2, "128M"),
        (" 1G ", 1024**3, "1G"),
    ],
)
def test_parse_size_token(token: str, expected_bytes: int, expected_token: str) -> None:
    size = parse_size_token(token)
    assert size.num_bytes == expected_bytes
    assert size.token == expected_token


@pytest.mark.parametrize("token", ["", "K", "1T", "1.5M", "-1"])
def test_parse_size_token_rejects_invalid(token: str) -> None:
    with pytest.raises(ValueError):
        parse_size_token(token)


def test_to_request_uses_server_field_names() -> None:
    p = replace(default_parameters(), iplist_file="hosts.txt")
    body = p.to_request()
    assert body["map_by"] == "ppr:8:node"
    assert body["test_size_begin"] == "1"
    assert body["test_size_end"] == "1M"
    assert body["iters"] == 20
    assert body["nccl_debug_level"] == "WARN"
    assert body["iplist_file"] == "hosts.txt"


def test_to_request_omits_disabled_size_and_iters() -> None:
    p = replace(default_parameters(), test_size_begin=None, test_size_end=None, iters=None)
    body = p.to_request()
    assert "test_size_begin" not in body
    assert "test_size_end" not in body
    assert "iters" not in body
    assert not p.size_test_enabled
    assert not p.iters_enabled


def test_from_json_roundtrips_server_defaults() -> None:
    obj = {
        "map_by": "ppr:8:node",
        "oob_tcp_interface": "bond0",
        "btl_tcp_interface": "bond0",
        "nccl_ib_gid_index": 3,
        "nccl_min_channels": 32,
        "nccl_ib_qps_per_connection": 8,
        "test_size_begin": "1",
        "test_size_end": "1M",
        "iters": 20,
        "timeout": 600,
        "enable_debug": False,
        "nccl_debug_level": "WARN",
    }
    assert TestParameters.from_json(obj) == default_parameters()


def test_from_json_missing_required_key() -> None:
    with pytest.raises(ValueError, match="invalid test parameters"):
        TestParameters.from_json({"map_by": "ppr:8:node"})


def test_from_json_accepts_numeric_sizes_and_empty_level() -> None:
    obj = {
        "map_by": "ppr:4:node",
        "oob_tcp_interface": "eth0",
        "btl_tcp_interface": "eth1",
        "nccl_ib_gid_index": 0,
        "nccl_min_channels": 4,
        "nccl_ib_qps_per_connection": 1,
        "test_size_begin": 8,
        "iters": 0,
        "nccl_debug_level": "",
    }
    p = TestParameters.from_json(obj)
    assert p.test_size_begin == MessageSize(8, SizeUnit.BYTES)
    assert p.test_size_end is None
    assert p.iters is None
    assert p.nccl_debug_level is None


def test_validate_parameters_accepts_defaults() -> None:
    validate_parameters(default_parameters())


@pytest.mark.parametrize(
    "changes",
    [
        {"map_by": "  "},
        {"oob_tcp_interface": ""},
        {"nccl_ib_gid_index": -1},
        {"nccl_min_channels": 0},
        {"nccl_ib_qps_per_connection": 0},
        {"timeout": -5},
        {"test_size_begin": MessageSize(0)},
        {"test_size_begin": MessageSize(2, SizeUnit.GB), "test_size_end": MessageSize(1, SizeUnit.MB)},
    ],
)
def test_validate_parameters_rejects_invalid(changes: dict[str, object]) -> None:
    with pytest.raises(PreconditionError):
        validate_parameters(replace(default_parameters(), **changes))


def test_debug_level_values() -> None:
    assert [lvl.value for lvl in DebugLevel] == ["WARN", "INFO", "TRACE"]
