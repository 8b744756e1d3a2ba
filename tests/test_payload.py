from __future__ import annotations

import pytest

from nccl_tools_runner.payload import decode_payload


def test_decode_payload_json_string() -> None:
    p = decode_payload('"mpirun --allow-run-as-root"')
    assert p.structured
    assert p.value == "mpirun --allow-run-as-root"
    assert p.text() == "mpirun --allow-run-as-root"


def test_decode_payload_falls_back_to_raw_text() -> None:
    raw = "        1024           256     float     sum      -1"
    p = decode_payload(raw)
    assert not p.structured
    assert p.value == raw
    assert p.text() == raw


def test_decode_payload_error_object_message() -> None:
    p = decode_payload('{"message":"NCCL test failed: exit status 1"}')
    assert p.structured
    assert p.message() == "NCCL test failed: exit status 1"


@pytest.mark.parametrize(
    "raw",
    [
        '{"message":""}',
        '{"code":3}',
        "[1, 2]",
    ],
)
def test_message_falls_back_to_raw_when_no_message_field(raw: str) -> None:
    assert decode_payload(raw).message() == raw


def test_structured_non_string_text_is_raw() -> None:
    # A bare number in an output frame must keep its exact formatting.
    assert decode_payload("1.50").text() == "1.50"


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity", "", " ", "{broken"])
def test_decode_payload_never_raises(raw: str) -> None:
    p = decode_payload(raw)
    assert not p.structured
    assert p.text() == raw


@pytest.mark.parametrize("opener", ["[", '{"a":'])
def test_decode_payload_deeply_nested_falls_back_to_raw(opener: str) -> None:
    raw = opener * 200000
    p = decode_payload(raw)
    assert not p.structured
    assert p.text() == raw
