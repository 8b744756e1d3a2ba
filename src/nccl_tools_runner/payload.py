from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DecodedPayload:
    """
    Result of decoding a frame payload.

    `structured` is True when `raw` parsed as JSON; `value` then holds the parsed
    object. Otherwise `value` is `raw` itself.
    """

    raw: str
    value: object
    structured: bool

    def text(self) -> str:
        """The payload as text: a decoded JSON string, else the verbatim payload."""
        if self.structured and isinstance(self.value, str):
            return self.value
        return self.raw

    def message(self) -> str:
        """Error-style message: the `message` field of a JSON object, else the raw text."""
        if self.structured and isinstance(self.value, dict):
            msg = self.value.get("message")
            if isinstance(msg, str) and msg:
                return msg
        return self.text()


def _reject_constant(name: str) -> object:
    # NaN/Infinity are not JSON.
    raise ValueError(f"invalid JSON constant: {name}")


def decode_payload(raw: str) -> DecodedPayload:
    """Decode a payload as JSON, falling back to the raw text. Never raises."""
    try:
        value = json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        # RecursionError: pathologically nested arrays/objects.
        return DecodedPayload(raw=raw, value=raw, structured=False)
    return DecodedPayload(raw=raw, value=value, structured=True)
