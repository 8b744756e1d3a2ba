from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Final

_DURATION_RE: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)\s*$")

DEFAULT_BASE_URL: Final[str] = "http://127.0.0.1:8098"
API_PREFIX: Final[str] = "/api/v1"
DEFAULT_REQUEST_TIMEOUT_S: Final[float] = 660.0
DEFAULT_CONNECT_TIMEOUT_S: Final[float] = 5.0


class ConfigError(ValueError):
    """Raised when CLI/env configuration values are invalid."""


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """
    Typed config used by the client and the app.

    Notes:
    - `base_url` is the dashboard server root (the API lives under `/api/v1`).
    - `request_timeout_s` bounds the blocking (non-stream) call and the one-shot
      endpoints. Streaming reads are never timed out on the client side; the
      remote process owns the run timeout.
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    stream: bool = True

    def api_url(self, path: str) -> str:
        return self.base_url.rstrip("/") + API_PREFIX + "/" + path.lstrip("/")


def parse_duration_to_seconds(value: str) -> float:
    """
    Parse durations like "5s", "2.5s", "200ms", "10m", "1h" to seconds.

    It is *not* a general-purpose parser; it intentionally supports only what this tool needs.
    """
    m = _DURATION_RE.match(value)
    if not m:
        raise ConfigError(
            f"Invalid duration {value!r}. Expected formats like '200ms', '5s', '10m' (decimals allowed)."
        )

    amount = float(m.group(1))
    unit = m.group(2)

    if unit == "ms":
        return amount / 1000.0
    if unit == "s":
        return amount
    if unit == "m":
        return amount * 60.0
    if unit == "h":
        return amount * 3600.0

    # Should be unreachable due to regex.
    raise ConfigError(f"Unsupported duration unit in {value!r}.")


def env_str(name: str) -> str | None:
    """
    Read a string env var.

    Returns None if unset or blank.
    """
    raw = os.environ.get(name)
    if raw is None:
        return None
    s = raw.strip()
    return s if s else None


def env_bool(name: str, *, default: bool) -> bool:
    """
    Parse boolean env vars in a predictable way.

    Truthy: 1, true, yes, y, on
    Falsy:  0, false, no, n, off
    Unset:  default
    """
    raw = os.environ.get(name)
    if raw is None:
        return default

    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False

    raise ConfigError(
        f"Invalid boolean value for {name}: {raw!r}. Expected one of "
        "'true/false', '1/0', 'yes/no', 'on/off'."
    )


def env_float(name: str) -> float | None:
    """
    Parse an optional float env var.

    Returns None if unset/empty.
    """
    raw = env_str(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid float value for {name}: {raw!r}") from e


def load_config() -> ClientConfig:
    """
    Build a ClientConfig from the environment.

    NCCL_TOOLS_URL      server root (default http://127.0.0.1:8098)
    NCCL_TOOLS_TIMEOUT  request timeout as a duration (e.g. 30s, 10m)
    NCCL_TOOLS_STREAM   use the event stream endpoint (default true)
    NCCL_TOOLS_CONNECT_TIMEOUT  connect timeout in seconds (default 5)
    """
    base_url = env_str("NCCL_TOOLS_URL") or DEFAULT_BASE_URL

    timeout_raw = env_str("NCCL_TOOLS_TIMEOUT")
    timeout_s = (
        parse_duration_to_seconds(timeout_raw)
        if timeout_raw is not None
        else DEFAULT_REQUEST_TIMEOUT_S
    )
    connect_s = env_float("NCCL_TOOLS_CONNECT_TIMEOUT")

    cfg = ClientConfig(
        base_url=base_url,
        request_timeout_s=timeout_s,
        connect_timeout_s=connect_s if connect_s is not None else DEFAULT_CONNECT_TIMEOUT_S,
        stream=env_bool("NCCL_TOOLS_STREAM", default=True),
    )
    validate_config(cfg)
    return cfg


def validate_config(cfg: ClientConfig) -> None:
    """
    Validate client settings.

    - base URL must be http(s)
    - timeouts must be positive
    """
    if not cfg.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"base_url must start with http:// or https://, got {cfg.base_url!r}.")
    if cfg.request_timeout_s <= 0:
        raise ConfigError(f"request_timeout_s must be > 0, got {cfg.request_timeout_s}.")
    if cfg.connect_timeout_s <= 0:
        raise ConfigError(f"connect_timeout_s must be > 0, got {cfg.connect_timeout_s}.")
