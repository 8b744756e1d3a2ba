from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Final

from .errors import PreconditionError

_SIZE_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+)\s*([KMGkmg]?)\s*$")


class SizeUnit(enum.Enum):
    """Message size unit; the value is the wire suffix."""

    BYTES = ""
    KB = "K"
    MB = "M"
    GB = "G"

    @property
    def multiplier(self) -> int:
        return {
            SizeUnit.BYTES: 1,
            SizeUnit.KB: 1024,
            SizeUnit.MB: 1024**2,
            SizeUnit.GB: 1024**3,
        }[self]


class DebugLevel(str, enum.Enum):
    WARN = "WARN"
    INFO = "INFO"
    TRACE = "TRACE"


@dataclass(frozen=True, slots=True)
class MessageSize:
    magnitude: int
    unit: SizeUnit = SizeUnit.BYTES

    @property
    def token(self) -> str:
        """Wire/CLI form, e.g. `8K`, `128M`, `1`."""
        return f"{self.magnitude}{self.unit.value}"

    @property
    def num_bytes(self) -> int:
        return self.magnitude * self.unit.multiplier


@dataclass(frozen=True, slots=True)
class TestParameters:
    """
    Snapshot of one run's settings (field names match the server's JSON keys).

    `test_size_begin`/`test_size_end`/`iters` are optional: when absent the
    corresponding nccl-tests flag is not passed at all.
    """

    __test__ = False  # not a pytest test class

    map_by: str
    oob_tcp_interface: str
    btl_tcp_interface: str
    nccl_ib_gid_index: int
    nccl_min_channels: int
    nccl_ib_qps_per_connection: int
    test_size_begin: MessageSize | None = None
    test_size_end: MessageSize | None = None
    iters: int | None = None
    timeout: int = 600
    enable_debug: bool = False
    nccl_debug_level: DebugLevel | None = DebugLevel.WARN
    iplist_file: str = ""

    @property
    def size_test_enabled(self) -> bool:
        return self.test_size_begin is not None or self.test_size_end is not None

    @property
    def iters_enabled(self) -> bool:
        return self.iters is not None and self.iters > 0

    def to_request(self) -> dict[str, object]:
        """JSON body for `/nccl/run` and `/nccl/run-stream`."""
        body: dict[str, object] = {
            "map_by": self.map_by,
            "oob_tcp_interface": self.oob_tcp_interface,
            "btl_tcp_interface": self.btl_tcp_interface,
            "nccl_ib_gid_index": self.nccl_ib_gid_index,
            "nccl_min_channels": self.nccl_min_channels,
            "nccl_ib_qps_per_connection": self.nccl_ib_qps_per_connection,
            "timeout": self.timeout,
            "enable_debug": self.enable_debug,
            "nccl_debug_level": "" if self.nccl_debug_level is None else self.nccl_debug_level.value,
            "iplist_file": self.iplist_file,
        }
        if self.test_size_begin is not None:
            body["test_size_begin"] = self.test_size_begin.token
        if self.test_size_end is not None:
            body["test_size_end"] = self.test_size_end.token
        if self.iters_enabled:
            body["iters"] = self.iters
        return body

    @classmethod
    def from_json(cls, obj: dict[str, object]) -> TestParameters:
        """Build parameters from the server's `/nccl/defaults` payload."""
        try:
            level_raw = str(obj.get("nccl_debug_level") or "")
            iters = int(obj.get("iters") or 0)  # type: ignore[arg-type]
            return cls(
                map_by=str(obj["map_by"]),
                oob_tcp_interface=str(obj["oob_tcp_interface"]),
                btl_tcp_interface=str(obj["btl_tcp_interface"]),
                nccl_ib_gid_index=int(obj["nccl_ib_gid_index"]),  # type: ignore[arg-type]
                nccl_min_channels=int(obj["nccl_min_channels"]),  # type: ignore[arg-type]
                nccl_ib_qps_per_connection=int(obj["nccl_ib_qps_per_connection"]),  # type: ignore[arg-type]
                test_size_begin=_size_from_json(obj.get("test_size_begin")),
                test_size_end=_size_from_json(obj.get("test_size_end")),
                iters=iters if iters > 0 else None,
                timeout=int(obj.get("timeout") or 0),  # type: ignore[arg-type]
                enable_debug=bool(obj.get("enable_debug", False)),
                nccl_debug_level=DebugLevel(level_raw.upper()) if level_raw else None,
                iplist_file=str(obj.get("iplist_file") or ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"invalid test parameters: {e}") from e


def _size_from_json(v: object) -> MessageSize | None:
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        raise ValueError(f"invalid size: {v!r}")
    if isinstance(v, int):
        return MessageSize(v)
    return parse_size_token(str(v))


def parse_size_token(token: str) -> MessageSize:
    """
    Parse a size as written on the wire or the command line.

    Examples: "1" -> 1 B, "8K" -> 8 KiB, "128M", "1G". Units are powers of 1024.
    """
    m = _SIZE_TOKEN_RE.match(token)
    if not m:
        raise ValueError(f"Invalid size {token!r}. Expected formats like '1', '8K', '128M', '1G'.")
    return MessageSize(int(m.group(1)), SizeUnit(m.group(2).upper()))


def default_parameters() -> TestParameters:
    """Defaults served by the dashboard (`GET /nccl/defaults`); no host list is preselected."""
    return TestParameters(
        map_by="ppr:8:node",
        oob_tcp_interface="bond0",
        btl_tcp_interface="bond0",
        nccl_ib_gid_index=3,
        nccl_min_channels=32,
        nccl_ib_qps_per_connection=8,
        test_size_begin=MessageSize(1, SizeUnit.BYTES),
        test_size_end=MessageSize(1, SizeUnit.MB),
        iters=20,
        timeout=600,
        enable_debug=False,
        nccl_debug_level=DebugLevel.WARN,
        iplist_file="",
    )


def validate_parameters(p: TestParameters) -> None:
    """
    Validate parameters before anything is sent.

    - map-by and interface selectors must be non-empty
    - gid index / timeout must be >= 0, channels / qps must be > 0
    - size range must not be inverted
    The host list is checked by the run coordinator, not here.
    """
    for name, value in (
        ("map_by", p.map_by),
        ("oob_tcp_interface", p.oob_tcp_interface),
        ("btl_tcp_interface", p.btl_tcp_interface),
    ):
        if not value.strip():
            raise PreconditionError(f"{name} must not be empty.")

    if p.nccl_ib_gid_index < 0:
        raise PreconditionError(f"nccl_ib_gid_index must be >= 0, got {p.nccl_ib_gid_index}.")
    if p.nccl_min_channels <= 0:
        raise PreconditionError(f"nccl_min_channels must be > 0, got {p.nccl_min_channels}.")
    if p.nccl_ib_qps_per_connection <= 0:
        raise PreconditionError(
            f"nccl_ib_qps_per_connection must be > 0, got {p.nccl_ib_qps_per_connection}."
        )
    if p.timeout < 0:
        raise PreconditionError(f"timeout must be >= 0, got {p.timeout}.")
    if p.iters is not None and p.iters < 0:
        raise PreconditionError(f"iters must be >= 0, got {p.iters}.")

    for name, size in (("test_size_begin", p.test_size_begin), ("test_size_end", p.test_size_end)):
        if size is not None and size.magnitude <= 0:
            raise PreconditionError(f"{name} must be > 0, got {size.token!r}.")

    if (
        p.test_size_begin is not None
        and p.test_size_end is not None
        and p.test_size_begin.num_bytes > p.test_size_end.num_bytes
    ):
        raise PreconditionError(
            f"test_size_begin ({p.test_size_begin.token}) is larger than "
            f"test_size_end ({p.test_size_end.token})."
        )
