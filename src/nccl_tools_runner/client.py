"""
HTTP client for the NCCL test dashboard server.

Provides:
- BenchClient: async wrapper around the `/api/v1/nccl/*` endpoints.
- PrecheckResult / RunResponse / StopResponse: typed response bodies.

All failures surface as TransportError (ProtocolError for malformed bodies);
nothing here retries.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import httpx

from .config import ClientConfig
from .errors import ProtocolError, TransportError
from .params import TestParameters


@dataclass(frozen=True, slots=True)
class NodeStatus:
    """A host reported by the precheck probe."""

    address: str
    process_count: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class PrecheckResult:
    total_nodes: int
    busy_nodes: tuple[NodeStatus, ...]
    busy_count: int
    error_nodes: tuple[NodeStatus, ...] = ()
    error_count: int = 0

    @classmethod
    def from_json(cls, obj: object) -> PrecheckResult:
        if not isinstance(obj, dict):
            raise ProtocolError("precheck: response must be a JSON object")
        busy = tuple(_node_from_json(n) for n in _list_or_empty(obj, "busy_nodes"))
        errs = tuple(_node_from_json(n) for n in _list_or_empty(obj, "error_nodes"))
        return cls(
            total_nodes=_int_field(obj, "total_nodes", default=len(busy) + len(errs)),
            busy_nodes=busy,
            busy_count=_int_field(obj, "busy_count", default=len(busy)),
            error_nodes=errs,
            error_count=_int_field(obj, "error_count", default=len(errs)),
        )


@dataclass(frozen=True, slots=True)
class RunResponse:
    """Terminal body of the blocking `/nccl/run` call."""

    status: str
    output: str
    command: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def from_json(cls, obj: object) -> RunResponse:
        if not isinstance(obj, dict):
            raise ProtocolError("run: response must be a JSON object")
        status = obj.get("status")
        if not isinstance(status, str) or not status:
            raise ProtocolError("run: missing 'status'")
        err = obj.get("error")
        return cls(
            status=status,
            output=_str_field(obj, "output"),
            command=_str_field(obj, "command"),
            error=err if isinstance(err, str) and err else None,
        )


@dataclass(frozen=True, slots=True)
class StopResponse:
    status: str
    message: str = ""

    @property
    def stopped(self) -> bool:
        return self.status == "stopped"

    @classmethod
    def from_json(cls, obj: object) -> StopResponse:
        if not isinstance(obj, dict):
            raise ProtocolError("stop: response must be a JSON object")
        status = obj.get("status")
        if not isinstance(status, str) or not status:
            raise ProtocolError("stop: missing 'status'")
        return cls(status=status, message=_str_field(obj, "message"))


@dataclass(slots=True)
class BenchClient:
    """
    Async client bound to one dashboard server.

    Use as an async context manager, or pass an existing `httpx.AsyncClient`
    (tests inject one backed by `httpx.MockTransport`).
    """

    cfg: ClientConfig
    http: httpx.AsyncClient | None = None
    _owns_http: bool = field(default=False, init=False)

    async def __aenter__(self) -> BenchClient:
        if self.http is None:
            self.http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.cfg.request_timeout_s, connect=self.cfg.connect_timeout_s)
            )
            self._owns_http = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.http is not None and self._owns_http:
            await self.http.aclose()
            self.http = None
            self._owns_http = False

    def _client(self) -> httpx.AsyncClient:
        if self.http is None:
            raise TransportError("BenchClient is not open (use 'async with BenchClient(...)')")
        return self.http

    async def defaults(self) -> TestParameters:
        obj = await self._request_json("GET", "nccl/defaults")
        if not isinstance(obj, dict):
            raise ProtocolError("defaults: response must be a JSON object")
        try:
            return TestParameters.from_json(obj)
        except ValueError as e:
            raise ProtocolError(f"defaults: {e}") from e

    async def precheck(self, filename: str) -> PrecheckResult:
        obj = await self._request_json("GET", "nccl/precheck", params={"filename": filename})
        return PrecheckResult.from_json(obj)

    async def run(self, params: TestParameters) -> RunResponse:
        obj = await self._request_json("POST", "nccl/run", json=params.to_request())
        return RunResponse.from_json(obj)

    async def stop(self) -> StopResponse:
        obj = await self._request_json("POST", "nccl/stop")
        return StopResponse.from_json(obj)

    async def stream_run(self, params: TestParameters) -> AsyncIterator[str]:
        """
        POST to `/nccl/run-stream` and yield decoded text chunks as they arrive.

        Chunks are not aligned to lines; feed them through `LineReassembler`.
        No read timeout is applied: the run lasts as long as the remote process.
        """
        url = self.cfg.api_url("nccl/run-stream")
        timeout = httpx.Timeout(None, connect=self.cfg.connect_timeout_s)
        try:
            async with self._client().stream(
                "POST", url, json=params.to_request(), timeout=timeout
            ) as resp:
                if resp.status_code != 200:
                    await resp.aread()
                    raise TransportError(f"run-stream: {_error_message(resp)}")
                async for chunk in resp.aiter_text():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"run-stream: {_describe_http_error(e)}") from e

    async def _request_json(self, method: str, path: str, **kwargs) -> object:
        url = self.cfg.api_url(path)
        try:
            resp = await self._client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{path}: {_describe_http_error(e)}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            raise TransportError(f"{path}: {_error_message(resp)}")

        try:
            return resp.json()
        except ValueError as e:
            raise ProtocolError(f"{path}: response is not valid JSON") from e


def _error_message(resp: httpx.Response) -> str:
    # Server errors look like {"error": "..."}; fall back to the status line.
    try:
        obj = json.loads(resp.text)
    except ValueError:
        obj = None
    if isinstance(obj, dict):
        err = obj.get("error")
        if isinstance(err, str) and err:
            return err
    return f"HTTP {resp.status_code}"


def _describe_http_error(e: httpx.HTTPError) -> str:
    msg = str(e)
    return msg if msg else type(e).__name__


def _node_from_json(obj: object) -> NodeStatus:
    if not isinstance(obj, dict):
        raise ProtocolError("precheck: node entry must be a JSON object")
    ip = obj.get("ip")
    if not isinstance(ip, str) or not ip:
        raise ProtocolError("precheck: node entry missing 'ip'")
    err = obj.get("error")
    return NodeStatus(
        address=ip,
        process_count=_int_field(obj, "process_count", default=0),
        error=err if isinstance(err, str) and err else None,
    )


def _list_or_empty(obj: dict[str, object], key: str) -> list[object]:
    # Go encodes a nil slice as null.
    v = obj.get(key)
    if v is None:
        return []
    if not isinstance(v, list):
        raise ProtocolError(f"key {key!r} must be a list")
    return v


def _int_field(obj: dict[str, object], key: str, *, default: int) -> int:
    if key not in obj or obj[key] is None:
        return default
    v = obj[key]
    if isinstance(v, bool):
        raise ProtocolError(f"key {key!r} must be an int, got bool")
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    raise ProtocolError(f"key {key!r} must be an int, got {type(v).__name__}")


def _str_field(obj: dict[str, object], key: str) -> str:
    v = obj.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise ProtocolError(f"key {key!r} must be a string, got {type(v).__name__}")
    return v
