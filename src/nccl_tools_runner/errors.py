from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for errors raised by nccl-tools-runner."""


class PreconditionError(RunnerError):
    """Raised when a run cannot start because a required input is missing or invalid."""


class RunActiveError(PreconditionError):
    """Raised when a run is requested while another attempt is still in flight."""


class TransportError(RunnerError):
    """Raised when the dashboard server cannot be reached or answers with a failure."""


class ProtocolError(TransportError):
    """Raised when a server response does not have the expected shape."""
