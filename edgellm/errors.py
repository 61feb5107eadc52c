"""Error hierarchy shared by the download manager and the inference engine.

Every error carries an :class:`ErrorKind` so calling code can branch on the
kind of failure without parsing messages::

    try:
        await engine.generate("hi")
    except EngineError as exc:
        if exc.kind is ErrorKind.ENGINE_UNLOADED:
            ...
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    DOWNLOAD_TRANSPORT = "download-transport"
    DOWNLOAD_VERIFICATION = "download-verification"
    MODEL_INFO = "model-info"
    ENGINE_UNLOADED = "engine-unloaded"
    ENGINE_RUNTIME_TRANSIENT = "engine-runtime-transient"
    ENGINE_RUNTIME_FATAL = "engine-runtime-fatal"
    ENGINE_CANCELLED = "engine-cancelled"


class EdgeLLMError(Exception):
    """Base class for all edgellm errors."""

    kind: ErrorKind

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


class RepositoryError(EdgeLLMError):
    """Raised by repository clients when a remote call fails."""

    kind = ErrorKind.DOWNLOAD_TRANSPORT

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.status_code = status_code


class DownloadError(EdgeLLMError):
    """A model download could not be completed. Partial data is kept on disk."""

    def __init__(self, reason: str, model_id: str = "", filename: Optional[str] = None) -> None:
        super().__init__(reason)
        self.model_id = model_id
        self.filename = filename

    def __str__(self) -> str:
        return f"could not complete model download: {self.reason}, partial data retained"


class DownloadTransportError(DownloadError):
    kind = ErrorKind.DOWNLOAD_TRANSPORT


class DownloadVerificationError(DownloadError):
    kind = ErrorKind.DOWNLOAD_VERIFICATION


class ModelInfoError(EdgeLLMError):
    kind = ErrorKind.MODEL_INFO

    def __str__(self) -> str:
        return f"could not fetch model info: {self.reason}"


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class EngineError(EdgeLLMError):
    """Base class for inference engine failures."""

    retryable = False

    def __str__(self) -> str:
        return f"generation failed: {self.reason}"


class EngineUnloadedError(EngineError):
    kind = ErrorKind.ENGINE_UNLOADED

    def __init__(self, reason: str = "model unloaded") -> None:
        super().__init__(reason)


class RuntimeFailure(EngineError):
    """A failure reported by the compute runtime (or the fallback path)."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"runtime error: {reason}")


class TransientRuntimeError(RuntimeFailure):
    kind = ErrorKind.ENGINE_RUNTIME_TRANSIENT
    retryable = True


class FatalRuntimeError(RuntimeFailure):
    kind = ErrorKind.ENGINE_RUNTIME_FATAL


class InvalidRequestError(FatalRuntimeError):
    """Malformed prompt or generation parameters."""

    def __init__(self, reason: str) -> None:
        EngineError.__init__(self, f"invalid request: {reason}")


class GenerationCancelledError(EngineError):
    """The call was superseded by a newer call on the same engine."""

    kind = ErrorKind.ENGINE_CANCELLED

    def __init__(self, reason: str = "cancelled by a newer generation request") -> None:
        super().__init__(reason)


class RuntimeUnavailableError(Exception):
    """Raised by a compute runtime that cannot be initialised on this host.

    The inference engine treats it as a signal to switch to fallback mode;
    it is never surfaced to callers.
    """


def classify_runtime_error(exc: BaseException) -> EngineError:
    """Map an arbitrary runtime exception onto the engine error kinds."""
    if isinstance(exc, EngineError):
        return exc
    if isinstance(exc, (ValueError, TypeError)):
        return FatalRuntimeError(str(exc) or type(exc).__name__)
    return TransientRuntimeError(str(exc) or type(exc).__name__)
