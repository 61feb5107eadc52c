"""Inference engine — load a local model, generate text, unload.

The engine drives a :class:`~edgellm.engines.ComputeRuntime` when one is
usable and silently switches to the deterministic
:class:`~edgellm.engines.FallbackGenerator` when none is, so callers can
exercise the whole API on any host.

Lifecycle::

    UNLOADED -> LOADING -> READY <-> GENERATING -> UNLOADED (terminal)

Usage::

    engine = await InferenceEngine.load_model(descriptor)
    text = await engine.generate("Hello")

    async with engine.stream("Tell me a story") as fragments:
        async for fragment in fragments:
            print(fragment, end="")

    engine.unload()

At most one generation is active per engine: starting a new ``generate``
or ``stream`` cancels the previous one, which then raises
:class:`~edgellm.errors.GenerationCancelledError`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator, Optional

from .config import EdgeLLMConfig
from .engines import ComputeRuntime, FallbackGenerator, RuntimeRegistry, default_registry
from .errors import (
    EngineError,
    EngineUnloadedError,
    FatalRuntimeError,
    GenerationCancelledError,
    InvalidRequestError,
    RuntimeUnavailableError,
    TransientRuntimeError,
    classify_runtime_error,
)
from .hardware import MiB, resolve_memory_ceiling
from .models import GenerateParams, ModelDescriptor
from .resilience import EngineHealth, HealthMonitor, Outcome, RetryPolicy, retry_async
from .storage import StorageRoot, default_storage_root

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

MOCK_PREFIX = "mock/"

_DONE = object()


class EngineState(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    GENERATING = "generating"


class RuntimeMode(str, enum.Enum):
    REAL = "real"
    FALLBACK = "fallback"


class CancelReason(str, enum.Enum):
    SUPERSEDED = "superseded"
    UNLOADED = "unloaded"
    CONSUMER = "consumer"


class CancellationToken:
    """Cooperative cancellation flag for one generation call."""

    def __init__(self) -> None:
        self.reason: Optional[CancelReason] = None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    def cancel(self, reason: CancelReason = CancelReason.SUPERSEDED) -> None:
        if self.reason is None:
            self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self.reason is CancelReason.UNLOADED:
            raise EngineUnloadedError()
        if self.reason is not None:
            raise GenerationCancelledError()


@dataclass
class EngineStatus:
    """Point-in-time snapshot of an engine."""

    model_id: str
    model_loaded: bool
    state: EngineState
    runtime_mode: Optional[RuntimeMode]
    runtime_name: Optional[str]
    memory_limit_bytes: int
    health: EngineHealth
    last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["runtime_mode"] = self.runtime_mode.value if self.runtime_mode else None
        data["health"] = self.health.value
        return data


# ---------------------------------------------------------------------------
# Stop sequences
# ---------------------------------------------------------------------------


class StopSequenceFilter:
    """Cut a fragment stream at the first stop sequence.

    Text that could be the start of a stop sequence is held back until the
    next fragment decides it, so a stop split across fragments is still
    caught. Streaming and one-shot generation share this filter, which keeps
    their outputs identical.
    """

    def __init__(self, stops: tuple[str, ...] = ()) -> None:
        self.stops = tuple(s for s in stops if s)
        self.stopped = False
        self._buffer = ""

    def feed(self, fragment: str) -> str:
        if self.stopped:
            return ""
        if not self.stops:
            return fragment
        self._buffer += fragment
        hits = [i for i in (self._buffer.find(s) for s in self.stops) if i >= 0]
        if hits:
            out = self._buffer[: min(hits)]
            self._buffer = ""
            self.stopped = True
            return out
        held = self._partial_match()
        split = len(self._buffer) - held
        out, self._buffer = self._buffer[:split], self._buffer[split:]
        return out

    def flush(self) -> str:
        out, self._buffer = self._buffer, ""
        return out

    def _partial_match(self) -> int:
        """Length of the longest buffer suffix that is a proper prefix of a stop."""
        best = 0
        for stop in self.stops:
            for size in range(min(len(stop) - 1, len(self._buffer)), best, -1):
                if self._buffer.endswith(stop[:size]):
                    best = size
                    break
        return best


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


class GenerationStream:
    """One-shot async iterator over the fragments of a single generation.

    Pull-based: nothing is produced until ``__anext__`` is awaited.
    ``aclose()`` (or leaving ``async with``) stops production and releases
    the call's cancellation token.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        fragments: AsyncIterator[str],
        token: CancellationToken,
    ) -> None:
        self._engine = engine
        self._fragments = fragments
        self._token = token
        self._finished = False
        self.delivered = 0

    def __aiter__(self) -> GenerationStream:
        return self

    async def __anext__(self) -> str:
        if self._finished:
            raise StopAsyncIteration
        try:
            fragment = await self._fragments.__anext__()
        except StopAsyncIteration:
            self._finish()
            self._engine._record(Outcome.SUCCESS)
            raise
        except EngineError as exc:
            self._finish()
            self._engine._record_failure(exc)
            raise
        except BaseException:
            self._finish()
            raise
        self.delivered += 1
        return fragment

    def _finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._engine._end_call(self._token)

    async def aclose(self) -> None:
        """Stop consuming. Safe to call more than once."""
        if not self._finished:
            self._token.cancel(CancelReason.CONSUMER)
            self._finish()
        await self._fragments.aclose()  # type: ignore[attr-defined]

    async def __aenter__(self) -> GenerationStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class InferenceEngine:
    """Generation service for one model.

    Parameters
    ----------
    descriptor:
        The model to serve. Its files are looked up under ``storage``.
    storage:
        Storage root holding model directories. Defaults to the platform
        root (or ``config.models_dir``).
    registry:
        Compute runtimes to choose from. Defaults to the built-ins.
    config:
        Memory ceiling, retry defaults, ``force_fallback`` and the fallback
        step delay.
    """

    def __init__(
        self,
        descriptor: ModelDescriptor,
        *,
        storage: Optional[StorageRoot] = None,
        registry: Optional[RuntimeRegistry] = None,
        config: Optional[EdgeLLMConfig] = None,
    ) -> None:
        self.descriptor = descriptor
        self.config = config or EdgeLLMConfig()
        self.storage = storage or default_storage_root(self.config.models_dir)
        self.registry = registry if registry is not None else default_registry()

        self._state = EngineState.UNLOADED
        self._terminated = False
        self._mode: Optional[RuntimeMode] = None
        self._runtime: Optional[ComputeRuntime] = None
        self._handle: Any = None
        self._model_dir: Optional[Path] = None
        self._memory_limit = 0
        self._token: Optional[CancellationToken] = None
        # Worker-thread call currently running on the runtime handle, and the
        # iterator of the generation that owns the handle.
        self._step: Optional[asyncio.Future[Any]] = None
        self._steps: Optional[Iterator[str]] = None
        self._fallback = FallbackGenerator()
        self._monitor = HealthMonitor()
        self._last_error: Optional[str] = None

    @classmethod
    async def load_model(
        cls,
        descriptor: ModelDescriptor,
        on_progress: Optional[ProgressCallback] = None,
        *,
        storage: Optional[StorageRoot] = None,
        registry: Optional[RuntimeRegistry] = None,
        config: Optional[EdgeLLMConfig] = None,
    ) -> InferenceEngine:
        """Create an engine for ``descriptor`` and load it.

        Never fails because a runtime is missing: the engine ends up READY,
        in fallback mode if necessary.
        """
        engine = cls(descriptor, storage=storage, registry=registry, config=config)
        await engine.load(on_progress)
        return engine

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def runtime_mode(self) -> Optional[RuntimeMode]:
        return self._mode

    @property
    def is_loaded(self) -> bool:
        return not self._terminated and self._state in (EngineState.READY, EngineState.GENERATING)

    @property
    def memory_limit_bytes(self) -> int:
        return self._memory_limit

    @property
    def health(self) -> EngineHealth:
        if self._terminated or self._state is EngineState.UNLOADED:
            return EngineHealth.UNHEALTHY
        if self._state is EngineState.LOADING:
            return EngineHealth.DEGRADED
        return self._monitor.classify()

    @property
    def status(self) -> EngineStatus:
        return EngineStatus(
            model_id=self.descriptor.model_id,
            model_loaded=self.is_loaded,
            state=self._state,
            runtime_mode=self._mode,
            runtime_name=(
                self._fallback.name
                if self._mode is RuntimeMode.FALLBACK
                else self._runtime.name if self._runtime else None
            ),
            memory_limit_bytes=self._memory_limit,
            health=self.health,
            last_error=self._last_error,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, on_progress: Optional[ProgressCallback] = None) -> InferenceEngine:
        """Load the model. A second call on a loaded engine is a no-op.

        Raises
        ------
        EngineUnloadedError
            If the engine was unloaded, which is terminal.
        """
        if self._terminated:
            raise EngineUnloadedError()
        if self._state is not EngineState.UNLOADED:
            return self

        progress = _Progress(on_progress)
        self._state = EngineState.LOADING
        progress(0.0)

        try:
            runtime, model_dir, reason = await self._choose_runtime()
            if runtime is None:
                logger.info(
                    "Using fallback generation for %s: %s", self.descriptor.model_id, reason
                )
                self._mode = RuntimeMode.FALLBACK
            else:
                await self._open_runtime(runtime, model_dir, progress)
        except asyncio.CancelledError:
            self._state = EngineState.UNLOADED
            raise

        if self._terminated:
            # unload() ran while the runtime was loading.
            self._release_runtime()
            raise EngineUnloadedError()

        self._state = EngineState.READY
        progress(1.0)
        logger.info(
            "Model %s ready (%s mode, memory ceiling %d bytes)",
            self.descriptor.model_id,
            self._mode.value if self._mode else "?",
            self._memory_limit,
        )
        return self

    async def _choose_runtime(
        self,
    ) -> tuple[Optional[ComputeRuntime], Optional[Path], str]:
        if self.config.force_fallback:
            return None, None, "fallback forced by configuration"
        if self.descriptor.model_id.startswith(MOCK_PREFIX):
            return None, None, "mock model identifier"
        try:
            model_dir = self.storage.model_path(self.descriptor.model_id)
        except ValueError as exc:
            return None, None, str(exc)
        if not model_dir.is_dir():
            return None, None, f"model directory {model_dir} not found"
        runtime = await asyncio.to_thread(self.registry.select, model_dir)
        if runtime is None:
            return None, model_dir, "no available runtime supports this model"
        return runtime, model_dir, ""

    async def _open_runtime(
        self, runtime: ComputeRuntime, model_dir: Path, progress: _Progress
    ) -> None:
        requested = (
            self.config.memory_limit_mb * MiB if self.config.memory_limit_mb else None
        )
        ceiling = resolve_memory_ceiling(requested)
        loop = asyncio.get_running_loop()

        def _threadsafe(value: float) -> None:
            loop.call_soon_threadsafe(progress, 0.1 + 0.8 * value)

        try:
            runtime.set_memory_limit(ceiling)
            handle = await asyncio.to_thread(
                runtime.load, model_dir, self.descriptor, _threadsafe
            )
        except asyncio.CancelledError:
            raise
        except RuntimeUnavailableError as exc:
            logger.warning("Runtime %s unavailable, using fallback: %s", runtime.name, exc)
            self._abandon_runtime(runtime, str(exc))
            return
        except Exception as exc:
            logger.warning(
                "Runtime %s failed to load %s, using fallback: %s",
                runtime.name,
                self.descriptor.model_id,
                exc,
            )
            self._abandon_runtime(runtime, str(exc))
            return

        self._mode = RuntimeMode.REAL
        self._runtime = runtime
        self._handle = handle
        self._model_dir = model_dir
        self._memory_limit = ceiling

    def _abandon_runtime(self, runtime: ComputeRuntime, error: str) -> None:
        try:
            runtime.set_memory_limit(0)
            runtime.clear_cache()
        except Exception as exc:
            logger.debug("Cleanup after failed load raised: %s", exc)
        self._last_error = error
        self._mode = RuntimeMode.FALLBACK

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _check_loaded(self) -> None:
        if self._terminated:
            raise EngineUnloadedError()
        if self._state in (EngineState.UNLOADED, EngineState.LOADING):
            raise EngineUnloadedError("model not loaded")

    @staticmethod
    def _validate(prompt: Any, params: Optional[GenerateParams]) -> GenerateParams:
        if not isinstance(prompt, str):
            raise InvalidRequestError(f"prompt must be a string, got {type(prompt).__name__}")
        if not prompt.strip():
            raise InvalidRequestError("prompt must not be empty")
        params = params or GenerateParams()
        problems = params.validate()
        if problems:
            raise InvalidRequestError("; ".join(problems))
        return params

    def _begin_call(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel(CancelReason.SUPERSEDED)
            logger.debug("Cancelled in-flight generation for %s", self.descriptor.model_id)
        token = CancellationToken()
        self._token = token
        self._state = EngineState.GENERATING
        return token

    def _end_call(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None
            if not self._terminated and self._state is EngineState.GENERATING:
                self._state = EngineState.READY

    def _record(self, outcome: Outcome) -> None:
        self._monitor.record(outcome)

    def _record_failure(self, exc: EngineError) -> None:
        if isinstance(exc, (GenerationCancelledError, EngineUnloadedError, InvalidRequestError)):
            return
        self._last_error = str(exc)
        if isinstance(exc, TransientRuntimeError):
            self._record(Outcome.TRANSIENT_FAILURE)
        elif isinstance(exc, FatalRuntimeError):
            self._record(Outcome.FATAL_FAILURE)

    async def _produce(
        self, prompt: str, params: GenerateParams, token: CancellationToken
    ) -> AsyncIterator[str]:
        """Raw fragments from the runtime or the fallback generator."""
        if self._mode is RuntimeMode.FALLBACK:
            for fragment in self._fallback.fragments(prompt, params):
                token.raise_if_cancelled()
                await asyncio.sleep(self.config.fallback_step_delay)
                token.raise_if_cancelled()
                yield fragment
            return

        # A superseded call may still be inside a step; the handle is not
        # touched again until that step returns.
        await self._wait_for_step()
        token.raise_if_cancelled()
        if self._runtime is None or self._handle is None:
            raise FatalRuntimeError("runtime handle unavailable")
        runtime, handle = self._runtime, self._handle
        self._close_active_steps()
        try:
            steps = runtime.iter_generate(handle, prompt, params)
        except Exception as exc:
            raise classify_runtime_error(exc) from exc
        self._steps = steps
        step: Optional[asyncio.Future[Any]] = None
        try:
            while True:
                await self._wait_for_step()
                token.raise_if_cancelled()
                step = self._start_step(next, steps, _DONE)
                try:
                    fragment = await asyncio.shield(step)
                except Exception as exc:
                    raise classify_runtime_error(exc) from exc
                if fragment is _DONE:
                    return
                yield fragment
        finally:
            if self._steps is steps:
                self._steps = None
            if step is not None and not step.done():
                step.add_done_callback(lambda _: _close_steps(steps))
            else:
                _close_steps(steps)

    async def _wait_for_step(self) -> None:
        """Wait until no worker thread is inside the runtime."""
        while self._step is not None and not self._step.done():
            await asyncio.wait({self._step})

    def _start_step(self, fn: Callable[..., Any], *args: Any) -> asyncio.Future[Any]:
        step = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        step.add_done_callback(_discard_result)
        self._step = step
        return step

    def _close_active_steps(self) -> None:
        steps, self._steps = self._steps, None
        if steps is not None:
            _close_steps(steps)

    async def _fragments(
        self, prompt: str, params: GenerateParams, token: CancellationToken
    ) -> AsyncIterator[str]:
        """Fragments after stop-sequence filtering; shared by generate and stream."""
        stops = params.merged_stops(self.descriptor.stop_sequences)
        text_filter = StopSequenceFilter(stops)
        raw = self._produce(prompt, params, token)
        try:
            async for fragment in raw:
                out = text_filter.feed(fragment)
                if out:
                    yield out
                if text_filter.stopped:
                    return
        finally:
            await raw.aclose()  # type: ignore[attr-defined]
        tail = text_filter.flush()
        if tail:
            yield tail

    async def generate(self, prompt: str, params: Optional[GenerateParams] = None) -> str:
        """Generate a full response for ``prompt``.

        Raises
        ------
        EngineUnloadedError
            The engine is not loaded, or was unloaded.
        InvalidRequestError
            The prompt or parameters are malformed.
        GenerationCancelledError
            A newer call on this engine superseded this one.
        TransientRuntimeError, FatalRuntimeError
            The runtime failed.
        """
        self._check_loaded()
        params = self._validate(prompt, params)
        token = self._begin_call()
        parts: list[str] = []
        fragments = self._fragments(prompt, params, token)
        try:
            async for fragment in fragments:
                parts.append(fragment)
        except EngineError as exc:
            self._record_failure(exc)
            raise
        finally:
            await fragments.aclose()  # type: ignore[attr-defined]
            self._end_call(token)
        self._record(Outcome.SUCCESS)
        return "".join(parts)

    def stream(self, prompt: str, params: Optional[GenerateParams] = None) -> GenerationStream:
        """Start a streaming generation.

        Fragments concatenate to exactly what :meth:`generate` returns for
        the same inputs. Raises :class:`EngineUnloadedError` immediately if
        the engine is not loaded.
        """
        self._check_loaded()
        params = self._validate(prompt, params)
        token = self._begin_call()
        return GenerationStream(self, self._fragments(prompt, params, token), token)

    # ------------------------------------------------------------------
    # Retry wrappers
    # ------------------------------------------------------------------

    def _default_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            multiplier=self.config.retry_multiplier,
        )

    async def generate_with_retry(
        self,
        prompt: str,
        params: Optional[GenerateParams] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        """:meth:`generate`, retrying transient runtime errors with backoff."""
        try:
            return await retry_async(
                lambda: self.generate(prompt, params),
                policy or self._default_policy(),
                is_retryable=_is_retryable,
            )
        except TransientRuntimeError:
            self._record(Outcome.RETRIES_EXHAUSTED)
            raise

    async def stream_with_retry(
        self,
        prompt: str,
        params: Optional[GenerateParams] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> AsyncIterator[str]:
        """:meth:`stream`, retrying transient errors until the first fragment.

        Once a fragment has been delivered, later errors propagate as-is.
        """

        async def _open() -> tuple[GenerationStream, Optional[str]]:
            stream = self.stream(prompt, params)
            try:
                first = await stream.__anext__()
            except StopAsyncIteration:
                return stream, None
            except BaseException:
                await stream.aclose()
                raise
            return stream, first

        try:
            stream, first = await retry_async(
                _open, policy or self._default_policy(), is_retryable=_is_retryable
            )
        except TransientRuntimeError:
            self._record(Outcome.RETRIES_EXHAUSTED)
            raise

        async with stream:
            if first is None:
                return
            yield first
            async for fragment in stream:
                yield fragment

    # ------------------------------------------------------------------
    # Recovery / unload
    # ------------------------------------------------------------------

    async def attempt_recovery(self) -> bool:
        """Reset the engine after failures; returns whether it is usable.

        Cancels any in-flight call, reopens the runtime handle in real mode,
        and clears the outcome window. A never-loaded engine is loaded; an
        unloaded engine cannot recover.
        """
        if self._terminated:
            return False
        if self._state is EngineState.UNLOADED:
            await self.load()
            return self.is_loaded
        if self._state is EngineState.LOADING:
            return False

        if self._token is not None:
            self._token.cancel(CancelReason.SUPERSEDED)
            self._token = None
        self._state = EngineState.READY

        if self._mode is RuntimeMode.REAL and self._runtime is not None:
            runtime = self._runtime
            await self._wait_for_step()
            if self._terminated:
                return False
            self._close_active_steps()
            old_handle, self._handle = self._handle, None
            try:
                handle = await asyncio.shield(
                    self._start_step(self._reopen_runtime, runtime, old_handle)
                )
            except Exception as exc:
                logger.error("Recovery of %s failed: %s", self.descriptor.model_id, exc)
                self._last_error = str(exc)
                return False
            if self._terminated:
                # unload() ran while the handle was being reopened.
                self._free_runtime(runtime, handle)
                return False
            self._handle = handle

        self._monitor.reset()
        self._last_error = None
        logger.info("Engine for %s recovered", self.descriptor.model_id)
        return True

    def unload(self) -> None:
        """Release the model. Idempotent and terminal."""
        if self._terminated:
            return
        self._terminated = True
        if self._token is not None:
            self._token.cancel(CancelReason.UNLOADED)
            self._token = None
        self._release_runtime()
        self._state = EngineState.UNLOADED
        logger.info("Unloaded model %s", self.descriptor.model_id)

    def _reopen_runtime(self, runtime: ComputeRuntime, old_handle: Any) -> Any:
        if old_handle is not None:
            runtime.release(old_handle)
        runtime.clear_cache()
        return runtime.load(self._model_dir, self.descriptor, None)

    def _release_runtime(self) -> None:
        """Drop the handle now; free it once no step is running on it."""
        runtime, handle = self._runtime, self._handle
        self._handle = None
        self._memory_limit = 0
        if runtime is None:
            return
        steps, self._steps = self._steps, None
        step = self._step
        if step is not None and not step.done():
            logger.debug(
                "Deferring release of %s until the running step returns",
                self.descriptor.model_id,
            )
            step.add_done_callback(lambda _: self._free_runtime(runtime, handle, steps))
        else:
            self._free_runtime(runtime, handle, steps)

    def _free_runtime(
        self, runtime: ComputeRuntime, handle: Any, steps: Optional[Iterator[str]] = None
    ) -> None:
        if steps is not None:
            _close_steps(steps)
        try:
            if handle is not None:
                runtime.release(handle)
            runtime.clear_cache()
            runtime.set_memory_limit(0)
        except Exception as exc:
            logger.warning("Releasing runtime %s raised: %s", runtime.name, exc)


class _Progress:
    """Monotonic wrapper around a caller's progress callback."""

    def __init__(self, callback: Optional[ProgressCallback]) -> None:
        self._callback = callback
        self._last = -1.0

    def __call__(self, value: float) -> None:
        value = min(max(value, 0.0), 1.0)
        if self._callback is None or value <= self._last:
            return
        self._last = value
        self._callback(value)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, EngineError) and exc.retryable


def _close_steps(steps: Iterator[str]) -> None:
    close = getattr(steps, "close", None)
    if close is not None:
        close()


def _discard_result(step: asyncio.Future[Any]) -> None:
    # Marks the outcome retrieved when the awaiting call was cancelled.
    if not step.cancelled():
        step.exception()
