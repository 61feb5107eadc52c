"""Abstract compute runtime interface.

Each real runtime (mlx-lm, llama.cpp) implements this interface so the
registry can detect it and the inference engine can drive it without
knowing which one it got. Methods are synchronous; the engine calls
``load`` and steps the ``iter_generate`` iterator from a worker thread.
"""

from __future__ import annotations

import abc
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from ..models import GenerateParams, ModelDescriptor

LoadProgress = Callable[[float], None]


class ComputeRuntime(abc.ABC):
    """Base class for compute runtimes.

    - detect(): is this runtime usable on the current host?
    - supports(): can it open this model directory?
    - load() / iter_generate() / release(): the per-model lifecycle
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short runtime identifier (e.g. 'mlx-lm', 'llama.cpp')."""

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def priority(self) -> int:
        """Lower = preferred when several runtimes support a model."""
        return 100

    @abc.abstractmethod
    def detect(self) -> bool:
        """Check whether the runtime's libraries and hardware are present.

        Must not raise; return False if unavailable.
        """

    def detect_info(self) -> str:
        """Short description of the detected host (e.g. 'Apple Silicon arm')."""
        return ""

    @abc.abstractmethod
    def supports(self, model_dir: Path) -> bool:
        """Check whether the weight files in ``model_dir`` suit this runtime."""

    @abc.abstractmethod
    def load(
        self,
        model_dir: Path,
        descriptor: ModelDescriptor,
        on_progress: Optional[LoadProgress] = None,
    ) -> Any:
        """Open the model and return an opaque handle.

        Raises :class:`~edgellm.errors.RuntimeUnavailableError` when the
        runtime turns out to be unusable; any other exception is also
        treated as a load failure by the engine.
        """

    @abc.abstractmethod
    def iter_generate(
        self, handle: Any, prompt: str, params: GenerateParams
    ) -> Iterator[str]:
        """Yield text fragments for ``prompt``, one decoding step at a time."""

    def set_memory_limit(self, limit_bytes: int) -> None:
        """Cap the runtime's accelerator cache. ``0`` removes the cap."""

    def clear_cache(self) -> None:
        """Drop cached accelerator buffers."""

    def release(self, handle: Any) -> None:
        """Free resources held by ``handle``."""
