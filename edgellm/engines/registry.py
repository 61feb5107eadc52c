"""Runtime registry — detect available runtimes and pick one for a model.

Usage::

    from edgellm.engines import default_registry

    registry = default_registry()
    available = registry.detect_all()
    runtime = registry.select(model_dir)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .base import ComputeRuntime

logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    """Result of runtime detection."""

    runtime: ComputeRuntime
    available: bool
    info: str = ""


class RuntimeRegistry:
    """Ordered set of compute runtimes.

    Runtimes register via ``register()``. ``select()`` returns the
    lowest-priority-number runtime that is available and supports the model
    directory, or ``None`` when the engine should fall back.
    """

    def __init__(self) -> None:
        self._runtimes: list[ComputeRuntime] = []

    def register(self, runtime: ComputeRuntime) -> None:
        # Avoid duplicate registration
        for existing in self._runtimes:
            if existing.name == runtime.name:
                return
        self._runtimes.append(runtime)

    @property
    def runtimes(self) -> list[ComputeRuntime]:
        return list(self._runtimes)

    def get(self, name: str) -> Optional[ComputeRuntime]:
        for runtime in self._runtimes:
            if runtime.name == name:
                return runtime
        return None

    def detect_all(self, model_dir: Optional[Path] = None) -> list[DetectionResult]:
        """Detect which runtimes are usable, optionally for ``model_dir``."""
        results: list[DetectionResult] = []
        for runtime in sorted(self._runtimes, key=lambda r: r.priority):
            try:
                available = runtime.detect()
                if available and model_dir is not None:
                    available = runtime.supports(model_dir)
                info = runtime.detect_info() if available else ""
                results.append(DetectionResult(runtime=runtime, available=available, info=info))
            except Exception as exc:
                logger.debug("Runtime %s detection failed: %s", runtime.name, exc)
                results.append(DetectionResult(runtime=runtime, available=False, info=str(exc)))
        return results

    def select(self, model_dir: Path) -> Optional[ComputeRuntime]:
        for result in self.detect_all(model_dir):
            if result.available:
                return result.runtime
        return None


def default_registry() -> RuntimeRegistry:
    """Build a fresh registry holding the built-in runtimes."""
    from .llamacpp_runtime import LlamaCppRuntime
    from .mlx_runtime import MLXRuntime

    registry = RuntimeRegistry()
    registry.register(MLXRuntime())
    registry.register(LlamaCppRuntime())
    return registry
