"""Compute runtimes used by the inference engine.

Usage::

    from edgellm.engines import default_registry

    registry = default_registry()
    runtime = registry.select(model_dir)  # None -> fallback mode
"""

from .base import ComputeRuntime
from .fallback import FallbackGenerator
from .registry import DetectionResult, RuntimeRegistry, default_registry

__all__ = [
    "ComputeRuntime",
    "DetectionResult",
    "FallbackGenerator",
    "RuntimeRegistry",
    "default_registry",
]
