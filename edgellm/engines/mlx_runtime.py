"""MLX-LM runtime — Apple Silicon inference via mlx-lm.

Loads safetensors bundles from a local model directory into unified memory.
The Metal buffer cache is capped with the engine's memory ceiling.
"""

from __future__ import annotations

import gc
import logging
import platform
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from ..models import GenerateParams, ModelDescriptor
from .base import ComputeRuntime, LoadProgress

logger = logging.getLogger(__name__)


def _mx_function(name: str) -> Optional[Callable[..., Any]]:
    """Find ``name`` on ``mlx.core``, or on ``mlx.core.metal`` in older releases."""
    import mlx.core as mx  # type: ignore[import-untyped]

    fn = getattr(mx, name, None)
    if fn is None:
        fn = getattr(getattr(mx, "metal", None), name, None)
    return fn


class MLXRuntime(ComputeRuntime):
    """Apple Silicon runtime using mlx-lm."""

    @property
    def name(self) -> str:
        return "mlx-lm"

    @property
    def display_name(self) -> str:
        return "mlx-lm (Apple Silicon)"

    @property
    def priority(self) -> int:
        return 10

    def detect(self) -> bool:
        if platform.system() != "Darwin" or platform.machine() != "arm64":
            return False
        try:
            import mlx_lm  # type: ignore[import-untyped]  # noqa: F401

            return True
        except ImportError:
            return False

    def detect_info(self) -> str:
        chip = platform.processor() or platform.machine()
        return f"Apple Silicon {chip}"

    def supports(self, model_dir: Path) -> bool:
        if not (model_dir / "config.json").is_file():
            return False
        return any(model_dir.glob("*.safetensors"))

    def load(
        self,
        model_dir: Path,
        descriptor: ModelDescriptor,
        on_progress: Optional[LoadProgress] = None,
    ) -> Any:
        import mlx_lm  # type: ignore[import-untyped]

        if on_progress is not None:
            on_progress(0.1)
        logger.info("Loading %s with mlx-lm from %s", descriptor.model_id, model_dir)
        model, tokenizer = mlx_lm.load(str(model_dir))
        if on_progress is not None:
            on_progress(1.0)
        return model, tokenizer

    def iter_generate(
        self, handle: Any, prompt: str, params: GenerateParams
    ) -> Iterator[str]:
        import mlx_lm  # type: ignore[import-untyped]
        from mlx_lm.sample_utils import make_sampler  # type: ignore[import-untyped]

        model, tokenizer = handle
        sampler = make_sampler(
            temp=params.temperature, top_p=params.top_p, top_k=params.top_k
        )
        for response in mlx_lm.stream_generate(
            model,
            tokenizer,
            prompt=prompt,
            max_tokens=params.max_tokens,
            sampler=sampler,
        ):
            if response.text:
                yield response.text
            if response.finish_reason:
                break

    def set_memory_limit(self, limit_bytes: int) -> None:
        fn = _mx_function("set_cache_limit")
        if fn is not None:
            fn(limit_bytes)
            logger.debug("MLX cache limit set to %d bytes", limit_bytes)

    def clear_cache(self) -> None:
        fn = _mx_function("clear_cache")
        if fn is not None:
            fn()

    def release(self, handle: Any) -> None:
        del handle
        gc.collect()
        self.clear_cache()
