"""llama.cpp runtime — cross-platform GGUF inference via llama-cpp-python.

Runs on CPU everywhere and offloads to Metal, CUDA or ROCm when the wheel
was built with GPU support.
"""

from __future__ import annotations

import gc
import logging
import os
import platform
import shutil
from pathlib import Path
from typing import Any, Iterator, Optional

from ..models import GenerateParams, ModelDescriptor
from .base import ComputeRuntime, LoadProgress

logger = logging.getLogger(__name__)


def _find_gguf(model_dir: Path) -> Optional[Path]:
    preferred = model_dir / "model.gguf"
    if preferred.is_file():
        return preferred
    candidates = sorted(model_dir.glob("*.gguf"))
    return candidates[0] if candidates else None


class LlamaCppRuntime(ComputeRuntime):
    """Cross-platform runtime using llama-cpp-python."""

    @property
    def name(self) -> str:
        return "llama.cpp"

    @property
    def display_name(self) -> str:
        return f"llama.cpp ({self.detect_info()}, {platform.machine()})"

    @property
    def priority(self) -> int:
        return 20

    @staticmethod
    def _has_rocm() -> bool:
        if os.environ.get("HIP_VISIBLE_DEVICES"):
            return True
        if os.path.isdir("/opt/rocm"):
            return True
        return shutil.which("rocminfo") is not None

    def detect(self) -> bool:
        try:
            import llama_cpp  # type: ignore[import-untyped]  # noqa: F401

            return True
        except ImportError:
            return False

    def detect_info(self) -> str:
        if platform.system() == "Darwin":
            return "CPU + Metal"
        if os.environ.get("CUDA_VISIBLE_DEVICES") or shutil.which("nvidia-smi"):
            return "CPU + CUDA"
        if self._has_rocm():
            return "CPU + ROCm"
        return "CPU"

    def supports(self, model_dir: Path) -> bool:
        return _find_gguf(model_dir) is not None

    def load(
        self,
        model_dir: Path,
        descriptor: ModelDescriptor,
        on_progress: Optional[LoadProgress] = None,
    ) -> Any:
        from llama_cpp import Llama  # type: ignore[import-untyped]

        gguf = _find_gguf(model_dir)
        if gguf is None:
            raise FileNotFoundError(f"No .gguf file in {model_dir}")
        if on_progress is not None:
            on_progress(0.1)
        logger.info("Loading %s with llama.cpp from %s", descriptor.model_id, gguf)
        llm = Llama(
            model_path=str(gguf),
            n_ctx=descriptor.max_context,
            n_gpu_layers=-1,
            verbose=False,
        )
        if on_progress is not None:
            on_progress(1.0)
        return llm

    def iter_generate(
        self, handle: Any, prompt: str, params: GenerateParams
    ) -> Iterator[str]:
        for chunk in handle.create_completion(
            prompt,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            top_k=params.top_k,
            stream=True,
        ):
            text = chunk["choices"][0].get("text", "")
            if text:
                yield text

    def release(self, handle: Any) -> None:
        close = getattr(handle, "close", None)
        if callable(close):
            close()
        del handle
        gc.collect()
