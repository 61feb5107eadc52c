"""
edgellm — download LLM bundles and run them locally.

Acquire a model with :class:`DownloadManager`, then serve it with
:class:`InferenceEngine`, which falls back to deterministic simulated
output when no compute runtime (mlx-lm, llama.cpp) is usable::

    manager = DownloadManager(HuggingFaceClient(), default_storage_root())
    await manager.download_model(descriptor)
    engine = await InferenceEngine.load_model(descriptor)
    print(await engine.generate("Hello"))
"""

from __future__ import annotations

__version__ = "0.3.0"

from .chat import ChatMessage, ChatSession, MessageRole
from .config import EdgeLLMConfig, load_config, save_config
from .download import DownloadManager, RemoteModelInfo, is_valid_model_dir
from .engines import ComputeRuntime, FallbackGenerator, RuntimeRegistry, default_registry
from .errors import (
    DownloadError,
    DownloadTransportError,
    DownloadVerificationError,
    EdgeLLMError,
    EngineError,
    EngineUnloadedError,
    ErrorKind,
    FatalRuntimeError,
    GenerationCancelledError,
    InvalidRequestError,
    ModelInfoError,
    TransientRuntimeError,
)
from .inference import (
    EngineState,
    EngineStatus,
    GenerationStream,
    InferenceEngine,
    RuntimeMode,
)
from .models import CATALOG, GenerateParams, ModelDescriptor, resolve_descriptor
from .resilience import EngineHealth, RetryPolicy
from .sources import HuggingFaceClient, RemoteFile, RepositoryClient
from .storage import FixedStorageRoot, StorageRoot, default_storage_root

__all__ = [
    "CATALOG",
    "ChatMessage",
    "ChatSession",
    "ComputeRuntime",
    "DownloadError",
    "DownloadManager",
    "DownloadTransportError",
    "DownloadVerificationError",
    "EdgeLLMConfig",
    "EdgeLLMError",
    "EngineError",
    "EngineHealth",
    "EngineState",
    "EngineStatus",
    "EngineUnloadedError",
    "ErrorKind",
    "FallbackGenerator",
    "FatalRuntimeError",
    "FixedStorageRoot",
    "GenerateParams",
    "GenerationCancelledError",
    "GenerationStream",
    "HuggingFaceClient",
    "InferenceEngine",
    "InvalidRequestError",
    "MessageRole",
    "ModelDescriptor",
    "ModelInfoError",
    "RemoteFile",
    "RemoteModelInfo",
    "RepositoryClient",
    "RetryPolicy",
    "RuntimeMode",
    "RuntimeRegistry",
    "StorageRoot",
    "TransientRuntimeError",
    "default_registry",
    "default_storage_root",
    "is_valid_model_dir",
    "load_config",
    "resolve_descriptor",
    "save_config",
]
