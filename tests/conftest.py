"""Shared fakes: an in-memory repository client and a scriptable runtime."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Iterator, Optional

import pytest

from edgellm.engines.base import ComputeRuntime
from edgellm.engines.registry import RuntimeRegistry
from edgellm.errors import RepositoryError
from edgellm.models import GenerateParams, ModelDescriptor
from edgellm.sources.base import ByteProgress, RemoteFile, RepositoryClient
from edgellm.storage import FixedStorageRoot

MODEL_ID = "acme/tiny-1B-4bit"

BUNDLE = {
    "config.json": b'{"model_type": "llama"}',
    "tokenizer.json": b'{"version": "1.0"}',
    "tokenizer_config.json": b"{}",
    "model.safetensors": b"\x00" * 4096,
    "README.md": b"# tiny",
}


class FakeRepositoryClient(RepositoryClient):
    """In-memory repository keyed by filename."""

    name = "fake"

    def __init__(
        self,
        files: Optional[dict[str, bytes]] = None,
        *,
        fail_fetch: tuple[str, ...] = (),
        fail_listing: bool = False,
        fail_probe: tuple[str, ...] = (),
        with_sizes: bool = True,
        sha256: Optional[dict[str, str]] = None,
    ) -> None:
        self.files = dict(BUNDLE if files is None else files)
        self.fail_fetch = set(fail_fetch)
        self.fail_listing = fail_listing
        self.fail_probe = set(fail_probe)
        self.with_sizes = with_sizes
        self.sha256 = sha256 or {}
        self.list_calls = 0
        self.fetched: list[str] = []
        self.probed: list[str] = []
        self.closed = False

    async def list_files(self, model_id: str) -> list[RemoteFile]:
        self.list_calls += 1
        await asyncio.sleep(0)
        if self.fail_listing:
            raise RepositoryError("listing failed: HTTP 503", status_code=503)
        return [
            RemoteFile(
                filename=name,
                size=len(data) if self.with_sizes else None,
                sha256=self.sha256.get(name),
            )
            for name, data in sorted(self.files.items())
        ]

    async def probe_size(self, model_id: str, filename: str) -> Optional[int]:
        self.probed.append(filename)
        if filename in self.fail_probe:
            raise RepositoryError(f"size probe for {filename} failed: HTTP 404", 404)
        return len(self.files[filename])

    async def fetch_file(
        self,
        model_id: str,
        filename: str,
        destination: Path,
        on_progress: Optional[ByteProgress] = None,
        *,
        resume: bool = False,
    ) -> int:
        self.fetched.append(filename)
        await asyncio.sleep(0)
        if filename in self.fail_fetch:
            raise RepositoryError(f"fetching {filename} failed: connection reset")
        data = self.files[filename]
        destination.parent.mkdir(parents=True, exist_ok=True)
        half = len(data) // 2
        with open(destination, "wb") as fh:
            for chunk in (data[:half], data[half:]):
                fh.write(chunk)
                if on_progress is not None:
                    on_progress(fh.tell(), len(data))
        return len(data)

    async def aclose(self) -> None:
        self.closed = True


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


VALID_NAMES = ("config.json", "tokenizer.json", "model.safetensors")


def write_bundle(directory: Path, names: tuple[str, ...] = VALID_NAMES) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_bytes(BUNDLE.get(name, b"x"))
    return directory


class FakeRuntime(ComputeRuntime):
    """Runtime whose output and failures are scripted per generation call.

    ``failures`` is consumed one entry per ``iter_generate`` call; an
    exception entry is raised on the first step of that call.
    """

    def __init__(
        self,
        fragments: tuple[str, ...] = ("Hi", " there", ", friend", "."),
        *,
        name: str = "fake",
        priority: int = 50,
        available: bool = True,
        supported: bool = True,
        load_error: Optional[BaseException] = None,
        failures: Optional[list[Optional[BaseException]]] = None,
    ) -> None:
        self._name = name
        self._priority = priority
        self.fragments = fragments
        self.available = available
        self.supported = supported
        self.load_error = load_error
        self.failures = list(failures or [])
        self.load_calls = 0
        self.generate_calls = 0
        self.steps = 0
        self.memory_limits: list[int] = []
        self.released: list[Any] = []
        self.cache_clears = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    def detect(self) -> bool:
        return self.available

    def supports(self, model_dir: Path) -> bool:
        return self.supported

    def load(self, model_dir, descriptor, on_progress=None):  # type: ignore[no-untyped-def]
        self.load_calls += 1
        if self.load_error is not None:
            raise self.load_error
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        return {"model_dir": model_dir, "load": self.load_calls}

    def iter_generate(self, handle: Any, prompt: str, params: GenerateParams) -> Iterator[str]:
        self.generate_calls += 1
        failure = self.failures.pop(0) if self.failures else None
        return self._steps(failure)

    def _steps(self, failure: Optional[BaseException]) -> Iterator[str]:
        if failure is not None:
            raise failure
        for fragment in self.fragments:
            self.steps += 1
            yield fragment

    def set_memory_limit(self, limit_bytes: int) -> None:
        self.memory_limits.append(limit_bytes)

    def clear_cache(self) -> None:
        self.cache_clears += 1

    def release(self, handle: Any) -> None:
        self.released.append(handle)


@pytest.fixture
def storage(tmp_path: Path) -> FixedStorageRoot:
    return FixedStorageRoot(tmp_path / "models")


@pytest.fixture
def descriptor() -> ModelDescriptor:
    return ModelDescriptor.from_identifier(MODEL_ID)


@pytest.fixture
def empty_registry() -> RuntimeRegistry:
    return RuntimeRegistry()


def registry_with(*runtimes: ComputeRuntime) -> RuntimeRegistry:
    registry = RuntimeRegistry()
    for runtime in runtimes:
        registry.register(runtime)
    return registry
