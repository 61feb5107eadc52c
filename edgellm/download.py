"""Download manager. Turns a model descriptor into a valid local model directory.

A directory is *valid* when it holds every required metadata file and at
least one recognised weight variant. Invalid directories are never reported
as downloaded, and are only deleted by :meth:`DownloadManager.cleanup_incomplete_downloads`
or replaced wholesale by a fresh :meth:`DownloadManager.download_model`.

Usage::

    manager = DownloadManager(HuggingFaceClient(), default_storage_root())
    path = await manager.download_model(descriptor, on_progress=print)
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
import json
import logging
import shutil
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, Optional

from .errors import (
    DownloadTransportError,
    DownloadVerificationError,
    ModelInfoError,
    RepositoryError,
)
from .models import ModelDescriptor
from .sources.base import RemoteFile, RepositoryClient
from .storage import StorageRoot, decode_model_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

REQUIRED_FILES: tuple[str, ...] = ("config.json", "tokenizer.json")
WEIGHT_FILES: tuple[str, ...] = ("model.safetensors", "pytorch_model.bin", "model.gguf")

SHARD_INDEX = "model.safetensors.index.json"

# Side files fetched alongside the required ones when the repo has them.
_METADATA_PATTERNS = ("*.json", "*.model", "*.tiktoken", "merges.txt", "vocab.txt")

_PROBE_CONCURRENCY = 8
_HASH_CHUNK = 1024 * 1024


# ---------------------------------------------------------------------------
# Validity invariant
# ---------------------------------------------------------------------------


def _has_sharded_safetensors(directory: Path) -> bool:
    index = directory / SHARD_INDEX
    if not index.is_file():
        return False
    try:
        weight_map = json.loads(index.read_text()).get("weight_map") or {}
    except (OSError, ValueError):
        return False
    shards = set(weight_map.values())
    return bool(shards) and all((directory / shard).is_file() for shard in shards)


def missing_files(
    directory: Path,
    required: Iterable[str] = REQUIRED_FILES,
    weights: Iterable[str] = WEIGHT_FILES,
) -> list[str]:
    """Describe what keeps ``directory`` from being a valid model directory."""
    if not directory.is_dir():
        return ["<directory>"]
    missing = [name for name in required if not (directory / name).is_file()]
    weights = tuple(weights)
    has_weights = any((directory / name).is_file() for name in weights)
    if not has_weights and "model.safetensors" in weights:
        has_weights = _has_sharded_safetensors(directory)
    if not has_weights:
        missing.append(" | ".join(weights))
    return missing


def is_valid_model_dir(
    directory: Path,
    required: Iterable[str] = REQUIRED_FILES,
    weights: Iterable[str] = WEIGHT_FILES,
) -> bool:
    return not missing_files(directory, required, weights)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class DownloadRecord:
    """Transient state of one ``download_model`` call."""

    descriptor: ModelDescriptor
    destination: Path
    required_files: frozenset[str]
    weight_files: frozenset[str]
    planned: list[RemoteFile] = field(default_factory=list)
    completed_units: int = 0
    bytes_received: int = 0
    fraction: float = 0.0

    @property
    def total_units(self) -> int:
        # Final unit is post-fetch verification.
        return len(self.planned) + 1

    def advance(self, file_fraction: float = 0.0) -> bool:
        """Recompute ``fraction``; returns True when it moved forward."""
        if not self.total_units:
            return False
        file_fraction = min(max(file_fraction, 0.0), 1.0)
        value = min((self.completed_units + file_fraction) / self.total_units, 1.0)
        if value <= self.fraction:
            return False
        self.fraction = value
        return True


@dataclass
class RemoteModelInfo:
    """Summary of a remote repository, gathered without downloading bodies."""

    model_id: str
    filenames: list[str]
    total_files: int
    model_files: int
    config_files: int
    total_size_bytes: int
    file_sizes: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def estimated_size_gb(self) -> float:
        return self.total_size_bytes / (1024**3)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class DownloadManager:
    """Fetches model bundles into per-model directories under a storage root.

    Parameters
    ----------
    client:
        Remote repository client (file listing, size probe, fetch).
    storage:
        Storage root that owns the per-model directories.
    required_files:
        Files that must all be present for a directory to be valid.
    weight_files:
        Weight variants; at least one must be present.
    verify_checksums:
        Check SHA-256 of files whose remote metadata carries one.
    """

    def __init__(
        self,
        client: RepositoryClient,
        storage: StorageRoot,
        *,
        required_files: Iterable[str] = REQUIRED_FILES,
        weight_files: Iterable[str] = WEIGHT_FILES,
        verify_checksums: bool = True,
    ) -> None:
        self.client = client
        self.storage = storage
        self.required_files = tuple(required_files)
        self.weight_files = tuple(weight_files)
        self.verify_checksums = verify_checksums
        self._locks: dict[Path, asyncio.Lock] = {}
        self._lock_users: dict[Path, int] = {}

    @asynccontextmanager
    async def _lock_for(self, path: Path) -> AsyncIterator[None]:
        """Per-directory lock serialising downloads and cleanup of one model.

        The lock is dropped once nobody holds or waits on it.
        """
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._locks[path]

    def is_valid(self, directory: Path) -> bool:
        return is_valid_model_dir(directory, self.required_files, self.weight_files)

    def model_path(self, model_id: str) -> Path:
        return self.storage.model_path(model_id)

    def is_downloaded(self, model_id: str) -> bool:
        return self.is_valid(self.model_path(model_id))

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan_files(self, model_id: str, remote: list[RemoteFile]) -> list[RemoteFile]:
        """Choose which remote files to fetch, in fetch order.

        Required metadata first, then other metadata, then the weights of a
        single variant, picked in ``weight_files`` order with a sharded
        safetensors set standing in for ``model.safetensors``. Raises
        :class:`DownloadVerificationError` if the remote listing cannot
        produce a valid directory.
        """
        by_name = {f.filename: f for f in remote}

        missing = [name for name in self.required_files if name not in by_name]
        if missing:
            raise DownloadVerificationError(
                f"remote repository lacks required files: {', '.join(missing)}",
                model_id,
            )

        weights = self._select_weights(by_name)
        if not weights:
            raise DownloadVerificationError(
                "remote repository has no recognised weight file "
                f"({' | '.join(self.weight_files)})",
                model_id,
            )
        weight_names = {w.filename for w in weights}

        required = [by_name[name] for name in sorted(self.required_files)]
        extra = sorted(
            (
                f
                for f in remote
                if f.filename not in self.required_files
                and f.filename not in weight_names
                and "/" not in f.filename
                and any(fnmatch.fnmatch(f.filename, p) for p in _METADATA_PATTERNS)
            ),
            key=lambda f: f.filename,
        )
        return required + extra + sorted(weights, key=lambda f: f.filename)

    def _select_weights(self, by_name: dict[str, RemoteFile]) -> list[RemoteFile]:
        for name in self.weight_files:
            if name in by_name:
                return [by_name[name]]
            if name == "model.safetensors" and SHARD_INDEX in by_name:
                shards = [
                    f
                    for fname, f in by_name.items()
                    if "/" not in fname
                    and fnmatch.fnmatch(fname, "model-*-of-*.safetensors")
                ]
                if shards:
                    return [by_name[SHARD_INDEX], *shards]
        return []

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download_model(
        self,
        descriptor: ModelDescriptor,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Produce a valid local directory for ``descriptor`` and return its path.

        Idempotent: an already-valid directory is returned immediately with
        ``on_progress(1.0)`` and no network traffic. An invalid directory is
        deleted and fetched again from scratch. On failure the partial
        directory is left in place; call :meth:`cleanup_incomplete_downloads`
        to remove it.

        Raises
        ------
        DownloadTransportError
            A listing or file transfer failed.
        DownloadVerificationError
            The remote bundle is incomplete, or a fetched file is corrupt.
        """
        model_id = descriptor.model_id
        destination = self.model_path(model_id)

        async with self._lock_for(destination):
            if self.is_valid(destination):
                logger.info("Model %s already present at %s", model_id, destination)
                if on_progress is not None:
                    on_progress(1.0)
                return destination

            if destination.exists():
                logger.warning(
                    "Existing directory for %s is incomplete (missing %s), re-downloading",
                    model_id,
                    ", ".join(missing_files(destination, self.required_files, self.weight_files)),
                )
                await asyncio.to_thread(shutil.rmtree, destination)

            try:
                remote = await self.client.list_files(model_id)
            except RepositoryError as exc:
                raise DownloadTransportError(exc.reason, model_id) from exc

            record = DownloadRecord(
                descriptor=descriptor,
                destination=destination,
                required_files=frozenset(self.required_files),
                weight_files=frozenset(self.weight_files),
                planned=self.plan_files(model_id, remote),
            )

            self.storage.ensure_root()
            destination.mkdir(parents=True, exist_ok=True)
            start = time.monotonic()
            logger.info(
                "Downloading %s (%d files) to %s", model_id, record.total_units, destination
            )

            for remote_file in record.planned:
                await self._fetch_one(record, remote_file, on_progress)

            await self._verify(record)

            logger.info(
                "Downloaded %s in %.2fs (%d bytes)",
                model_id,
                time.monotonic() - start,
                record.bytes_received,
            )
            if record.advance(1.0) and on_progress is not None:
                on_progress(record.fraction)
            return destination

    async def _fetch_one(
        self,
        record: DownloadRecord,
        remote_file: RemoteFile,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        model_id = record.descriptor.model_id
        filename = remote_file.filename

        def _on_bytes(received: int, total: Optional[int]) -> None:
            total = total or remote_file.size
            if total and record.advance(received / total) and on_progress is not None:
                on_progress(record.fraction)

        try:
            received = await self.client.fetch_file(
                model_id, filename, record.destination / filename, _on_bytes
            )
        except RepositoryError as exc:
            logger.error("Download of %s/%s failed: %s", model_id, filename, exc.reason)
            raise DownloadTransportError(
                f"{filename}: {exc.reason}", model_id, filename
            ) from exc
        except OSError as exc:
            logger.error("Writing %s/%s failed: %s", model_id, filename, exc)
            raise DownloadTransportError(f"{filename}: {exc}", model_id, filename) from exc

        record.bytes_received += received
        record.completed_units += 1
        if record.advance() and on_progress is not None:
            on_progress(record.fraction)

    async def _verify(self, record: DownloadRecord) -> None:
        model_id = record.descriptor.model_id
        if self.verify_checksums:
            for remote_file in record.planned:
                if not remote_file.sha256:
                    continue
                path = record.destination / remote_file.filename
                digest = await asyncio.to_thread(_sha256_file, path)
                if digest.lower() != remote_file.sha256.lower():
                    raise DownloadVerificationError(
                        f"checksum mismatch for {remote_file.filename}",
                        model_id,
                        remote_file.filename,
                    )

        missing = missing_files(record.destination, self.required_files, self.weight_files)
        if missing:
            raise DownloadVerificationError(
                f"downloaded directory is missing {', '.join(missing)}", model_id
            )

    # ------------------------------------------------------------------
    # Remote metadata
    # ------------------------------------------------------------------

    async def get_model_info(self, model_id: str) -> RemoteModelInfo:
        """Summarise a remote repository without downloading file bodies.

        Sizes come from the listing where available and from a size probe
        otherwise; files whose size cannot be determined are skipped.
        """
        try:
            remote = await self.client.list_files(model_id)
        except RepositoryError as exc:
            raise ModelInfoError(exc.reason) from exc

        semaphore = asyncio.Semaphore(_PROBE_CONCURRENCY)

        async def _size(remote_file: RemoteFile) -> Optional[int]:
            if remote_file.size is not None:
                return remote_file.size
            async with semaphore:
                try:
                    return await self.client.probe_size(model_id, remote_file.filename)
                except RepositoryError as exc:
                    logger.debug("Size probe for %s skipped: %s", remote_file.filename, exc)
                    return None

        sizes = await asyncio.gather(*(_size(f) for f in remote))

        file_sizes: dict[str, int] = {}
        skipped: list[str] = []
        for remote_file, size in zip(remote, sizes):
            if size is None:
                skipped.append(remote_file.filename)
            else:
                file_sizes[remote_file.filename] = size

        filenames = [f.filename for f in remote]
        return RemoteModelInfo(
            model_id=model_id,
            filenames=filenames,
            total_files=len(filenames),
            model_files=sum(
                1 for n in filenames if n.endswith((".safetensors", ".bin", ".gguf"))
            ),
            config_files=sum(1 for n in filenames if n.endswith(".json")),
            total_size_bytes=sum(file_sizes.values()),
            file_sizes=file_sizes,
            skipped=skipped,
        )

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    async def get_downloaded_models(self) -> list[ModelDescriptor]:
        """Descriptors for every valid model directory under the storage root."""
        dirs = await asyncio.to_thread(lambda: list(self.storage.iter_model_dirs()))
        models: list[ModelDescriptor] = []
        for directory in dirs:
            if not self.is_valid(directory):
                logger.debug("Skipping incomplete model directory %s", directory.name)
                continue
            models.append(
                ModelDescriptor.from_identifier(
                    decode_model_id(directory.name), description="Downloaded model"
                )
            )
        return models

    async def cleanup_incomplete_downloads(self) -> list[str]:
        """Delete every model directory that fails the validity invariant.

        Returns the identifiers of the removed directories. Waits for any
        in-flight download of the same directory to finish first.
        """
        removed: list[str] = []
        dirs = await asyncio.to_thread(lambda: list(self.storage.iter_model_dirs()))
        for directory in dirs:
            async with self._lock_for(directory):
                if not directory.exists() or self.is_valid(directory):
                    continue
                await asyncio.to_thread(shutil.rmtree, directory)
                removed.append(decode_model_id(directory.name))
                logger.info("Cleaned up incomplete download: %s", directory.name)
        return removed

    async def delete_model(self, model_id: str) -> None:
        """Remove a model directory, valid or not.

        Raises
        ------
        FileNotFoundError
            If there is no directory for ``model_id``.
        """
        destination = self.model_path(model_id)
        async with self._lock_for(destination):
            if not destination.exists():
                raise FileNotFoundError(str(destination))
            await asyncio.to_thread(shutil.rmtree, destination)
            logger.info("Deleted model %s", model_id)


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()
