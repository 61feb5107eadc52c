"""Where model bundles live on disk.

Each platform gets one :class:`StorageRoot` implementation; callers pick one
with :func:`default_storage_root` (the only place that looks at the
platform) or pass an explicit :class:`FixedStorageRoot`.

Layout::

    <root>/
        mlx-community--Llama-3.2-1B-4bit/
            config.json
            tokenizer.json
            model.safetensors
        <owner>--<name>/
            ...
"""

from __future__ import annotations

import abc
import logging
import os
import sys
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

_SEPARATOR = "--"


def encode_model_id(model_id: str) -> str:
    """Map ``owner/name`` to a single directory name (``owner--name``)."""
    cleaned = model_id.strip().strip("/")
    parts = cleaned.split("/")
    if not cleaned or any(p in ("", ".", "..") for p in parts) or len(parts) > 2:
        raise ValueError(f"Invalid model identifier: {model_id!r}")
    return _SEPARATOR.join(parts)


def decode_model_id(dirname: str) -> str:
    """Inverse of :func:`encode_model_id`."""
    return dirname.replace(_SEPARATOR, "/", 1)


class StorageRoot(abc.ABC):
    """Base class for platform storage conventions."""

    name: str = "base"

    @property
    @abc.abstractmethod
    def root(self) -> Path:
        """Directory holding one subdirectory per model."""

    def ensure_root(self) -> Path:
        root = self.root
        if not root.exists():
            root.mkdir(parents=True, exist_ok=True)
            logger.info("Created models directory at %s", root)
        return root

    def model_path(self, model_id: str) -> Path:
        return self.root / encode_model_id(model_id)

    def iter_model_dirs(self) -> Iterator[Path]:
        """Yield immediate, non-hidden subdirectories of the root, sorted by name."""
        root = self.root
        if not root.is_dir():
            return
        for child in sorted(root.iterdir()):
            if child.is_dir() and not child.name.startswith("."):
                yield child

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.root)!r})"


class FixedStorageRoot(StorageRoot):
    """Explicit directory, used for overrides and tests."""

    name = "fixed"

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._root = Path(path).expanduser()

    @property
    def root(self) -> Path:
        return self._root


class DarwinStorageRoot(StorageRoot):
    """macOS: ``~/Library/Application Support/EdgeLLM/Models``."""

    name = "darwin"

    @property
    def root(self) -> Path:
        return Path.home() / "Library" / "Application Support" / "EdgeLLM" / "Models"


class LinuxStorageRoot(StorageRoot):
    """Linux and other POSIX: ``$XDG_DATA_HOME/edgellm/models``."""

    name = "linux"

    @property
    def root(self) -> Path:
        base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
        return Path(base) / "edgellm" / "models"


class WindowsStorageRoot(StorageRoot):
    """Windows: ``%LOCALAPPDATA%\\EdgeLLM\\Models``."""

    name = "windows"

    def _base(self) -> Path:
        local = os.environ.get("LOCALAPPDATA")
        return Path(local) if local else Path.home() / "AppData" / "Local"

    @property
    def root(self) -> Path:
        return self._base() / "EdgeLLM" / "Models"


def default_storage_root(
    override: Optional[os.PathLike[str] | str] = None,
    platform: Optional[str] = None,
) -> StorageRoot:
    """Return the storage root for this host (or ``override`` when given)."""
    if override:
        return FixedStorageRoot(override)
    plat = platform or sys.platform
    if plat == "darwin":
        return DarwinStorageRoot()
    if plat.startswith("win"):
        return WindowsStorageRoot()
    return LinuxStorageRoot()


def directory_size(path: Path) -> int:
    """Total size in bytes of regular, non-hidden files below ``path``."""
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        for filename in filenames:
            if filename.startswith("."):
                continue
            try:
                total += (Path(dirpath) / filename).stat().st_size
            except OSError:
                continue
    return total
