"""Base class for remote repository clients."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

# (bytes_received, total_bytes_or_None)
ByteProgress = Callable[[int, Optional[int]], None]


@dataclass(frozen=True)
class RemoteFile:
    """One file in a remote model repository."""

    filename: str
    size: Optional[int] = None
    sha256: Optional[str] = None  # only known for LFS-tracked files


class RepositoryClient:
    """Base class for repository clients.

    Subclasses implement ``list_files()``, ``probe_size()`` and
    ``fetch_file()``. The download manager only depends on this surface.
    All failures are raised as :class:`~edgellm.errors.RepositoryError`.
    """

    name: str = "base"

    async def list_files(self, model_id: str) -> list[RemoteFile]:
        """List every file in the repository for ``model_id``."""
        raise NotImplementedError

    async def probe_size(self, model_id: str, filename: str) -> Optional[int]:
        """Return the size of ``filename`` without downloading its body.

        Returns ``None`` when the server does not report a size.
        """
        raise NotImplementedError

    async def fetch_file(
        self,
        model_id: str,
        filename: str,
        destination: Path,
        on_progress: Optional[ByteProgress] = None,
        *,
        resume: bool = False,
    ) -> int:
        """Download ``filename`` to ``destination`` and return the byte count.

        Parameters
        ----------
        on_progress:
            Called with ``(bytes_received, total_bytes)`` as data arrives;
            ``total_bytes`` is ``None`` when unknown.
        resume:
            Continue from a leftover ``<destination>.part`` file using a
            range request instead of starting over.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""
