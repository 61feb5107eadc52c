"""Hugging Face Hub repository client.

Repository metadata comes from ``huggingface_hub``:

- ``HfApi.model_info(files_metadata=True)``   file listing, sizes, LFS sha256
- ``get_hf_file_metadata(hf_hub_url(...))``   size probe without the body

File bodies are streamed with ``httpx.AsyncClient`` so progress can be
reported per chunk and a ``.part`` file resumed with a ``Range`` request.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Optional

import httpx
from huggingface_hub import HfApi, get_hf_file_metadata, hf_hub_url
from huggingface_hub.utils import HfHubHTTPError

from ..config import DEFAULT_HF_ENDPOINT
from ..errors import RepositoryError
from .base import ByteProgress, RemoteFile, RepositoryClient

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024

# requests-based hub releases raise OSError subclasses for network failures,
# httpx-based ones raise httpx.HTTPError.
_HUB_ERRORS = (HfHubHTTPError, httpx.HTTPError, OSError)


def _hub_error(message: str, exc: BaseException) -> RepositoryError:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is not None:
        return RepositoryError(f"{message}: HTTP {status}", status_code=status)
    return RepositoryError(f"{message}: {exc}")


class HuggingFaceClient(RepositoryClient):
    """Repository client for the Hugging Face Hub (or a compatible mirror).

    Parameters
    ----------
    token:
        Optional access token sent as a bearer header (gated/private repos).
    endpoint:
        Hub base URL.
    revision:
        Branch, tag or commit to resolve files against.
    timeout:
        Per-request timeout in seconds. Streaming reads use it per chunk.
    transport:
        Optional ``httpx`` transport for file transfers, mainly for
        ``httpx.MockTransport``. Metadata calls go through ``huggingface_hub``.
    """

    name = "huggingface"

    def __init__(
        self,
        token: Optional[str] = None,
        endpoint: str = DEFAULT_HF_ENDPOINT,
        revision: str = "main",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self.endpoint = endpoint.rstrip("/")
        self.revision = revision
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Return a shared AsyncClient, creating one if needed."""
        if self._client is None or self._client.is_closed:
            kwargs: dict[str, Any] = {
                "timeout": self.timeout,
                "follow_redirects": True,
                "headers": self._headers(),
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _resolve_url(self, model_id: str, filename: str) -> str:
        return hf_hub_url(model_id, filename, revision=self.revision, endpoint=self.endpoint)

    def _hub_api(self) -> HfApi:
        return HfApi(endpoint=self.endpoint, token=self.token)

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> HuggingFaceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_files(self, model_id: str) -> list[RemoteFile]:
        try:
            info = await asyncio.to_thread(
                self._hub_api().model_info,
                model_id,
                revision=self.revision,
                files_metadata=True,
                timeout=self.timeout,
            )
        except _HUB_ERRORS as exc:
            raise _hub_error(f"listing {model_id} failed", exc) from exc

        files: list[RemoteFile] = []
        for sibling in info.siblings or []:
            if not sibling.rfilename:
                continue
            lfs = sibling.lfs
            size = sibling.size
            if size is None and lfs is not None:
                size = lfs.size
            files.append(
                RemoteFile(
                    filename=sibling.rfilename,
                    size=size,
                    sha256=lfs.sha256 if lfs is not None else None,
                )
            )
        logger.debug("Model %s has %d files", model_id, len(files))
        return files

    # ------------------------------------------------------------------
    # Size probe
    # ------------------------------------------------------------------

    async def probe_size(self, model_id: str, filename: str) -> Optional[int]:
        url = self._resolve_url(model_id, filename)
        try:
            metadata = await asyncio.to_thread(
                get_hf_file_metadata, url, token=self.token, timeout=self.timeout
            )
        except _HUB_ERRORS as exc:
            raise _hub_error(f"size probe for {filename} failed", exc) from exc
        # For LFS files this is the linked blob size, not the pointer's.
        return metadata.size or None

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def fetch_file(
        self,
        model_id: str,
        filename: str,
        destination: Path,
        on_progress: Optional[ByteProgress] = None,
        *,
        resume: bool = False,
    ) -> int:
        destination.parent.mkdir(parents=True, exist_ok=True)
        part = destination.with_name(destination.name + ".part")

        offset = 0
        if part.exists():
            if resume:
                offset = part.stat().st_size
            else:
                part.unlink()

        headers = {"Range": f"bytes={offset}-"} if offset else {}
        url = self._resolve_url(model_id, filename)
        logger.debug("GET %s (offset=%d)", url, offset)

        try:
            async with self._get_client().stream("GET", url, headers=headers) as res:
                if offset and res.status_code == 416:
                    # Range starts at EOF: the partial file is already complete.
                    os.replace(part, destination)
                    return offset
                if res.status_code >= 400:
                    raise RepositoryError(
                        f"fetching {filename} failed: HTTP {res.status_code}",
                        status_code=res.status_code,
                    )
                if offset and res.status_code != 206:
                    logger.info("Server ignored range request for %s, restarting", filename)
                    offset = 0

                length = res.headers.get("content-length")
                total = offset + int(length) if length and length.isdigit() else None
                received = offset

                with open(part, "ab" if offset else "wb") as fh:
                    async for chunk in res.aiter_bytes(_CHUNK_SIZE):
                        fh.write(chunk)
                        received += len(chunk)
                        if on_progress is not None:
                            on_progress(received, total)
        except httpx.HTTPError as exc:
            raise RepositoryError(f"fetching {filename} failed: {exc}") from exc

        if total is not None and received < total:
            raise RepositoryError(
                f"fetching {filename} ended early ({received} of {total} bytes)"
            )
        os.replace(part, destination)
        return received
