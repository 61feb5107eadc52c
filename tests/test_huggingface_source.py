"""Tests for edgellm.sources.huggingface: hub metadata and httpx transfers."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest

from edgellm.errors import RepositoryError
from edgellm.sources import HuggingFaceClient, RemoteFile

REPO = "mlx-community/Llama-3.2-1B-4bit"
ENDPOINT = "https://hub.test"


def _client(handler, **kwargs) -> HuggingFaceClient:
    return HuggingFaceClient(endpoint=ENDPOINT, transport=httpx.MockTransport(handler), **kwargs)


def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request {request.url}")


def _sibling(name, size=None, sha256=None, lfs_size=None):
    lfs = SimpleNamespace(sha256=sha256, size=lfs_size or size) if sha256 else None
    return SimpleNamespace(rfilename=name, size=size, lfs=lfs)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", f"{ENDPOINT}/api/models/{REPO}")
    return httpx.HTTPStatusError(
        f"HTTP {status}", request=request, response=httpx.Response(status, request=request)
    )


# ---------------------------------------------------------------------------
# list_files
# ---------------------------------------------------------------------------


class TestListFiles:
    @pytest.mark.asyncio
    async def test_reads_siblings_and_lfs_metadata(self):
        info = SimpleNamespace(
            siblings=[
                _sibling("config.json", 120),
                _sibling("model.safetensors", None, "ab" * 32, lfs_size=4096),
                _sibling(""),
            ]
        )
        with patch("edgellm.sources.huggingface.HfApi") as api_cls:
            api_cls.return_value.model_info.return_value = info
            async with _client(_unused, token="hf_secret") as client:
                files = await client.list_files(REPO)

        assert files == [
            RemoteFile("config.json", 120, None),
            RemoteFile("model.safetensors", 4096, "ab" * 32),
        ]
        api_cls.assert_called_once_with(endpoint=ENDPOINT, token="hf_secret")
        api_cls.return_value.model_info.assert_called_once_with(
            REPO, revision="main", files_metadata=True, timeout=60.0
        )

    @pytest.mark.asyncio
    async def test_http_error_raises_repository_error(self):
        with patch("edgellm.sources.huggingface.HfApi") as api_cls:
            api_cls.return_value.model_info.side_effect = _status_error(404)
            client = _client(_unused)
            with pytest.raises(RepositoryError) as exc_info:
                await client.list_files(REPO)
        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error_raises_repository_error(self):
        with patch("edgellm.sources.huggingface.HfApi") as api_cls:
            api_cls.return_value.model_info.side_effect = ConnectionError("offline")
            client = _client(_unused)
            with pytest.raises(RepositoryError, match="offline") as exc_info:
                await client.list_files(REPO)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_missing_siblings_is_empty(self):
        with patch("edgellm.sources.huggingface.HfApi") as api_cls:
            api_cls.return_value.model_info.return_value = SimpleNamespace(siblings=None)
            async with _client(_unused) as client:
                assert await client.list_files(REPO) == []


# ---------------------------------------------------------------------------
# probe_size
# ---------------------------------------------------------------------------


class TestProbeSize:
    @pytest.mark.asyncio
    async def test_uses_file_metadata(self):
        with patch(
            "edgellm.sources.huggingface.get_hf_file_metadata",
            return_value=SimpleNamespace(size=123456),
        ) as metadata:
            async with _client(_unused, token="hf_secret") as client:
                assert await client.probe_size(REPO, "model.safetensors") == 123456

        metadata.assert_called_once_with(
            f"{ENDPOINT}/{REPO}/resolve/main/model.safetensors", token="hf_secret", timeout=60.0
        )

    @pytest.mark.asyncio
    async def test_unknown_size_is_none(self):
        with patch(
            "edgellm.sources.huggingface.get_hf_file_metadata",
            return_value=SimpleNamespace(size=None),
        ):
            async with _client(_unused) as client:
                assert await client.probe_size(REPO, "config.json") is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        with patch(
            "edgellm.sources.huggingface.get_hf_file_metadata", side_effect=_status_error(401)
        ):
            async with _client(_unused) as client:
                with pytest.raises(RepositoryError) as exc_info:
                    await client.probe_size(REPO, "config.json")
        assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# fetch_file
# ---------------------------------------------------------------------------


class TestFetchFile:
    @pytest.mark.asyncio
    async def test_requests_resolve_url_with_token(self, tmp_path):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"{}")

        async with _client(handler, token="hf_secret") as client:
            await client.fetch_file(REPO, "config.json", tmp_path / "config.json")

        assert seen[0].url.path == f"/{REPO}/resolve/main/config.json"
        assert seen[0].headers["authorization"] == "Bearer hf_secret"

    @pytest.mark.asyncio
    async def test_writes_file_and_reports_progress(self, tmp_path):
        body = b"x" * 3000
        progress: list[tuple[int, object]] = []

        async with _client(lambda request: httpx.Response(200, content=body)) as client:
            received = await client.fetch_file(
                REPO, "model.safetensors", tmp_path / "model.safetensors",
                lambda done, total: progress.append((done, total)),
            )

        assert received == 3000
        assert (tmp_path / "model.safetensors").read_bytes() == body
        assert not (tmp_path / "model.safetensors.part").exists()
        assert progress[-1] == (3000, 3000)

    @pytest.mark.asyncio
    async def test_resumes_from_partial_file(self, tmp_path):
        (tmp_path / "model.gguf.part").write_bytes(b"hello ")
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(206, content=b"world")

        async with _client(handler) as client:
            received = await client.fetch_file(
                REPO, "model.gguf", tmp_path / "model.gguf", resume=True
            )

        assert seen[0].headers["range"] == "bytes=6-"
        assert received == 11
        assert (tmp_path / "model.gguf").read_bytes() == b"hello world"

    @pytest.mark.asyncio
    async def test_restarts_when_range_is_ignored(self, tmp_path):
        (tmp_path / "model.gguf.part").write_bytes(b"stale")

        async with _client(lambda request: httpx.Response(200, content=b"fresh body")) as client:
            await client.fetch_file(REPO, "model.gguf", tmp_path / "model.gguf", resume=True)

        assert (tmp_path / "model.gguf").read_bytes() == b"fresh body"

    @pytest.mark.asyncio
    async def test_without_resume_discards_partial_file(self, tmp_path):
        (tmp_path / "config.json.part").write_bytes(b"old")
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"{}")

        async with _client(handler) as client:
            await client.fetch_file(REPO, "config.json", tmp_path / "config.json")

        assert "range" not in seen[0].headers
        assert (tmp_path / "config.json").read_bytes() == b"{}"

    @pytest.mark.asyncio
    async def test_server_error_leaves_no_final_file(self, tmp_path):
        async with _client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(RepositoryError) as exc_info:
                await client.fetch_file(REPO, "config.json", tmp_path / "config.json")
        assert exc_info.value.status_code == 503
        assert not (tmp_path / "config.json").exists()
