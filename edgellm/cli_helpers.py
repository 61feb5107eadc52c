"""Shared helpers for CLI commands.

Kept apart from cli.py so command modules can import them without a
circular import on the group.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Coroutine, Optional, TypeVar

import click

from .config import EdgeLLMConfig, load_config
from .download import DownloadManager
from .models import CATALOG, ModelDescriptor, resolve_descriptor
from .sources import HuggingFaceClient
from .storage import StorageRoot, default_storage_root, encode_model_id

_logger = logging.getLogger(__name__)

T = TypeVar("T")


WELCOME_MESSAGE = """\
edgellm — download and run LLMs locally

  Get started:
    1. edgellm pull llama-3.2-1b             download a model
    2. edgellm generate llama-3.2-1b "Hi"    one-shot generation
    3. edgellm chat llama-3.2-1b             interactive chat

  Useful commands:
    edgellm list                             downloaded models
    edgellm info <model>                     remote file sizes
    edgellm clean                            remove incomplete downloads
    edgellm debug-report                     runtimes, storage, memory

  Run edgellm <command> --help for details.
"""


def get_config(ctx: Optional[click.Context] = None) -> EdgeLLMConfig:
    """Config resolved by the root group, or a fresh one outside a command."""
    ctx = ctx or click.get_current_context(silent=True)
    if ctx is not None:
        root = ctx.find_root()
        if isinstance(root.obj, EdgeLLMConfig):
            return root.obj
    return load_config()


def get_storage(config: EdgeLLMConfig) -> StorageRoot:
    return default_storage_root(config.models_dir)


def get_manager(config: EdgeLLMConfig) -> DownloadManager:
    client = HuggingFaceClient(
        token=config.hf_token,
        endpoint=config.hf_endpoint,
        timeout=config.download_timeout,
    )
    storage = get_storage(config)
    _logger.debug("Using models directory %s (endpoint %s)", storage.root, config.hf_endpoint)
    return DownloadManager(client, storage)


def resolve_model(ref: str) -> ModelDescriptor:
    """Alias or ``owner/name`` to a descriptor; usage error otherwise."""
    try:
        descriptor = resolve_descriptor(ref)
        encode_model_id(descriptor.model_id)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="MODEL") from exc
    return descriptor


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _complete_model_name(
    ctx: click.Context, param: click.Parameter, incomplete: str
) -> list[Any]:
    """Shell completion for model aliases."""
    from click.shell_completion import CompletionItem

    return [
        CompletionItem(alias, help=entry.name)
        for alias, entry in sorted(CATALOG.items())
        if alias.startswith(incomplete)
    ]


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024**2:
        return f"{size / 1024:.1f} KB"
    if size < 1024**3:
        return f"{size / 1024**2:.1f} MB"
    return f"{size / 1024**3:.2f} GB"


class ProgressPrinter:
    """Single-line percentage display for download and load callbacks."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._last = -1

    def __call__(self, fraction: float) -> None:
        percent = int(fraction * 100)
        if percent == self._last:
            return
        self._last = percent
        click.echo(f"\r{self.label} {percent:3d}%", nl=False, err=True)
        if percent >= 100:
            click.echo(err=True)


def fail(message: str) -> None:
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)
