"""Model storage commands: pull, list, info, clean, rm."""

from __future__ import annotations

import json

import click

from edgellm.cli_helpers import (
    ProgressPrinter,
    _complete_model_name,
    fail,
    format_bytes,
    get_config,
    get_manager,
    resolve_model,
    run_async,
)
from edgellm.download import DownloadManager
from edgellm.errors import DownloadError, ModelInfoError
from edgellm.storage import directory_size


def register(cli: click.Group) -> None:
    cli.add_command(pull)
    cli.add_command(list_models_cmd)
    cli.add_command(info)
    cli.add_command(clean)
    cli.add_command(rm)


async def _with_manager(manager: DownloadManager, coro):  # type: ignore[no-untyped-def]
    try:
        return await coro
    finally:
        await manager.client.aclose()


@click.command()
@click.argument("model", shell_complete=_complete_model_name)
@click.option("--quiet", "-q", is_flag=True, help="No progress output.")
def pull(model: str, quiet: bool) -> None:
    """Download MODEL (alias or owner/name) into local storage.

    \b
        edgellm pull llama-3.2-1b
        edgellm pull mlx-community/Qwen1.5-0.5B-Chat-4bit
    """
    descriptor = resolve_model(model)
    manager = get_manager(get_config())
    progress = None if quiet else ProgressPrinter(f"Pulling {descriptor.model_id}")

    try:
        path = run_async(
            _with_manager(manager, manager.download_model(descriptor, progress))
        )
    except DownloadError as exc:
        fail(str(exc))
        return
    click.echo(f"Downloaded: {path}")


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
def list_models_cmd(as_json: bool) -> None:
    """List downloaded models."""
    manager = get_manager(get_config())
    descriptors = run_async(_with_manager(manager, manager.get_downloaded_models()))

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in descriptors], indent=2))
        return
    if not descriptors:
        click.echo(f"No models in {manager.storage.root}")
        return

    click.echo(f"{'MODEL':<50} {'SIZE':>10}")
    for descriptor in descriptors:
        size = directory_size(manager.model_path(descriptor.model_id))
        click.echo(f"{descriptor.model_id:<50} {format_bytes(size):>10}")


@click.command()
@click.argument("model", shell_complete=_complete_model_name)
def info(model: str) -> None:
    """Show the files and sizes of MODEL in the remote repository."""
    descriptor = resolve_model(model)
    manager = get_manager(get_config())
    try:
        remote = run_async(
            _with_manager(manager, manager.get_model_info(descriptor.model_id))
        )
    except ModelInfoError as exc:
        fail(str(exc))
        return

    click.echo(f"Model:  {remote.model_id}")
    click.echo(
        f"Files:  {remote.total_files} "
        f"({remote.model_files} weights, {remote.config_files} config)"
    )
    click.echo(f"Size:   {format_bytes(remote.total_size_bytes)}")
    for filename in remote.filenames:
        size = remote.file_sizes.get(filename)
        shown = format_bytes(size) if size is not None else "?"
        click.echo(f"  {filename:<48} {shown:>10}")
    if manager.is_downloaded(descriptor.model_id):
        click.echo(f"Local:  {manager.model_path(descriptor.model_id)}")


@click.command()
def clean() -> None:
    """Remove incomplete model downloads."""
    manager = get_manager(get_config())
    removed = run_async(_with_manager(manager, manager.cleanup_incomplete_downloads()))
    if not removed:
        click.echo("Nothing to clean.")
        return
    for model_id in removed:
        click.echo(f"Removed {model_id}")


@click.command()
@click.argument("model", shell_complete=_complete_model_name)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def rm(model: str, yes: bool) -> None:
    """Delete MODEL from local storage."""
    descriptor = resolve_model(model)
    if not yes:
        click.confirm(f"Delete {descriptor.model_id}?", abort=True)
    manager = get_manager(get_config())
    try:
        run_async(_with_manager(manager, manager.delete_model(descriptor.model_id)))
    except FileNotFoundError:
        fail(f"{descriptor.model_id} is not downloaded")
        return
    click.echo(f"Deleted {descriptor.model_id}")
