"""
edgellm command-line interface.

Usage::

    edgellm pull llama-3.2-1b
    edgellm pull mlx-community/Qwen1.5-0.5B-Chat-4bit
    edgellm list
    edgellm info mlx-community/Llama-3.2-1B-4bit
    edgellm clean
    edgellm rm llama-3.2-1b
    edgellm generate llama-3.2-1b "Write a haiku" --max-tokens 64
    edgellm chat tinyllama-1.1b
    edgellm debug-report
"""

from __future__ import annotations

import logging
from typing import Optional

import click

from edgellm import __version__
from edgellm.cli_helpers import WELCOME_MESSAGE
from edgellm.config import load_config


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="edgellm")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--models-dir",
    default=None,
    type=click.Path(file_okay=False),
    help="Store models here instead of the platform default.",
)
@click.option("--fallback", is_flag=True, help="Never load a real runtime.")
@click.pass_context
def main(
    ctx: click.Context, verbose: bool, models_dir: Optional[str], fallback: bool
) -> None:
    """edgellm — download and run LLMs locally."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = load_config(models_dir=models_dir, force_fallback=fallback or None)
    if ctx.invoked_subcommand is None:
        click.echo(WELCOME_MESSAGE)


# ---------------------------------------------------------------------------
# Register command modules
# ---------------------------------------------------------------------------

from edgellm.commands import generation, models  # noqa: E402

for _mod in [models, generation]:
    _mod.register(main)
