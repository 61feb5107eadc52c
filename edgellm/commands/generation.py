"""Generation commands: generate, chat, debug-report."""

from __future__ import annotations

import json
from typing import Optional

import click

from edgellm.chat import ChatSession, run_chat_repl
from edgellm.cli_helpers import (
    ProgressPrinter,
    _complete_model_name,
    fail,
    get_config,
    get_storage,
    resolve_model,
    run_async,
)
from edgellm.config import EdgeLLMConfig
from edgellm.diagnostics import collect_debug_report, format_debug_report
from edgellm.errors import EngineError
from edgellm.inference import InferenceEngine, RuntimeMode
from edgellm.models import GenerateParams, ModelDescriptor


def register(cli: click.Group) -> None:
    cli.add_command(generate)
    cli.add_command(chat)
    cli.add_command(debug_report)


def _params(
    max_tokens: int, temperature: float, top_p: float, stop: tuple[str, ...]
) -> GenerateParams:
    return GenerateParams(
        max_tokens=max_tokens, temperature=temperature, top_p=top_p, stop_sequences=stop
    )


async def _load(descriptor: ModelDescriptor, config: EdgeLLMConfig) -> InferenceEngine:
    progress = ProgressPrinter(f"Loading {descriptor.model_id}")
    engine = await InferenceEngine.load_model(
        descriptor, progress, storage=get_storage(config), config=config
    )
    if engine.runtime_mode is RuntimeMode.FALLBACK:
        click.secho(
            "No usable runtime for this model; responses are simulated.",
            fg="yellow",
            err=True,
        )
    return engine


_generation_options = [
    click.option("--max-tokens", "-n", default=100, show_default=True, type=int),
    click.option("--temperature", "-t", default=0.7, show_default=True, type=float),
    click.option("--top-p", default=0.9, show_default=True, type=float),
    click.option("--stop", multiple=True, help="Stop sequence (repeatable)."),
]


def _with_generation_options(fn):  # type: ignore[no-untyped-def]
    for option in reversed(_generation_options):
        fn = option(fn)
    return fn


@click.command()
@click.argument("model", shell_complete=_complete_model_name)
@click.argument("prompt")
@_with_generation_options
@click.option("--stream/--no-stream", default=True, help="Print fragments as they arrive.")
@click.option("--retries", default=None, type=int, help="Retries on transient runtime errors.")
def generate(
    model: str,
    prompt: str,
    max_tokens: int,
    temperature: float,
    top_p: float,
    stop: tuple[str, ...],
    stream: bool,
    retries: Optional[int],
) -> None:
    """Generate a completion for PROMPT with MODEL.

    \b
        edgellm generate llama-3.2-1b "Write a haiku about the sea"
        edgellm generate mock/test "Hello" --no-stream
    """
    descriptor = resolve_model(model)
    config = get_config()
    if retries is not None:
        config.max_retries = retries
    params = _params(max_tokens, temperature, top_p, stop)

    async def _run() -> None:
        engine = await _load(descriptor, config)
        try:
            if stream:
                async for fragment in engine.stream_with_retry(prompt, params):
                    click.echo(fragment, nl=False)
                click.echo()
            else:
                click.echo(await engine.generate_with_retry(prompt, params))
        finally:
            engine.unload()

    try:
        run_async(_run())
    except EngineError as exc:
        fail(str(exc))


@click.command()
@click.argument("model", shell_complete=_complete_model_name)
@_with_generation_options
@click.option("--system", "-s", "system_prompt", default=None, help="System prompt.")
def chat(
    model: str,
    max_tokens: int,
    temperature: float,
    top_p: float,
    stop: tuple[str, ...],
    system_prompt: Optional[str],
) -> None:
    """Chat interactively with MODEL."""
    descriptor = resolve_model(model)
    config = get_config()
    params = _params(max_tokens, temperature, top_p, stop)

    async def _run() -> None:
        engine = await _load(descriptor, config)
        try:
            await run_chat_repl(ChatSession(engine, system_prompt), params)
        finally:
            engine.unload()

    run_async(_run())


@click.command("debug-report")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
def debug_report(as_json: bool) -> None:
    """Print runtimes, memory and storage state for bug reports."""
    report = collect_debug_report(storage=get_storage(get_config()))
    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
    else:
        click.echo(format_debug_report(report))
