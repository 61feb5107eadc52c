"""Well-known models with curated metadata.

A static table, not a search index: it maps short aliases and repository
identifiers to descriptors with sizes, context bounds and system prompts
that cannot be inferred from the identifier alone. Anything not listed is
resolved by parsing the identifier.
"""

from __future__ import annotations

from typing import Optional

from ._types import ModelDescriptor

CATALOG: dict[str, ModelDescriptor] = {
    "tinyllama-1.1b": ModelDescriptor(
        model_id="mlx-community/TinyLlama-1.1B-Chat-v1.0-4bit",
        name="TinyLlama 1.1B Chat",
        description="Ultra-compact model for mobile devices and testing",
        parameters="1.1B",
        quantization="4bit",
        architecture="TinyLlama",
        max_context=2048,
        estimated_size_gb=0.6,
        default_system_prompt=(
            "You are a helpful assistant that provides concise and accurate responses."
        ),
        stop_sequences=("<|im_end|>",),
    ),
    "qwen-0.5b": ModelDescriptor(
        model_id="mlx-community/Qwen1.5-0.5B-Chat-4bit",
        name="Qwen 1.5 0.5B Chat",
        description="Small, fast chat model good for testing and quick responses",
        parameters="0.5B",
        quantization="4bit",
        architecture="Qwen",
        estimated_size_gb=0.3,
    ),
    "llama-3.2-1b": ModelDescriptor(
        model_id="mlx-community/Llama-3.2-1B-4bit",
        name="Llama 3.2 1B",
        description="Fast and efficient 1B parameter model",
        parameters="1B",
        quantization="4bit",
        architecture="Llama",
        estimated_size_gb=0.6,
    ),
    "llama-3.2-3b": ModelDescriptor(
        model_id="mlx-community/Llama-3.2-3B-4bit",
        name="Llama 3.2 3B",
        description="Good quality 3B parameter model with reasonable speed",
        parameters="3B",
        quantization="4bit",
        architecture="Llama",
        estimated_size_gb=1.8,
    ),
    "phi-3.1-mini": ModelDescriptor(
        model_id="mlx-community/Phi-3.1-mini-4bit",
        name="Phi-3.1 Mini",
        description="Microsoft's efficient Phi-3.1 Mini model",
        parameters="3.8B",
        quantization="4bit",
        architecture="Phi",
        estimated_size_gb=2.3,
    ),
    "gemma-2-2b": ModelDescriptor(
        model_id="mlx-community/gemma-2-2b-4bit",
        name="Gemma 2 2B",
        description="Google's efficient Gemma 2 2B model",
        parameters="2B",
        quantization="4bit",
        architecture="Gemma",
        estimated_size_gb=1.2,
    ),
    "llama-3.1-8b": ModelDescriptor(
        model_id="mlx-community/Meta-Llama-3.1-8B-Instruct-4bit",
        name="Llama 3.1 8B Instruct",
        description="High-performance model for complex reasoning tasks",
        parameters="8B",
        quantization="4bit",
        architecture="Llama",
        max_context=8192,
        estimated_size_gb=4.9,
    ),
    "mistral-7b": ModelDescriptor(
        model_id="mlx-community/Mistral-7B-Instruct-v0.3-4bit",
        name="Mistral 7B Instruct",
        description="High-quality instruction-following model",
        parameters="7B",
        quantization="4bit",
        architecture="Mistral",
        max_context=8192,
        estimated_size_gb=4.2,
        default_system_prompt="You are a helpful assistant.",
        stop_sequences=("</s>",),
    ),
}

_BY_MODEL_ID: dict[str, ModelDescriptor] = {d.model_id: d for d in CATALOG.values()}


def get_descriptor(ref: str) -> Optional[ModelDescriptor]:
    """Look up a catalogue entry by alias (case-insensitive) or exact identifier."""
    return CATALOG.get(ref.lower()) or _BY_MODEL_ID.get(ref)


def resolve_descriptor(ref: str) -> ModelDescriptor:
    """Return the catalogue entry for ``ref`` or a descriptor parsed from it.

    Raises
    ------
    ValueError
        If ``ref`` is neither a known alias nor an ``owner/name`` identifier.
    """
    known = get_descriptor(ref)
    if known is not None:
        return known
    if "/" in ref:
        return ModelDescriptor.from_identifier(ref)
    aliases = ", ".join(sorted(CATALOG))
    raise ValueError(
        f"Unknown model: '{ref}'\n"
        f"  Known models: {aliases}\n"
        f"  Or use a repository identifier: <owner>/<name>"
    )
