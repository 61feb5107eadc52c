"""Identifier parser. Pulls model metadata out of a repository identifier.

Repository names usually encode the interesting bits::

    mlx-community/Llama-3.2-3B-Instruct-4bit -> params=3B, quant=4bit, arch=Llama
    mlx-community/Qwen1.5-0.5B-Chat-4bit     -> params=0.5B, quant=4bit, arch=Qwen
    bartowski/gemma-2-2b-it-GGUF             -> params=2B,   quant=None, arch=Gemma
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_PARAMS_RE = re.compile(r"(\d+(?:\.\d+)?)[Bb](?![a-zA-Z])")

# Checked in order; the first hit wins.
_QUANT_MARKERS: tuple[tuple[str, str], ...] = (
    ("4bit", "4bit"),
    ("8bit", "8bit"),
    ("fp16", "fp16"),
    ("bf16", "bf16"),
    ("q4_k_m", "Q4_K_M"),
    ("q8_0", "Q8_0"),
)

_ARCH_MARKERS: tuple[tuple[str, str], ...] = (
    ("tinyllama", "TinyLlama"),
    ("qwen", "Qwen"),
    ("llama", "Llama"),
    ("mistral", "Mistral"),
    ("phi", "Phi"),
    ("gemma", "Gemma"),
)


@dataclass(frozen=True)
class ParsedIdentifier:
    """Result of parsing an ``org/name`` identifier."""

    owner: Optional[str]
    name: str
    parameters: Optional[str] = None
    quantization: Optional[str] = None
    architecture: Optional[str] = None


def parse_identifier(model_id: str) -> ParsedIdentifier:
    """Split ``model_id`` and extract parameter count, quantization and architecture.

    Identifiers without an owner segment are parsed as a bare name.
    """
    owner: Optional[str]
    if "/" in model_id:
        owner, name = model_id.split("/", 1)
    else:
        owner, name = None, model_id

    lowered = name.lower()

    parameters = None
    match = _PARAMS_RE.search(name)
    if match:
        parameters = f"{match.group(1)}B"

    quantization = None
    for marker, label in _QUANT_MARKERS:
        if marker in lowered:
            quantization = label
            break

    architecture = None
    for marker, label in _ARCH_MARKERS:
        if marker in lowered:
            architecture = label
            break

    return ParsedIdentifier(
        owner=owner,
        name=name,
        parameters=parameters,
        quantization=quantization,
        architecture=architecture,
    )


def parameter_count_billions(parameters: Optional[str]) -> Optional[float]:
    """``"1.5B"`` -> ``1.5``. Returns ``None`` for missing or non-billion counts."""
    if not parameters:
        return None
    match = _PARAMS_RE.fullmatch(parameters.strip())
    if not match:
        return None
    return float(match.group(1))
