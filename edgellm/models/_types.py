"""Value types describing models and generation requests."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from .parser import parameter_count_billions, parse_identifier

# Memory estimate (GB) by parameter count when the on-disk size is unknown.
_MEMORY_BY_PARAMS: tuple[tuple[float, float], ...] = (
    (0.5, 1.0),
    (1.0, 2.0),
    (1.5, 3.0),
    (2.0, 4.0),
    (3.0, 6.0),
    (7.0, 14.0),
    (8.0, 16.0),
    (13.0, 26.0),
)

_INFERENCE_OVERHEAD = 1.2
_SMALL_MODEL_MAX_BILLIONS = 3.0


@dataclass(frozen=True)
class ModelDescriptor:
    """Identity and metadata for one model bundle.

    ``model_id`` is the repository-qualified identifier
    (``"mlx-community/Llama-3.2-1B-4bit"``) and doubles as the key for the
    local model directory.
    """

    model_id: str
    name: str = ""
    description: str = ""
    parameters: Optional[str] = None
    quantization: Optional[str] = None
    architecture: Optional[str] = None
    max_context: int = 4096
    estimated_size_gb: Optional[float] = None
    default_system_prompt: Optional[str] = None
    stop_sequences: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.model_id:
            raise ValueError("model_id must not be empty")
        if not self.name:
            object.__setattr__(self, "name", self.model_id.rsplit("/", 1)[-1])

    @classmethod
    def from_identifier(cls, model_id: str, **overrides: Any) -> ModelDescriptor:
        """Build a descriptor, filling metadata parsed from the identifier."""
        parsed = parse_identifier(model_id)
        fields: dict[str, Any] = {
            "model_id": model_id,
            "name": parsed.name,
            "parameters": parsed.parameters,
            "quantization": parsed.quantization,
            "architecture": parsed.architecture,
        }
        fields.update(overrides)
        return cls(**fields)

    @property
    def is_small_model(self) -> bool:
        """Whether the model is small enough for phones and low-memory hosts."""
        billions = parameter_count_billions(self.parameters)
        return billions is not None and billions <= _SMALL_MODEL_MAX_BILLIONS

    @property
    def estimated_memory_gb(self) -> float:
        if self.estimated_size_gb is not None:
            return self.estimated_size_gb * _INFERENCE_OVERHEAD
        billions = parameter_count_billions(self.parameters)
        if billions is None:
            return 2.0
        for limit, memory_gb in _MEMORY_BY_PARAMS:
            if billions <= limit:
                return memory_gb
        return billions * 2.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stop_sequences"] = list(self.stop_sequences)
        return data


@dataclass(frozen=True)
class GenerateParams:
    """Per-call generation settings."""

    max_tokens: int = 100
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    stop_sequences: tuple[str, ...] = field(default_factory=tuple)

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the parameters are usable."""
        problems: list[str] = []
        if self.max_tokens <= 0:
            problems.append(f"max_tokens must be positive (got {self.max_tokens})")
        if self.temperature < 0:
            problems.append(f"temperature must be >= 0 (got {self.temperature})")
        if not 0 < self.top_p <= 1:
            problems.append(f"top_p must be in (0, 1] (got {self.top_p})")
        if self.top_k < 0:
            problems.append(f"top_k must be >= 0 (got {self.top_k})")
        if any(not s for s in self.stop_sequences):
            problems.append("stop sequences must be non-empty strings")
        return problems

    def merged_stops(self, extra: tuple[str, ...]) -> tuple[str, ...]:
        """Combine per-call stop sequences with model-level ones, order preserved."""
        seen: dict[str, None] = dict.fromkeys(self.stop_sequences)
        for stop in extra:
            seen.setdefault(stop, None)
        return tuple(seen)
