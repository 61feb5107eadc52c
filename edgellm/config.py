"""Local configuration: ``~/.edgellm/config.json`` plus environment overrides.

Resolution order for every setting: explicit argument > environment
variable > config file > built-in default.

Environment variables::

    EDGELLM_MODELS_DIR          storage root for downloaded models
    EDGELLM_HF_TOKEN / HF_TOKEN Hugging Face access token
    EDGELLM_HF_ENDPOINT         Hub base URL (mirrors, self-hosted hubs)
    EDGELLM_MEMORY_LIMIT_MB     accelerator cache ceiling
    EDGELLM_FORCE_FALLBACK      "1" to skip real runtimes entirely
    EDGELLM_MAX_RETRIES         default retry count for *_with_retry calls
    EDGELLM_RETRY_BASE_DELAY    default base delay (seconds)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_HF_ENDPOINT = "https://huggingface.co"

_TRUTHY = {"1", "true", "yes", "on"}


def _config_path() -> Path:
    return Path(os.path.expanduser("~/.edgellm/config.json"))


@dataclass
class EdgeLLMConfig:
    """Resolved settings shared by the CLI and the library factories."""

    models_dir: Optional[str] = None
    hf_token: Optional[str] = None
    hf_endpoint: str = DEFAULT_HF_ENDPOINT
    memory_limit_mb: Optional[int] = None
    force_fallback: bool = False
    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_multiplier: float = 2.0
    fallback_step_delay: float = 0.0
    download_timeout: float = 60.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data.get("hf_token"):
            data["hf_token"] = "***"
        return data


def _read_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a JSON object", path)
        return {}
    return data


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if env.get("EDGELLM_MODELS_DIR"):
        out["models_dir"] = env["EDGELLM_MODELS_DIR"]
    token = env.get("EDGELLM_HF_TOKEN") or env.get("HF_TOKEN")
    if token:
        out["hf_token"] = token
    if env.get("EDGELLM_HF_ENDPOINT"):
        out["hf_endpoint"] = env["EDGELLM_HF_ENDPOINT"]
    if env.get("EDGELLM_MEMORY_LIMIT_MB"):
        out["memory_limit_mb"] = int(env["EDGELLM_MEMORY_LIMIT_MB"])
    if env.get("EDGELLM_FORCE_FALLBACK"):
        out["force_fallback"] = env["EDGELLM_FORCE_FALLBACK"].strip().lower() in _TRUTHY
    if env.get("EDGELLM_MAX_RETRIES"):
        out["max_retries"] = int(env["EDGELLM_MAX_RETRIES"])
    if env.get("EDGELLM_RETRY_BASE_DELAY"):
        out["retry_base_delay"] = float(env["EDGELLM_RETRY_BASE_DELAY"])
    return out


def load_config(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> EdgeLLMConfig:
    """Load settings from the config file, the environment and ``overrides``.

    Unknown keys in the file are ignored with a debug log so older and newer
    versions can share a config file.
    """
    known = {f.name for f in fields(EdgeLLMConfig)}
    merged: dict[str, Any] = {}

    for key, value in _read_file(path or _config_path()).items():
        if key in known:
            merged[key] = value
        else:
            logger.debug("Unknown config key %r ignored", key)

    merged.update(_env_overrides(os.environ if env is None else env))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return EdgeLLMConfig(**merged)


def save_config(config: EdgeLLMConfig, path: Optional[Path] = None) -> Path:
    """Persist ``config`` as JSON. The file may hold a token, so it is 0600."""
    target = path or _config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    target.write_text(json.dumps(data, indent=2) + "\n")
    target.chmod(0o600)
    return target
