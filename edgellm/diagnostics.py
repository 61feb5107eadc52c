"""Debug report: one snapshot of everything useful in a bug report."""

from __future__ import annotations

import logging
import platform
import sys
from typing import Any, Optional

from . import __version__
from .download import is_valid_model_dir, missing_files
from .engines import RuntimeRegistry, default_registry
from .hardware import detect_memory
from .inference import InferenceEngine
from .storage import StorageRoot, decode_model_id, default_storage_root, directory_size

logger = logging.getLogger(__name__)


def collect_debug_report(
    storage: Optional[StorageRoot] = None,
    registry: Optional[RuntimeRegistry] = None,
    engine: Optional[InferenceEngine] = None,
) -> dict[str, Any]:
    """Gather host, runtime, storage and (optionally) engine state."""
    storage = storage or default_storage_root()
    registry = registry if registry is not None else default_registry()

    report: dict[str, Any] = {
        "edgellm_version": __version__,
        "python": sys.version.split()[0],
        "platform": {
            "system": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
    }

    try:
        memory = detect_memory()
        report["memory"] = {
            "total_gb": memory.total_gb,
            "available_gb": memory.available_gb,
        }
    except OSError as exc:
        logger.debug("Memory probe failed: %s", exc)
        report["memory"] = {"error": str(exc)}

    report["runtimes"] = [
        {
            "name": result.runtime.name,
            "display_name": result.runtime.display_name,
            "available": result.available,
            "info": result.info,
        }
        for result in registry.detect_all()
    ]

    downloaded: list[dict[str, Any]] = []
    incomplete: list[dict[str, Any]] = []
    for directory in storage.iter_model_dirs():
        entry = {
            "model_id": decode_model_id(directory.name),
            "size_bytes": directory_size(directory),
        }
        if is_valid_model_dir(directory):
            downloaded.append(entry)
        else:
            entry["missing"] = missing_files(directory)
            incomplete.append(entry)
    report["storage"] = {
        "root": str(storage.root),
        "exists": storage.root.is_dir(),
        "downloaded": downloaded,
        "incomplete": incomplete,
    }

    if engine is not None:
        report["engine"] = engine.status.to_dict()
    return report


def format_debug_report(report: dict[str, Any]) -> str:
    lines = [
        f"edgellm {report.get('edgellm_version', '?')}"
        f" (Python {report.get('python', '?')})",
    ]
    plat = report.get("platform", {})
    lines.append(
        f"Platform: {plat.get('system', '?')} {plat.get('release', '')}"
        f" {plat.get('machine', '')}".rstrip()
    )

    memory = report.get("memory", {})
    if "error" in memory:
        lines.append(f"Memory: unavailable ({memory['error']})")
    else:
        lines.append(
            f"Memory: {memory.get('available_gb', 0)} GB available"
            f" / {memory.get('total_gb', 0)} GB total"
        )

    lines.append("")
    lines.append("Runtimes:")
    for runtime in report.get("runtimes", []):
        mark = "+" if runtime["available"] else "-"
        info = f" ({runtime['info']})" if runtime.get("info") else ""
        lines.append(f"  {mark} {runtime['display_name']}{info}")
    if not report.get("runtimes"):
        lines.append("  (none registered, fallback only)")

    storage = report.get("storage", {})
    lines.append("")
    lines.append(f"Storage: {storage.get('root', '?')}")
    for entry in storage.get("downloaded", []):
        lines.append(f"  {entry['model_id']}  {entry['size_bytes'] / 1024**2:.1f} MB")
    for entry in storage.get("incomplete", []):
        lines.append(
            f"  {entry['model_id']}  INCOMPLETE (missing {', '.join(entry['missing'])})"
        )
    if not storage.get("downloaded") and not storage.get("incomplete"):
        lines.append("  (no models)")

    engine = report.get("engine")
    if engine:
        lines.append("")
        lines.append(f"Engine: {engine['model_id']}")
        for key in ("state", "runtime_mode", "runtime_name", "health", "memory_limit_bytes"):
            lines.append(f"  {key}: {engine.get(key)}")
        if engine.get("last_error"):
            lines.append(f"  last_error: {engine['last_error']}")
    return "\n".join(lines)
