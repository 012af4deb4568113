"""Path confinement for tools that touch the filesystem."""

from __future__ import annotations

from pathlib import Path

from task_orchestrator.errors import ToolCapabilityError


def resolve_in_sandbox(root: Path, raw_path: str) -> Path:
    """Map a user path onto the sandbox; absolute paths are re-rooted, escapes are rejected."""
    relative = raw_path.strip().lstrip("/\\") or "."
    candidate = (root / relative).resolve()
    resolved_root = root.resolve()
    if candidate != resolved_root and resolved_root not in candidate.parents:
        raise ToolCapabilityError(f"Path escapes the sandbox: {raw_path}")
    return candidate


def relative_name(root: Path, path: Path) -> str:
    relative = path.resolve().relative_to(root.resolve())
    return relative.as_posix() if relative.parts else "."
