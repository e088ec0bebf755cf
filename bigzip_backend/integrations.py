from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from .runtime_config import RuntimeConfig


def application_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def resolve_executable(name: str, base_dir: str | Path | None = None) -> str | None:
    base = Path(base_dir).expanduser() if base_dir else application_dir()
    candidate = base / name
    if candidate.is_file() and os.access(candidate, os.X_OK):
        return str(candidate.resolve())
    return None


def executable_status(runtime: RuntimeConfig) -> dict[str, Any]:
    base = Path(runtime.executable_dir).expanduser() if runtime.executable_dir else application_dir()
    resolved = resolve_executable(runtime.executable_name, base)
    status: dict[str, Any] = {
        "executable_name": runtime.executable_name,
        "executable_dir": str(base),
        "executable_resolved": resolved,
        "executable_available": resolved is not None,
    }
    if resolved is None:
        status["detail"] = f"{runtime.executable_name} not found in {base}"
    else:
        status["detail"] = "Executable found."
    return status
