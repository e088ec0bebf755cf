from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .config import DEFAULT_EXECUTABLE_NAME, Settings
from .types import FACTORS, FILL_PATTERNS

logger = logging.getLogger(__name__)

MIN_PROGRESS_INTERVAL_MS = 50
MAX_PROGRESS_INTERVAL_MS = 5000


@dataclass(slots=True)
class RuntimeConfig:
    executable_name: str = DEFAULT_EXECUTABLE_NAME
    executable_dir: str | None = None
    progress_interval_ms: int = 200
    default_factor: str = "64"
    default_fill_pattern: str = "repeat"

    @classmethod
    def from_settings(cls, settings: Settings) -> RuntimeConfig:
        interval = settings.progress_interval_ms
        return cls(
            executable_name=settings.executable_name or DEFAULT_EXECUTABLE_NAME,
            executable_dir=settings.executable_dir,
            progress_interval_ms=max(MIN_PROGRESS_INTERVAL_MS, min(interval, MAX_PROGRESS_INTERVAL_MS)),
            default_factor=settings.default_factor if settings.default_factor in FACTORS else "64",
            default_fill_pattern=settings.default_fill_pattern if settings.default_fill_pattern in FILL_PATTERNS else "repeat",
        )


def _default_runtime_config_path() -> Path:
    base = os.getenv("APPDATA")
    root = Path(base) if base else Path.home() / ".config"
    return root / "BigZip" / "runtime-config.json"


class RuntimeConfigStore:
    def __init__(self, settings: Settings):
        self._lock = threading.RLock()
        self._path = Path(settings.runtime_config_path).expanduser() if settings.runtime_config_path else _default_runtime_config_path()
        self._config = RuntimeConfig.from_settings(settings)
        self._load_from_disk()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> RuntimeConfig:
        with self._lock:
            return RuntimeConfig(**asdict(self._config))

    def public_view(self) -> dict[str, Any]:
        cfg = self.get()
        return {
            "executable_name": cfg.executable_name,
            "executable_dir": cfg.executable_dir,
            "progress_interval_ms": cfg.progress_interval_ms,
            "default_factor": cfg.default_factor,
            "default_fill_pattern": cfg.default_fill_pattern,
            "config_path": str(self._path),
        }

    def update(
        self,
        *,
        executable_name: str | None = None,
        executable_dir: str | None = None,
        clear_executable_dir: bool = False,
        progress_interval_ms: int | None = None,
        default_factor: str | None = None,
        default_fill_pattern: str | None = None,
    ) -> RuntimeConfig:
        with self._lock:
            next_cfg = RuntimeConfig(**asdict(self._config))

            if executable_name is not None:
                cleaned = executable_name.strip()
                if not cleaned:
                    raise ValueError("executable_name cannot be empty")
                next_cfg.executable_name = cleaned

            if clear_executable_dir:
                next_cfg.executable_dir = None
            elif executable_dir is not None:
                cleaned = executable_dir.strip()
                next_cfg.executable_dir = cleaned or None

            if progress_interval_ms is not None:
                if progress_interval_ms < MIN_PROGRESS_INTERVAL_MS or progress_interval_ms > MAX_PROGRESS_INTERVAL_MS:
                    raise ValueError(
                        f"progress_interval_ms must be between {MIN_PROGRESS_INTERVAL_MS} and {MAX_PROGRESS_INTERVAL_MS}"
                    )
                next_cfg.progress_interval_ms = progress_interval_ms

            if default_factor is not None:
                cleaned = str(default_factor).strip()
                if cleaned not in FACTORS:
                    raise ValueError(f"default_factor must be one of: {', '.join(FACTORS)}")
                next_cfg.default_factor = cleaned

            if default_fill_pattern is not None:
                cleaned = default_fill_pattern.strip().lower()
                if cleaned not in FILL_PATTERNS:
                    raise ValueError(f"default_fill_pattern must be one of: {', '.join(FILL_PATTERNS)}")
                next_cfg.default_fill_pattern = cleaned

            self._config = next_cfg
            self._persist_locked()
            return RuntimeConfig(**asdict(self._config))

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                return
        except Exception:
            logger.exception("Failed loading runtime config from %s", self._path)
            return

        try:
            self.update(
                executable_name=parsed.get("executable_name"),
                executable_dir=parsed.get("executable_dir"),
                progress_interval_ms=parsed.get("progress_interval_ms"),
                default_factor=parsed.get("default_factor"),
                default_fill_pattern=parsed.get("default_fill_pattern"),
            )
        except Exception:
            logger.exception("Runtime config file is invalid; keeping defaults")

    def _persist_locked(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(asdict(self._config), indent=2, ensure_ascii=True)
        temp_path = self._path.with_suffix(".tmp")
        temp_path.write_text(payload + "\n", encoding="utf-8")
        os.replace(temp_path, self._path)
        try:
            os.chmod(self._path, 0o600)
        except OSError:
            pass
