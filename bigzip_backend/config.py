from __future__ import annotations

import os
import sys
from dataclasses import dataclass

DEFAULT_EXECUTABLE_NAME = "bz.exe" if sys.platform.startswith("win") else "bz"


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 8766
    executable_name: str = DEFAULT_EXECUTABLE_NAME
    executable_dir: str | None = None
    progress_interval_ms: int = 200
    default_factor: str = "64"
    default_fill_pattern: str = "repeat"
    runtime_config_path: str | None = None
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("BIGZIP_HOST", "127.0.0.1"),
        port=int(os.getenv("BIGZIP_PORT", "8766")),
        executable_name=os.getenv("BIGZIP_EXECUTABLE_NAME", DEFAULT_EXECUTABLE_NAME).strip(),
        executable_dir=(os.getenv("BIGZIP_EXECUTABLE_DIR") or "").strip() or None,
        progress_interval_ms=int(os.getenv("BIGZIP_PROGRESS_INTERVAL_MS", "200")),
        default_factor=os.getenv("BIGZIP_DEFAULT_FACTOR", "64").strip(),
        default_fill_pattern=os.getenv("BIGZIP_DEFAULT_FILL_PATTERN", "repeat").strip().lower(),
        runtime_config_path=(os.getenv("BIGZIP_RUNTIME_CONFIG_PATH") or "").strip() or None,
        log_level=os.getenv("BIGZIP_LOG_LEVEL", "INFO").strip().upper(),
    )
