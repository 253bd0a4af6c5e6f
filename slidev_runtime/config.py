"""Environment-driven settings for the Slidev backend."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    server_port: int = 5310
    preview_base_port: int = 5500
    preview_max_port: int = 6500
    build_timeout_ms: int = 120_000
    screenshot_width: int = 1280
    screenshot_height: int = 720
    cli_path: Optional[str] = None
    work_dir: Path = Path(".")
    log_level: str = "INFO"

    @property
    def build_timeout(self) -> float:
        """Build/export subprocess timeout in seconds."""
        return self.build_timeout_ms / 1000

    @classmethod
    def from_env(cls) -> Settings:
        work_dir = os.getenv("SLIDEV_WORK_DIR")
        return cls(
            server_port=_int_env("PORT", 5310),
            preview_base_port=_int_env("PREVIEW_BASE_PORT", 5500),
            preview_max_port=_int_env("PREVIEW_MAX_PORT", 6500),
            build_timeout_ms=_int_env("SLIDEV_BUILD_TIMEOUT", 120_000),
            screenshot_width=_int_env("SCREENSHOT_WIDTH", 1280),
            screenshot_height=_int_env("SCREENSHOT_HEIGHT", 720),
            cli_path=os.getenv("SLIDEV_CLI_PATH") or None,
            work_dir=Path(work_dir).resolve() if work_dir else Path.cwd(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def load_settings() -> Settings:
    return Settings.from_env()
