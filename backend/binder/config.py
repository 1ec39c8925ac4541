"""Application settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .packing.types import CompressionLevel, PackingParameters

_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


@dataclass(frozen=True)
class Settings:
    ceiling_mb: float
    safety_margin_percent: float
    compression_level: CompressionLevel
    verify_threshold: float
    partition_debounce_seconds: float
    sync_debounce_seconds: float
    max_assembly_failures: int
    compression_retry_limit: int
    part_label: str
    session_db_path: Path
    output_dir: Path
    drive_access_token: Optional[str]
    drive_root_folder_name: str
    cors_allow_origins: tuple[str, ...]

    def default_parameters(self) -> PackingParameters:
        return PackingParameters(
            ceiling_mb=self.ceiling_mb,
            safety_margin_percent=self.safety_margin_percent,
            compression_level=self.compression_level,
        )


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number in {name}: {raw!r}") from exc


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer in {name}: {raw!r}") from exc


@lru_cache()
def get_settings() -> Settings:
    level_raw = os.getenv("BINDER_COMPRESSION_LEVEL", "low").strip().lower()
    try:
        compression_level = CompressionLevel(level_raw)
    except ValueError as exc:
        raise RuntimeError(f"Unknown BINDER_COMPRESSION_LEVEL: {level_raw!r}") from exc

    verify_threshold = _float_env("BINDER_VERIFY_THRESHOLD", "0.85")
    if not 0 < verify_threshold <= 1:
        raise RuntimeError("BINDER_VERIFY_THRESHOLD must be in (0, 1]")

    drive_token = os.getenv("DRIVE_ACCESS_TOKEN")
    if drive_token:
        drive_token = drive_token.strip() or None

    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "*")
    cors_allow_origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())

    return Settings(
        ceiling_mb=_float_env("BINDER_CEILING_MB", "15.0"),
        safety_margin_percent=_float_env("BINDER_SAFETY_MARGIN_PERCENT", "1"),
        compression_level=compression_level,
        verify_threshold=verify_threshold,
        partition_debounce_seconds=_float_env("BINDER_PARTITION_DEBOUNCE_SECONDS", "0.1"),
        sync_debounce_seconds=_float_env("BINDER_SYNC_DEBOUNCE_SECONDS", "1.0"),
        max_assembly_failures=_int_env("BINDER_MAX_ASSEMBLY_FAILURES", "3"),
        compression_retry_limit=_int_env("BINDER_COMPRESSION_RETRY_LIMIT", "3"),
        part_label=os.getenv("BINDER_PART_LABEL", "Part"),
        session_db_path=Path(os.getenv("BINDER_SESSION_DB_PATH", "data/sessions.db")),
        output_dir=Path(os.getenv("BINDER_OUTPUT_DIR", "output")),
        drive_access_token=drive_token,
        drive_root_folder_name=os.getenv("DRIVE_ROOT_FOLDER_NAME", "Memory Books"),
        cors_allow_origins=cors_allow_origins or ("*",),
    )
