"""Pydantic models for application settings."""

from __future__ import annotations

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

CompactionMode = Literal["auto", "manual"]


class Settings(BaseModel, frozen=True):
    """Runtime configuration loaded from environment variables."""

    compaction_enabled: bool = True
    compaction_mode: CompactionMode = "auto"
    context_window: int = 128000
    compaction_reserve_tokens: int = 16384
    compaction_keep_recent_tokens: int = 20000
    session_storage_dir: str = ".data/sessions"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Load settings from environment variables with defaults."""
    load_dotenv()

    mode = os.getenv("COMPACTION_MODE", "auto").strip().lower()
    if mode not in ("auto", "manual"):
        msg = f"COMPACTION_MODE must be 'auto' or 'manual', got {mode!r}."
        raise ValueError(msg)

    context_window = int(os.getenv("CONTEXT_WINDOW", "128000"))
    if context_window <= 0:
        msg = "CONTEXT_WINDOW must be a positive integer."
        raise ValueError(msg)

    return Settings(
        compaction_enabled=_parse_bool(os.getenv("COMPACTION_ENABLED", "true")),
        compaction_mode=mode,  # type: ignore[arg-type]
        context_window=context_window,
        compaction_reserve_tokens=int(os.getenv("COMPACTION_RESERVE_TOKENS", "16384")),
        compaction_keep_recent_tokens=int(os.getenv("COMPACTION_KEEP_RECENT_TOKENS", "20000")),
        session_storage_dir=os.getenv("SESSION_STORAGE_DIR", ".data/sessions"),
    )
