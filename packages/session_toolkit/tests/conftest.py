from __future__ import annotations

import pytest

SETTINGS_ENV_VARS = (
    "COMPACTION_ENABLED",
    "COMPACTION_MODE",
    "CONTEXT_WINDOW",
    "COMPACTION_RESERVE_TOKENS",
    "COMPACTION_KEEP_RECENT_TOKENS",
    "SESSION_STORAGE_DIR",
)


@pytest.fixture(autouse=True)
def _clear_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
