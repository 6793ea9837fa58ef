from session_toolkit.config.settings import CompactionMode, Settings, load_settings

__all__ = [
    "CompactionMode",
    "Settings",
    "load_settings",
]
