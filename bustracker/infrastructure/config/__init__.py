from .settings import (
    Settings,
    LLMSettings,
    RemoteStoreSettings,
    CacheSettings,
    get_settings,
)

__all__ = [
    "Settings",
    "LLMSettings",
    "RemoteStoreSettings",
    "CacheSettings",
    "get_settings",
]
