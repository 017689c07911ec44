from .settings import (
    AppSettings,
    GitHubSettings,
    SecuritySettings,
    Settings,
    UpdateSettings,
    VercelSettings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "GitHubSettings",
    "SecuritySettings",
    "Settings",
    "UpdateSettings",
    "VercelSettings",
    "get_settings",
]
