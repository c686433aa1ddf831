"""Settings package exports."""

from .loader import (
    AppConfig,
    HttpSettings,
    IngestSettings,
    PathSettings,
    ProviderSettings,
    load_config,
)

__all__ = [
    "AppConfig",
    "HttpSettings",
    "IngestSettings",
    "PathSettings",
    "ProviderSettings",
    "load_config",
]
