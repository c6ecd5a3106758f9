"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Only the service layer reads these values. The relay core receives
constructed clients and a PipelineConfig instead.

Usage:
    from zkrelay.config import settings

    print(settings.environment)
    print(settings.chain.rpc_url)
"""

from zkrelay.config.settings import (
    ChainMode,
    Environment,
    LedgerMode,
    LogLevel,
    ProverMode,
    RegistryBackend,
    Settings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "ProverMode",
    "LedgerMode",
    "ChainMode",
    "RegistryBackend",
]
