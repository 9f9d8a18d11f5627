"""Configuration module."""

from corpus_engine.config.configuration import (
    AppConfig,
    ConfigurationError,
    CosmosDBConfig,
    DatabaseConfig,
    ExportConfig,
    IngestionConfig,
    LoggingConfig,
    StorageConfig,
    configure_logging,
    get_config,
    get_environment,
    load_config,
    reset_config,
)

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "CosmosDBConfig",
    "DatabaseConfig",
    "ExportConfig",
    "IngestionConfig",
    "LoggingConfig",
    "StorageConfig",
    "configure_logging",
    "get_config",
    "get_environment",
    "load_config",
    "reset_config",
]
