"""Configuration module for the corpus ingestion engine.

Loads settings from environment-specific config files:
- APP_ENV=dev  → config_dev.yaml (SQLite backend, local development)
- APP_ENV=test → config_test.yaml (CosmosDB backend, production-like testing)
- Default      → config.yaml

Credentials are loaded from .env file.
Fails fast with clear error messages if required configuration is missing.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_project_root() -> Path:
    """Get the project root directory (where config.yaml lives)."""
    # Navigate from corpus_engine/config/ up to project root
    return Path(__file__).parent.parent.parent


def _get_config_filename() -> str:
    """Get config filename based on APP_ENV environment variable.

    Returns:
        Config filename:
        - APP_ENV=dev  → config_dev.yaml
        - APP_ENV=test → config_test.yaml
        - Default      → config.yaml
    """
    app_env = os.environ.get("APP_ENV", "").lower()

    if app_env == "dev":
        return "config_dev.yaml"
    elif app_env == "test":
        return "config_test.yaml"
    else:
        return "config.yaml"


def _load_yaml_config() -> dict:
    """Load configuration from environment-specific config file."""
    config_filename = _get_config_filename()
    config_path = _get_project_root() / config_filename

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}. "
            f"Set APP_ENV to 'dev' or 'test', or create {config_filename}."
        )

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _get_required_env(key: str) -> str:
    """Get required environment variable or raise ConfigurationError."""
    value = os.environ.get(key)
    if not value:
        raise ConfigurationError(
            f"Required environment variable '{key}' is not set. "
            f"Please add it to your .env file."
        )
    return value


@dataclass(frozen=True)
class DatabaseConfig:
    """Persistence backend configuration."""
    backend: str  # "sqlite" or "cosmosdb"
    sqlite_path: str


@dataclass(frozen=True)
class CosmosDBConfig:
    """Azure Cosmos DB configuration for the corpus and ledgers."""
    endpoint: str
    key: str
    database_name: str
    sentences_container: str
    documents_container: str
    sessions_container: str
    users_container: str


@dataclass(frozen=True)
class StorageConfig:
    """MinIO object storage configuration."""
    enabled: bool
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    secure: bool
    public_endpoint: Optional[str]


@dataclass(frozen=True)
class IngestionConfig:
    """Upload pipeline configuration."""
    timeout_seconds: float
    upload_prefix: str


@dataclass(frozen=True)
class ExportConfig:
    """Session export configuration."""
    url_ttl_seconds: int
    session_export_prefix: str
    exclusive_across_sessions: bool


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str
    format: str


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration container."""
    database: DatabaseConfig
    cosmosdb: Optional[CosmosDBConfig]  # Only required when database.backend == "cosmosdb"
    storage: StorageConfig
    ingestion: IngestionConfig
    export: ExportConfig
    logging: LoggingConfig


def load_config() -> AppConfig:
    """
    Load and validate all application configuration.

    Loads from the YAML config file for non-sensitive settings and .env for
    credentials. Fails fast if required configuration is missing.

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigurationError: If required configuration is missing.
    """
    # Load environment variables from .env file
    load_dotenv()

    # Load YAML configuration
    yaml_config = _load_yaml_config()

    # Build Database config
    db_section = yaml_config.get("database", {})
    database_backend = db_section.get("backend", "sqlite")

    database_config = DatabaseConfig(
        backend=database_backend,
        sqlite_path=db_section.get("sqlite_path", "corpus.db"),
    )

    # Build CosmosDB config (only if backend is cosmosdb)
    cosmosdb_config: Optional[CosmosDBConfig] = None
    if database_backend == "cosmosdb":
        cosmosdb_section = yaml_config.get("cosmosdb", {})
        cosmosdb_config = CosmosDBConfig(
            endpoint=_get_required_env("COSMOSDB_ENDPOINT"),
            key=_get_required_env("COSMOSDB_KEY"),
            database_name=cosmosdb_section.get("database_name", "bias_corpus"),
            sentences_container=cosmosdb_section.get("sentences_container", "sentences"),
            documents_container=cosmosdb_section.get("documents_container", "document_uploads"),
            sessions_container=cosmosdb_section.get("sessions_container", "annotation_sessions"),
            users_container=cosmosdb_section.get("users_container", "users"),
        )

    # Build Storage config (credentials only required when enabled)
    storage_section = yaml_config.get("storage", {})
    storage_enabled = bool(storage_section.get("enabled", False))

    storage_config = StorageConfig(
        enabled=storage_enabled,
        endpoint=storage_section.get("endpoint", "localhost:9000"),
        access_key=_get_required_env("MINIO_ACCESS_KEY") if storage_enabled else "",
        secret_key=_get_required_env("MINIO_SECRET_KEY") if storage_enabled else "",
        bucket=storage_section.get("bucket", "bias-corpus"),
        secure=bool(storage_section.get("secure", True)),
        public_endpoint=storage_section.get("public_endpoint"),
    )

    # Build Ingestion config
    ingestion_section = yaml_config.get("ingestion", {})

    ingestion_config = IngestionConfig(
        timeout_seconds=float(ingestion_section.get("timeout_seconds", 120)),
        upload_prefix=ingestion_section.get("upload_prefix", "csv-uploads"),
    )

    # Build Export config
    export_section = yaml_config.get("export", {})

    export_config = ExportConfig(
        url_ttl_seconds=int(export_section.get("url_ttl_seconds", 86400)),
        session_export_prefix=export_section.get("session_export_prefix", "session-exports"),
        exclusive_across_sessions=bool(export_section.get("exclusive_across_sessions", False)),
    )

    # Build Logging config
    logging_section = yaml_config.get("logging", {})

    logging_config = LoggingConfig(
        level=logging_section.get("level", "INFO"),
        format=logging_section.get(
            "format", "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ),
    )

    return AppConfig(
        database=database_config,
        cosmosdb=cosmosdb_config,
        storage=storage_config,
        ingestion=ingestion_config,
        export=export_config,
        logging=logging_config,
    )


# Module-level singleton for convenience
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the application configuration singleton.

    Lazy-loads configuration on first access.
    Config file is selected based on APP_ENV environment variable.

    Returns:
        AppConfig: Application configuration.

    Raises:
        ConfigurationError: If required configuration is missing.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_environment() -> str:
    """Get current environment name.

    Returns:
        'dev', 'test', or 'default' based on APP_ENV.
    """
    app_env = os.environ.get("APP_ENV", "").lower()
    return app_env if app_env in ("dev", "test") else "default"


def reset_config() -> None:
    """Reset the config singleton. Useful for testing."""
    global _config
    _config = None


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level and format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format=config.logging.format,
    )
