"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.engine import URL

from ..migrations.ledger import DEFAULT_LEDGER_TABLE
from ..utils.logging import ConfigurationError

ENV_PREFIX = "DBTREK_"


class TrekConfig(BaseModel):
    """Configuration model for dbtrek."""

    # Connection: either a full URL or its parts
    database_url: str | None = Field(
        default=None, description="SQLAlchemy database URL"
    )
    db_driver: str = Field(
        default="postgresql", description="SQLAlchemy driver name, e.g. postgresql+psycopg"
    )
    db_host: str | None = Field(default=None, description="Database host")
    db_port: int | None = Field(default=None, description="Database port")
    db_user: str | None = Field(default=None, description="Database user")
    db_password: str | None = Field(default=None, description="Database password")
    db_name: str | None = Field(default=None, description="Database name")
    echo_sql: bool = Field(default=False, description="Echo executed SQL")

    # Migrations
    migrations_dir: str = Field(
        default="migrations", description="Directory holding migration files"
    )
    registry: str | None = Field(
        default=None,
        description="Registry reference 'package.module:attribute' "
        "(takes precedence over migrations_dir)",
    )
    ledger_table: str = Field(
        default=DEFAULT_LEDGER_TABLE, description="Name of the ledger table"
    )

    # Logging
    log_level: str = Field(default="WARNING", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Emit JSON structured log lines"
    )

    def resolved_database_url(self) -> str:
        """Database URL from ``database_url`` or the individual parts.

        Raises:
            ConfigurationError: If neither a URL nor a database name is set.
        """
        if self.database_url:
            return self.database_url

        if not self.db_name:
            raise ConfigurationError(
                "No database configured: set database_url (DBTREK_DATABASE_URL) "
                "or db_name with host and credentials"
            )

        url = URL.create(
            self.db_driver,
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )
        return url.render_as_string(hide_password=False)


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise ConfigurationError(f"Config file not found: {custom_path}")

    search_paths = [
        Path.cwd() / "dbtrek.yaml",
        Path.cwd() / "dbtrek.yml",
        Path.home() / ".config" / "dbtrek" / "config.yaml",
        Path.home() / ".dbtrek.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping at the top level"
        )
    return data


def load_env_vars() -> dict[str, Any]:
    """Load configuration from ``DBTREK_*`` environment variables."""
    config: dict[str, Any] = {}

    for config_key in TrekConfig.model_fields:
        env_var = f"{ENV_PREFIX}{config_key.upper()}"
        if env_var in os.environ:
            config[config_key] = os.environ[env_var]

    # Conventional fallback used by most hosting platforms
    if "database_url" not in config and os.environ.get("DATABASE_URL"):
        config["database_url"] = os.environ["DATABASE_URL"]

    return config


def load_config(
    config_path: str | None = None,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> TrekConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. CLI flag overrides
    2. Environment variables
    3. Configuration file (with profile support)
    4. Default values
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        file_data = load_config_file(config_file)
        config_data.update({k: v for k, v in file_data.items() if k != "profiles"})

        if profile:
            profiles = file_data.get("profiles") or {}
            if profile not in profiles:
                raise ConfigurationError(
                    f"Profile {profile!r} not found in {config_file}"
                )
            config_data.update(profiles[profile] or {})

    config_data.update(load_env_vars())

    if cli_overrides:
        config_data.update(cli_overrides)

    try:
        return TrekConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
