"""Runtime configuration for metricledger.

settings come from the environment (METRICLEDGER_* variables) or a .env file.
nothing here is a module-level singleton - the cli builds one Settings and
passes it into the store.
"""

import logging
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetadataPolicy(str, Enum):
    """How result_metadata is checked against a version's metadata schema."""

    OFF = "off"
    ADVISORY = "advisory"  # log a warning, write anyway
    STRICT = "strict"  # reject the write


class Settings(BaseSettings):
    """Centralized runtime configuration loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="METRICLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: str | None = Field(
        default=None,
        description="Path to the DuckDB file, or None for an in-memory database",
    )
    metadata_policy: MetadataPolicy = MetadataPolicy.ADVISORY
    latest_limit: int = Field(default=10, gt=0)
    log_level: str = "INFO"


_CONFIGURED = False


def configure_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Configure the package logger once and return it."""
    global _CONFIGURED
    logger = logging.getLogger("metricledger")
    if not _CONFIGURED:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.handlers = [handler]
        _CONFIGURED = True
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
