"""
Configuration module for environment variable validation and type-safe config.

This module validates the environment variables the CRUD service reads and
provides a type-safe configuration object. Components receive the values
they need explicitly rather than reading the environment themselves.
"""
import os
from dataclasses import dataclass
from typing import Optional


VALID_ENVIRONMENTS = {"development", "production"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Config:
    """Type-safe configuration object with validated environment variables."""

    environment: str = "development"
    aws_region: str = "us-east-1"
    dynamodb_endpoint_url: Optional[str] = None
    table_prefix: str = ""
    default_page_size: int = 10
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create Config instance from environment variables.

        Raises:
            ValueError: If environment variables are invalid.
        """
        environment = os.environ.get("APP_ENV", "development").lower()
        if environment not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"APP_ENV must be one of {VALID_ENVIRONMENTS}, got: {environment}"
            )

        raw_page_size = os.environ.get("DEFAULT_PAGE_SIZE", "10")
        try:
            default_page_size = int(raw_page_size)
        except ValueError:
            raise ValueError(
                f"DEFAULT_PAGE_SIZE must be an integer, got: {raw_page_size}"
            )
        if default_page_size <= 0:
            raise ValueError(
                f"DEFAULT_PAGE_SIZE must be positive, got: {default_page_size}"
            )

        log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got: {log_level}"
            )

        return cls(
            environment=environment,
            aws_region=os.environ.get("AWS_REGION", "us-east-1"),
            dynamodb_endpoint_url=os.environ.get("DYNAMODB_ENDPOINT_URL") or None,
            table_prefix=os.environ.get("TABLE_PREFIX", ""),
            default_page_size=default_page_size,
            log_level=log_level,
        )


_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the process configuration instance, reading it on first use.

    Returns:
        Config: The validated configuration object

    Raises:
        ValueError: If environment variables are invalid.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
