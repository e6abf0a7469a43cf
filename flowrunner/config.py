"""
Configuration Management using Pydantic Settings

Infrastructure and engine-wide defaults, loaded from environment variables
(prefix FLOWRUNNER_) or a local .env file.

Environment Variables (All Optional - Have Defaults):
    - FLOWRUNNER_DATABASE_URL: Execution store connection (defaults to SQLite)
    - FLOWRUNNER_MAX_CONCURRENT_NODES: Worker limit per execution
    - FLOWRUNNER_GLOBAL_MAX_CONCURRENT_NODES: Node invocations across all executions
    - FLOWRUNNER_NODE_TIMEOUT / FLOWRUNNER_EXECUTION_TIMEOUT: Seconds, 0 disables

Workflow-specific overrides live in WorkflowDefinition.settings and are merged
on top of these values by get_execution_config().
"""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWRUNNER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project Info
    PROJECT_NAME: str = "flowrunner"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")

    # Execution store
    DATABASE_URL: str = Field(default="sqlite:///./data/flowrunner.db")
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=40)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: str = Field(default="logs")

    # Concurrency
    MAX_CONCURRENT_NODES: int = Field(default=5, ge=1, description="Worker limit per execution")
    GLOBAL_MAX_CONCURRENT_NODES: int = Field(
        default=16,
        ge=1,
        description="Node invocations allowed at once across all active executions",
    )

    # Timeouts (seconds, 0 = no deadline)
    NODE_TIMEOUT: float = Field(default=300, ge=0)
    EXECUTION_TIMEOUT: float = Field(default=1800, ge=0)

    # Retry defaults for nodes that enable retry_on_fail without a wait
    DEFAULT_WAIT_BETWEEN_TRIES_MS: int = Field(default=1000, ge=0)

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL is set."""
        if not v:
            raise ValueError("DATABASE_URL cannot be empty")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level


settings = Settings()


# Keys a workflow may override in its own settings block
EXECUTION_CONFIG_KEYS = (
    "max_concurrent_nodes",
    "node_timeout",
    "execution_timeout",
)


def get_execution_config(
    base: Optional[Settings] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Merge execution config from workflow settings and global settings.

    Priority: Workflow-specific > Global settings > Defaults

    Args:
        base: Global settings (module-level settings when omitted)
        overrides: WorkflowDefinition.settings

    Returns:
        Merged config dictionary
    """
    base = base or settings

    config: Dict[str, Any] = {
        "max_concurrent_nodes": base.MAX_CONCURRENT_NODES,
        "node_timeout": base.NODE_TIMEOUT,
        "execution_timeout": base.EXECUTION_TIMEOUT,
    }

    for key, value in (overrides or {}).items():
        # Only override if explicitly set
        if key in EXECUTION_CONFIG_KEYS and value is not None:
            config[key] = value

    return config
