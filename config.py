"""
Configuration management for the flowdesk client.
Loads and validates environment variables.
"""

from pathlib import Path
from typing import Dict, List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, validator


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    # Backend Configuration
    backend_url: str = Field(
        default="http://localhost:7070",
        description="Base URL the HTTP transport posts operations to"
    )
    transport_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Transport-level timeout; None waits for the backend indefinitely"
    )

    # Local Storage Configuration
    local_store_path: str = Field(
        default="./data/flowdesk_local.db",
        description="SQLite file holding per-workflow execution preferences"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_to_file: bool = Field(default=True, description="Write JSON log files")

    # Messages
    default_error_message: str = Field(
        default="Request failed",
        description="Message used when the backend gives no failure reason"
    )
    welcome_message_template: str = Field(
        default='Welcome to workflow "{name}". Enter some input to run it.',
        description="Synthetic system message shown for an empty session"
    )
    unnamed_workflow_label: str = Field(
        default="Untitled workflow",
        description="Name used in the welcome message when a workflow has none"
    )

    # Execution Defaults
    default_timeout_ms: int = Field(default=60000, description="Execution timeout forwarded to the backend")
    default_debug: bool = Field(default=False, description="Debug flag for new workflows")
    default_validate_start_end: bool = Field(default=True, description="Validate start/end nodes by default")

    # Node Editing Configuration
    node_capabilities: Dict[str, List[str]] = Field(
        default_factory=lambda: {"MemoryNode": ["memory"]},
        description="Capabilities for node types the backend reports by name only"
    )
    system_prompt_keys: List[str] = Field(
        default_factory=lambda: ["systemPrompt"],
        description="Config keys rendered with a multi-line editor"
    )
    session_reference_key: str = Field(
        default="dialogueId",
        description="flowConfig key naming the conversation a memory node reads"
    )
    history_depth_key: str = Field(
        default="historyRounds",
        description="flowConfig key holding how many rounds of history to load"
    )
    default_history_rounds: int = Field(default=5, description="History depth when none is set")

    @validator('local_store_path')
    def validate_store_path(cls, v):
        """Ensure local store directory exists."""
        if v != ":memory:":
            store_path = Path(v)
            store_path.parent.mkdir(parents=True, exist_ok=True)
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Normalize log level name."""
        return v.upper()

    class Config:
        env_prefix = "FLOWDESK_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings: Optional[Settings] = None


def load_settings() -> Settings:
    """
    Load and validate settings from environment.

    Returns:
        Settings: Validated settings object

    Raises:
        ValueError: If settings are invalid
    """
    global settings

    if settings is None:
        try:
            settings = Settings()
            _validate_critical_settings(settings)
        except Exception as e:
            raise ValueError(f"Configuration error: {str(e)}")

    return settings


def _validate_critical_settings(settings: Settings) -> None:
    """
    Validate that all critical settings are usable.

    Args:
        settings: Settings object to validate

    Raises:
        ValueError: If critical settings are missing or malformed
    """
    problems = []

    if not settings.backend_url.startswith(("http://", "https://")):
        problems.append("BACKEND_URL (must start with http:// or https://)")

    if settings.default_timeout_ms <= 0:
        problems.append("DEFAULT_TIMEOUT_MS (must be positive)")

    if not settings.session_reference_key or not settings.history_depth_key:
        problems.append("SESSION_REFERENCE_KEY / HISTORY_DEPTH_KEY")

    if problems:
        raise ValueError(
            f"Invalid environment variables: {', '.join(problems)}. "
            f"Please check your .env file."
        )


def log_settings(settings: Settings, logger) -> None:
    """
    Log loaded configuration.

    Args:
        settings: Settings object to log
        logger: Logger to write to
    """
    logger.info("=" * 60)
    logger.info("Configuration Loaded Successfully")
    logger.info("=" * 60)
    logger.info(f"Backend: {settings.backend_url}")
    logger.info(f"Transport timeout: {settings.transport_timeout_seconds or 'none'}")
    logger.info(f"Local store: {settings.local_store_path}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Default execution timeout: {settings.default_timeout_ms}ms")
    logger.info(f"Node capabilities: {settings.node_capabilities}")
    logger.info("=" * 60)


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings: Global settings object
    """
    if settings is None:
        return load_settings()
    return settings


def override_settings(new_settings: Optional[Settings]) -> None:
    """
    Replace the global settings instance (used by tests and embedders).

    Args:
        new_settings: Settings to install, or None to force a reload
    """
    global settings
    settings = new_settings
