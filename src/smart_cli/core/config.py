"""Configuration loader for the command execution server."""

import os
import yaml
from pathlib import Path
from dotenv import load_dotenv
from .types import ServerConfig


def _as_bool(value) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: str = ".env", config_file: str = "config/server.yaml") -> ServerConfig:
    """Load configuration from environment and yaml files.

    Args:
        env_file: Path to .env file
        config_file: Path to server.yaml config file

    Returns:
        ServerConfig instance with all settings

    Raises:
        ValueError: If a setting is out of range or not a number
    """
    # Load environment variables
    load_dotenv(env_file)

    # Load YAML config if exists
    yaml_config = {}
    if Path(config_file).exists():
        with open(config_file, 'r') as f:
            yaml_config = yaml.safe_load(f) or {}

    # Build config from environment (takes precedence) and YAML
    server_config = yaml_config.get("server", {})
    execution_config = yaml_config.get("execution", {})
    history_config = yaml_config.get("history", {})

    try:
        config = ServerConfig(
            # Server
            host=os.getenv("HOST", server_config.get("host", "0.0.0.0")),
            port=int(os.getenv("PORT", server_config.get("port", 3000))),

            # Execution
            sandbox_dir=os.getenv("SANDBOX_DIR", execution_config.get("sandbox_dir", "./sandbox")),
            execution_timeout_seconds=float(os.getenv("EXECUTION_TIMEOUT", execution_config.get("timeout_seconds", 30))),
            kill_grace_seconds=float(os.getenv("KILL_GRACE_SECONDS", execution_config.get("kill_grace_seconds", 2))),
            use_shell=_as_bool(os.getenv("USE_SHELL", execution_config.get("use_shell", True))),

            # History
            data_dir=os.getenv("DATA_DIR", history_config.get("data_dir", "./data")),
            max_history=int(os.getenv("MAX_HISTORY", history_config.get("max_entries", 100))),
            max_output_chars=int(os.getenv("MAX_OUTPUT_CHARS", history_config.get("max_output_chars", 10000))),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    # Validate ranges
    if config.execution_timeout_seconds <= 0:
        raise ValueError("EXECUTION_TIMEOUT must be greater than 0")
    if config.kill_grace_seconds < 0:
        raise ValueError("KILL_GRACE_SECONDS must not be negative")
    if config.max_history <= 0:
        raise ValueError("MAX_HISTORY must be greater than 0")
    if config.max_output_chars <= 0:
        raise ValueError("MAX_OUTPUT_CHARS must be greater than 0")
    if not 1 <= config.port <= 65535:
        raise ValueError(f"PORT must be between 1 and 65535, got {config.port}")

    return config


def ensure_directories(config: ServerConfig):
    """Create the sandbox and data directories if missing."""
    Path(config.sandbox_dir).mkdir(parents=True, exist_ok=True)
    Path(config.data_dir).mkdir(parents=True, exist_ok=True)
