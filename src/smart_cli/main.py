"""Main entry point for the command execution server."""

import logging
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web

from . import __version__
from .channels import HttpChannel
from .core.config import ensure_directories, load_config
from .core.coordinator import ExecutionCoordinator
from .core.nervous_system.execution_log import ExecutionLog
from .core.nervous_system.policy_gate import CommandPolicyGate
from .core.tools.process_runner import ProcessRunner
from .core.types import ServerConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging once for the process."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_coordinator(config: ServerConfig) -> ExecutionCoordinator:
    """Wire policy gate, process runner and execution log together."""
    runner = ProcessRunner(
        work_dir=config.sandbox_dir,
        timeout_seconds=config.execution_timeout_seconds,
        kill_grace_seconds=config.kill_grace_seconds,
        use_shell=config.use_shell,
    )
    execution_log = ExecutionLog(config.logs_file, max_entries=config.max_history)
    return ExecutionCoordinator(
        CommandPolicyGate(),
        runner,
        execution_log,
        max_output_chars=config.max_output_chars,
    )


def create_app(config: ServerConfig) -> web.Application:
    """Build the full web application for a config."""
    ensure_directories(config)
    return HttpChannel(build_coordinator(config)).create_app()


def main():
    """Main entry point for the server."""

    try:
        # Load configuration
        config = load_config()
        setup_logging(config.log_level, config.log_file)

        logger.info(f"🖥️  Smart CLI Backend v{__version__}")
        app = create_app(config)

        logger.info(f"Sandbox directory: {config.sandbox_dir}")
        logger.info(f"Data directory: {config.data_dir}")
        logger.info(f"Execution timeout: {config.execution_timeout_seconds:g}s")

    except Exception as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
