"""
Smart CLI - Test Configuration and Fixtures
"""
import pytest

from smart_cli.core.coordinator import ExecutionCoordinator
from smart_cli.core.nervous_system.execution_log import ExecutionLog
from smart_cli.core.nervous_system.policy_gate import CommandPolicyGate
from smart_cli.core.tools.process_runner import ProcessRunner


@pytest.fixture
def sandbox_dir(tmp_path):
    """Empty sandbox directory for each test"""
    path = tmp_path / "sandbox"
    path.mkdir()
    return path


@pytest.fixture
def logs_file(tmp_path):
    """History file location (not created yet)"""
    return tmp_path / "data" / "logs.json"


@pytest.fixture
def execution_log(logs_file):
    """Execution log backed by a temp file"""
    return ExecutionLog(str(logs_file))


@pytest.fixture
def runner(sandbox_dir):
    """Process runner with a short timeout so tests stay fast"""
    return ProcessRunner(str(sandbox_dir), timeout_seconds=5, kill_grace_seconds=1)


@pytest.fixture
def coordinator(runner, execution_log):
    """Fully wired coordinator"""
    return ExecutionCoordinator(CommandPolicyGate(), runner, execution_log)
