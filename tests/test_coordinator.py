"""
Unit Tests for the Execution Coordinator
Admission, single-flight, log records and cleanup on every path
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from smart_cli.core.coordinator import SENTINEL_EXIT_CODE, ExecutionCoordinator
from smart_cli.core.exceptions import BusyError, ValidationError
from smart_cli.core.nervous_system.execution_log import TRUNCATION_MARKER, ExecutionLog
from smart_cli.core.nervous_system.policy_gate import CommandPolicyGate
from smart_cli.core.nervous_system.state_machine import (
    ExecutionSlot,
    ExecutionState,
    ExecutionStateMachine,
)
from smart_cli.core.tools.process_runner import ProcessRunner
from smart_cli.core.types import EventType, ExecutionStatus


async def _run(coordinator, command):
    async with coordinator.submit(command) as session:
        events = [event async for event in session.events()]
    return session, events


class TestSuccessfulRun:

    @pytest.mark.asyncio
    async def test_success_is_logged(self, coordinator):
        session, events = await _run(coordinator, "echo hello")

        assert events[-1].type == EventType.COMPLETED
        assert events[-1].exit_code == 0

        [record] = await coordinator.history()
        assert record == session.record
        assert record.command == "echo hello"
        assert record.status == ExecutionStatus.SUCCESS
        assert record.exit_code == 0
        assert record.output == "hello\n"
        assert record.timed_out is False
        assert record.timestamp.endswith("Z")

    @pytest.mark.asyncio
    async def test_slot_released_after_run(self, coordinator):
        await _run(coordinator, "echo one")

        assert coordinator.is_executing is False
        assert coordinator.state_machine.state == ExecutionState.IDLE
        await _run(coordinator, "echo two")
        assert [r.command for r in await coordinator.history()] == ["echo two", "echo one"]

    @pytest.mark.asyncio
    async def test_executing_flag_while_running(self, coordinator):
        async with coordinator.submit("echo hi; sleep 0.2") as session:
            assert coordinator.is_executing is True
            assert coordinator.health()["isExecuting"] is True
            assert coordinator.state_machine.state == ExecutionState.RUNNING
            async for _ in session.events():
                pass

        health = coordinator.health()
        assert health["status"] == "ok"
        assert health["isExecuting"] is False


class TestAdmission:

    @pytest.mark.asyncio
    async def test_rejected_command_is_not_logged(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.submit("rm -rf /")

        assert "dangerous pattern" in exc_info.value.reason
        assert coordinator.is_executing is False
        assert coordinator.state_machine.state == ExecutionState.IDLE
        assert await coordinator.history() == []

    def test_admit_does_not_take_slot(self, coordinator):
        assert coordinator.admit("ls -la").valid is True
        assert coordinator.admit("cat /etc/passwd").valid is False
        assert coordinator.is_executing is False

    @pytest.mark.asyncio
    async def test_busy_while_running(self, coordinator):
        async with coordinator.submit("sleep 0.3") as session:
            with pytest.raises(BusyError) as exc_info:
                coordinator.submit("echo hi")
            assert exc_info.value.message == "Another command is currently executing. Please wait."
            async for _ in session.events():
                pass

        [record] = await coordinator.history()
        assert record.command == "sleep 0.3"

    @pytest.mark.asyncio
    async def test_busy_wins_over_validation(self, coordinator):
        async with coordinator.submit("sleep 0.2") as session:
            with pytest.raises(BusyError):
                coordinator.submit("reboot")
            async for _ in session.events():
                pass

    @pytest.mark.asyncio
    async def test_concurrent_submissions_run_one(self, coordinator):
        async def attempt(i):
            try:
                await _run(coordinator, f"sleep 0.2; echo {i}")
                return "ran"
            except BusyError:
                return "busy"

        results = await asyncio.gather(*(attempt(i) for i in range(5)))

        assert results.count("ran") == 1
        assert results.count("busy") == 4
        assert len(await coordinator.history()) == 1
        assert coordinator.is_executing is False


class TestExecutionSlot:

    def test_try_acquire_is_exclusive_across_threads(self):
        slot = ExecutionSlot()
        owners = [object() for _ in range(8)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(slot.try_acquire, owners))

        assert results.count(True) == 1
        winner = owners[results.index(True)]
        assert slot.held is True
        assert slot.release(winner) is True
        assert slot.held is False

    def test_release_when_free_is_harmless(self):
        slot = ExecutionSlot()
        assert slot.release(object()) is False
        assert slot.try_acquire(object()) is True

    def test_only_owner_can_release(self):
        slot = ExecutionSlot()
        owner = object()
        assert slot.try_acquire(owner) is True

        assert slot.release(object()) is False
        assert slot.release(None) is False
        assert slot.held is True
        assert slot.release(owner) is True

    @pytest.mark.asyncio
    async def test_stray_release_does_not_free_running_session(self, coordinator):
        async with coordinator.submit("echo hi; sleep 0.2") as session:
            assert coordinator.release(object()) is False
            assert coordinator.is_executing is True
            assert coordinator.state_machine.state == ExecutionState.RUNNING
            with pytest.raises(BusyError):
                coordinator.submit("echo intruder")
            async for _ in session.events():
                pass

        assert coordinator.is_executing is False
        [record] = await coordinator.history()
        assert record.command == "echo hi; sleep 0.2"


class TestFailureRecords:

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, coordinator):
        await _run(coordinator, "echo bad >&2; exit 2")

        [record] = await coordinator.history()
        assert record.status == ExecutionStatus.FAILED
        assert record.exit_code == 2
        assert record.error == "bad\n"

    @pytest.mark.asyncio
    async def test_timeout(self, sandbox_dir, execution_log):
        runner = ProcessRunner(str(sandbox_dir), timeout_seconds=0.5, kill_grace_seconds=1)
        coordinator = ExecutionCoordinator(CommandPolicyGate(), runner, execution_log)

        _, events = await _run(coordinator, "echo partial; sleep 10")

        assert events[-1].type == EventType.FAILED
        [record] = await coordinator.history()
        assert record.status == ExecutionStatus.ERROR
        assert record.exit_code == SENTINEL_EXIT_CODE
        assert record.timed_out is True
        assert record.error.startswith("Command execution timeout (0.5s)")
        assert record.output == "partial\n"
        assert coordinator.is_executing is False

    @pytest.mark.asyncio
    async def test_spawn_error(self, tmp_path, execution_log):
        runner = ProcessRunner(str(tmp_path / "missing"))
        coordinator = ExecutionCoordinator(CommandPolicyGate(), runner, execution_log)

        _, events = await _run(coordinator, "echo hi")

        assert [e.type for e in events] == [EventType.FAILED]
        [record] = await coordinator.history()
        assert record.status == ExecutionStatus.ERROR
        assert record.exit_code == SENTINEL_EXIT_CODE
        assert record.error == events[0].data
        assert record.timed_out is False

    @pytest.mark.asyncio
    async def test_output_is_truncated_for_storage(self, runner, execution_log):
        coordinator = ExecutionCoordinator(
            CommandPolicyGate(), runner, execution_log, max_output_chars=100
        )
        _, events = await _run(coordinator, "printf '%0500d' 0")

        # The live stream is never capped
        streamed = "".join(e.data for e in events if e.type == EventType.STDOUT)
        assert len(streamed) == 500

        [record] = await coordinator.history()
        assert record.output == "0" * 100 + TRUNCATION_MARKER


class TestCleanup:

    @pytest.mark.asyncio
    async def test_unwritable_log_still_releases(self, runner, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        coordinator = ExecutionCoordinator(
            CommandPolicyGate(), runner, ExecutionLog(str(blocker / "logs.json"))
        )

        session, events = await _run(coordinator, "echo hi")

        assert events[-1].exit_code == 0
        assert session.record.status == ExecutionStatus.SUCCESS
        assert coordinator.is_executing is False
        assert coordinator.state_machine.state == ExecutionState.IDLE

    @pytest.mark.asyncio
    async def test_log_raising_still_releases(self, coordinator):
        coordinator.execution_log.append = AsyncMock(side_effect=RuntimeError("disk on fire"))

        _, events = await _run(coordinator, "echo hi")

        assert events[-1].exit_code == 0
        assert coordinator.is_executing is False
        assert coordinator.state_machine.state == ExecutionState.IDLE

    @pytest.mark.asyncio
    async def test_unused_session_releases_without_logging(self, coordinator):
        async with coordinator.submit("echo never"):
            pass

        assert coordinator.is_executing is False
        assert coordinator.state_machine.state == ExecutionState.IDLE
        assert await coordinator.history() == []

    @pytest.mark.asyncio
    async def test_abandoned_stream_is_logged_as_error(self, coordinator):
        async with coordinator.submit("echo go; sleep 10") as session:
            async for event in session.events():
                assert event.data == "go\n"
                break

        assert coordinator.is_executing is False
        [record] = await coordinator.history()
        assert record.status == ExecutionStatus.ERROR
        assert record.exit_code == SENTINEL_EXIT_CODE
        assert record.error.startswith("Execution aborted before completion")
        assert record.output == "go\n"

    @pytest.mark.asyncio
    async def test_finalize_is_idempotent(self, coordinator):
        session, _ = await _run(coordinator, "echo once")
        await session.finalize()

        assert session.finalized is True
        assert len(await coordinator.history()) == 1


class TestStateMachine:

    def test_full_cycle(self):
        sm = ExecutionStateMachine()
        sm.transition(ExecutionState.VALIDATING, "ls")
        assert sm.current_command == "ls"
        sm.transition(ExecutionState.RUNNING)
        sm.transition(ExecutionState.FINALIZING)
        assert sm.current_command == "ls"
        sm.transition(ExecutionState.IDLE)

        status = sm.get_status()
        assert status["state"] == "idle"
        assert status["command"] is None

    def test_illegal_transition(self):
        sm = ExecutionStateMachine()
        with pytest.raises(RuntimeError):
            sm.transition(ExecutionState.RUNNING)

    def test_reset(self):
        sm = ExecutionStateMachine()
        sm.transition(ExecutionState.VALIDATING, "ls")
        sm.transition(ExecutionState.RUNNING)
        sm.reset()
        assert sm.state == ExecutionState.IDLE
        assert sm.current_command is None
