"""
状态机测试 — 任务与执行的合法 / 非法状态转移。

运行方式:
    .venv/bin/python -m pytest tests/test_state_machine.py -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dag.state_machine import InvalidTransitionError, TaskStateMachine, advance_execution
from schema import ExecutionStatus, ResolvedTask, TaskStatus, TaskTracker


def _tracker(name: str = "a") -> TaskTracker:
    return TaskTracker(task=ResolvedTask(name=name))


class TestTaskStateMachine:

    def test_happy_path(self):
        sm = TaskStateMachine()
        tracker = _tracker()
        sm.transition(tracker, TaskStatus.RUNNING)
        sm.transition(tracker, TaskStatus.FINISHED_SUCCESSFULLY)
        assert tracker.status == TaskStatus.FINISHED_SUCCESSFULLY
        assert tracker.finished

    @pytest.mark.parametrize("terminal", [
        TaskStatus.FINISHED_SUCCESSFULLY,
        TaskStatus.FAILED_CONDITION,
        TaskStatus.FAILED,
    ])
    def test_running_reaches_every_terminal_state(self, terminal):
        sm = TaskStateMachine()
        tracker = _tracker()
        sm.transition(tracker, TaskStatus.RUNNING)
        sm.transition(tracker, terminal)
        assert tracker.finished

    def test_pending_may_fail_directly(self):
        sm = TaskStateMachine()
        tracker = _tracker()
        sm.transition(tracker, TaskStatus.FAILED)
        assert tracker.status == TaskStatus.FAILED

    def test_pending_cannot_finish_without_running(self):
        sm = TaskStateMachine()
        with pytest.raises(InvalidTransitionError):
            sm.transition(_tracker(), TaskStatus.FINISHED_SUCCESSFULLY)

    def test_terminal_states_are_final(self):
        sm = TaskStateMachine()
        tracker = _tracker()
        sm.transition(tracker, TaskStatus.RUNNING)
        sm.transition(tracker, TaskStatus.FAILED_CONDITION)
        with pytest.raises(InvalidTransitionError):
            sm.transition(tracker, TaskStatus.RUNNING)
        assert tracker.status == TaskStatus.FAILED_CONDITION, "非法转移不应修改状态"

    def test_callback_receives_transition(self):
        callback = MagicMock()
        sm = TaskStateMachine(on_transition=callback)
        sm.transition(_tracker("build"), TaskStatus.RUNNING)
        callback.assert_called_once_with("build", TaskStatus.PENDING, TaskStatus.RUNNING)


class TestExecutionTransitions:

    def test_resolve(self):
        status = advance_execution(ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
        assert advance_execution(status, ExecutionStatus.RESOLVED) == ExecutionStatus.RESOLVED

    def test_cannot_skip_running(self):
        with pytest.raises(InvalidTransitionError):
            advance_execution(ExecutionStatus.PENDING, ExecutionStatus.REJECTED)

    def test_resolved_cannot_reject(self):
        with pytest.raises(InvalidTransitionError):
            advance_execution(ExecutionStatus.RESOLVED, ExecutionStatus.REJECTED)
