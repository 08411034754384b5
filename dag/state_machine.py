"""
Task State Machine - Validates and enforces task and execution lifecycles.
任务状态机 —— 校验并强制执行任务与执行过程的生命周期转移。

The transition tables are the single source of truth for which state changes
are legal. An invalid transition raises InvalidTransitionError; it signals a
scheduler bug, never a user error.
转移表是合法状态变化的唯一权威来源。
非法转移会抛出 InvalidTransitionError，这代表调度器缺陷，而非用户错误。

Task transition graph:
任务转移图：
    PENDING ──> RUNNING ──> FINISHED_SUCCESSFULLY
                        ──> FAILED_CONDITION
                        ──> FAILED
    PENDING ──────────────> FAILED   (before_task hook raised)

Execution transition graph:
执行转移图：
    PENDING ──> RUNNING ──> RESOLVED | REJECTED
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import ExecutionStatus, TaskStatus, TaskTracker

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """


VALID_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: {
        TaskStatus.FINISHED_SUCCESSFULLY,
        TaskStatus.FAILED_CONDITION,
        TaskStatus.FAILED,
    },
    # Terminal states
    # 终态——不允许任何进一步转移
    TaskStatus.FINISHED_SUCCESSFULLY: set(),
    TaskStatus.FAILED_CONDITION: set(),
    TaskStatus.FAILED: set(),
}

VALID_EXECUTION_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {ExecutionStatus.RESOLVED, ExecutionStatus.REJECTED},
    ExecutionStatus.RESOLVED: set(),
    ExecutionStatus.REJECTED: set(),
}


class TaskStateMachine:
    """
    Validates and applies task state transitions on per-run trackers.
    校验并应用单次运行中任务跟踪器的状态转移。

    Provides a single `transition()` method that:
      1. Checks the VALID_TASK_TRANSITIONS table
      2. Applies the change to the tracker
      3. Fires an optional callback

    提供唯一的 `transition()` 方法：
      1. 查询 VALID_TASK_TRANSITIONS 表校验合法性
      2. 将状态变更应用到跟踪器
      3. 触发可选回调
    """

    def __init__(self, on_transition: Callable[[str, TaskStatus, TaskStatus], None] | None = None):
        self._on_transition = on_transition

    @staticmethod
    def can_transition(tracker: TaskTracker, new_status: TaskStatus) -> bool:
        return new_status in VALID_TASK_TRANSITIONS.get(tracker.status, set())

    def transition(self, tracker: TaskTracker, new_status: TaskStatus) -> None:
        if not self.can_transition(tracker, new_status):
            raise InvalidTransitionError(
                f"Task '{tracker.task.name}': cannot transition from {tracker.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TASK_TRANSITIONS.get(tracker.status, set()))}"
            )

        old_status = tracker.status
        tracker.status = new_status

        logger.debug("[SM] %s: %s -> %s", tracker.task.name, old_status.value, new_status.value)

        if self._on_transition:
            self._on_transition(tracker.task.name, old_status, new_status)


def advance_execution(current: ExecutionStatus, new_status: ExecutionStatus) -> ExecutionStatus:
    """Validate a global execution transition and return the new status."""
    if new_status not in VALID_EXECUTION_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Execution: cannot transition from {current.value} to {new_status.value}.")
    logger.debug("[SM] execution: %s -> %s", current.value, new_status.value)
    return new_status
