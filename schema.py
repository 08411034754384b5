"""
Pydantic data models for the pipeline engine.
Defines the resolved task, the lifecycle event union and execution results.
流水线引擎的 Pydantic 数据模型。
定义了已解析任务、生命周期事件联合类型以及执行结果。

ResolvedTask references its peers by *name*, never by object, so a Graph can
be rewritten without touching the declarations it was built from.
ResolvedTask 通过「名称」而非对象引用其他任务，
因此可以在不修改原始声明的情况下重写 Graph。
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# A task body or condition receives the context built by the executor's
# context factory and may be either a plain function or a coroutine function.
# 任务体和条件接收执行器构建的上下文，可以是普通函数或协程函数。
TaskBody = Callable[[Any], Union[Awaitable[None], None]]
Condition = Callable[[Any], Union[Awaitable[bool], bool]]


# ======================================================================
# Lifecycle states
# 生命周期状态
# ======================================================================

class TaskStatus(str, Enum):
    """
    Per-task lifecycle states, managed by TaskStateMachine.
    单个任务的生命周期状态，由 TaskStateMachine 强制管理合法转移。

    Transition graph:
    转移图：
        PENDING -> RUNNING -> FINISHED_SUCCESSFULLY
                           -> FAILED_CONDITION
                           -> FAILED
        PENDING -> FAILED   (before_task hook raised / 前置钩子抛出异常)
    """
    PENDING = "pending"                              # 等待依赖到达终态
    RUNNING = "running"                              # 正在评估条件或执行任务体
    FINISHED_SUCCESSFULLY = "finished_successfully"  # 成功完成（终态）
    FAILED_CONDITION = "failed_condition"            # 条件不满足（终态，不传播）
    FAILED = "failed"                                # 执行失败（终态）


class ExecutionStatus(str, Enum):
    """
    Global state of one Execution.
    单次执行的全局状态。
    """
    PENDING = "pending"
    RUNNING = "running"
    RESOLVED = "resolved"   # 所有任务到达终态
    REJECTED = "rejected"   # 某个传播异常的任务失败


TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.FINISHED_SUCCESSFULLY,
    TaskStatus.FAILED_CONDITION,
    TaskStatus.FAILED,
})


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# ======================================================================
# Resolved task
# 已解析任务
# ======================================================================

class ResolvedTask(BaseModel):
    """
    Immutable snapshot of a TaskSpec inside a Graph.
    Graph 内部 TaskSpec 的不可变快照。

    Edges are stored as tuples of task names. Rewrites go through
    `model_copy(update=...)` and always produce a new instance.
    边以任务名元组存储。重写操作通过 `model_copy(update=...)` 生成新实例。
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    body: TaskBody | None = None
    conditions: tuple[Condition, ...] = ()
    dependencies: tuple[str, ...] = ()
    dependents: tuple[str, ...] = ()
    tags: dict[str, list[str]] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    propagate_exceptions: bool = True

    def detached(self) -> ResolvedTask:
        """Return a copy of this task with every edge removed."""
        return self.model_copy(update={"dependencies": (), "dependents": ()})

    def owned(self) -> ResolvedTask:
        """
        Return a copy whose tags and properties are not shared with this task.
        返回一个副本，其 tags 与 properties 不与当前任务共享（model_copy 为浅拷贝）。
        """
        return self.model_copy(update={
            "tags": {k: list(v) for k, v in self.tags.items()},
            "properties": copy.deepcopy(self.properties),
        })


# ======================================================================
# Events (closed tagged union)
# 事件（封闭的标签联合类型）
# ======================================================================

class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: str


class TaskStartedEvent(_Event):
    type: Literal["started"] = "started"


class TaskLogEvent(_Event):
    type: Literal["log"] = "log"
    level: LogLevel
    message: str
    error: BaseException | None = None


class TaskFinishedSuccessfullyEvent(_Event):
    type: Literal["finishedSuccessfully"] = "finishedSuccessfully"


class TaskFailedConditionEvent(_Event):
    type: Literal["failedCondition"] = "failedCondition"
    condition_id: int
    condition: str


class TaskFailedEvent(_Event):
    type: Literal["failed"] = "failed"
    error: BaseException | None = None


TaskEvent = Annotated[
    Union[
        TaskStartedEvent,
        TaskLogEvent,
        TaskFinishedSuccessfullyEvent,
        TaskFailedConditionEvent,
        TaskFailedEvent,
    ],
    Field(discriminator="type"),
]

EventSink = Callable[[TaskEvent], None]


# ======================================================================
# Per-run tracking and results
# 单次运行的跟踪状态与执行结果
# ======================================================================

class TaskTracker(BaseModel):
    """
    Mutable per-run bookkeeping for one task. Owned by an Execution.
    单个任务在一次运行中的可变跟踪记录，归 Execution 独占。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    task: ResolvedTask
    status: TaskStatus = TaskStatus.PENDING
    dependencies_finished: int = 0                       # 已到达终态的依赖数
    logs: list[TaskLogEvent] = Field(default_factory=list)
    last_event: TaskEvent | None = None                  # 最近一次非日志事件
    error: BaseException | None = None
    failed_condition: tuple[int, str] | None = None      # (条件序号, 条件源码)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


class TaskExecutionResult(BaseModel):
    """Outcome of a single task in a finished run."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: str
    success: bool
    logs: list[TaskLogEvent] = Field(default_factory=list)
    last_event: TaskEvent


class ExecutionResult(BaseModel):
    """
    Map from task name to outcome, produced when an Execution resolves.
    执行完成时产出的「任务名 -> 结果」映射。
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tasks: dict[str, TaskExecutionResult] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        """True when every recorded task finished successfully."""
        return all(r.success for r in self.tasks.values())

    def failed_tasks(self) -> list[str]:
        return [name for name, r in self.tasks.items() if not r.success]
