"""
Task Context - What a task body and its conditions receive when they run.
任务上下文 —— 任务体与条件在运行时接收到的对象。

The executor never builds contexts itself; it calls a context factory with
the task and the event sink. `create_context_factory()` returns the standard
factory, which wires a TaskLogger to that sink so every log call becomes a
`log` event on the owning Execution.
执行器自身不构建上下文，而是以「任务 + 事件汇」调用上下文工厂。
`create_context_factory()` 返回标准工厂：它将 TaskLogger 接到事件汇上，
使每次日志调用都成为所属 Execution 上的一个 `log` 事件。
"""

from __future__ import annotations

from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

import config
from schema import EventSink, LogLevel, ResolvedTask, TaskLogEvent


class BuildContext(BaseModel):
    """The build being run: its name and the declared target task names."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(default_factory=lambda: config.PIPELINE_NAME)
    targets: list[str] = Field(default_factory=list)


class TaskLogger:
    """
    Logger handed to task bodies. Each call emits a `log` event.
    交给任务体使用的日志器，每次调用都会产生一个 `log` 事件。

    `error()` also accepts an exception: its message becomes the log message
    and the exception is attached to the event.
    """

    def __init__(self, sink: EventSink, task: str):
        self._sink = sink
        self._task = task

    def debug(self, message: str) -> None:
        self._emit(LogLevel.DEBUG, message)

    def info(self, message: str) -> None:
        self._emit(LogLevel.INFO, message)

    def warn(self, message: str) -> None:
        self._emit(LogLevel.WARN, message)

    warning = warn

    def error(self, message: str | BaseException) -> None:
        if isinstance(message, BaseException):
            self._emit(LogLevel.ERROR, str(message) or type(message).__name__, error=message)
        else:
            self._emit(LogLevel.ERROR, message)

    def _emit(self, level: LogLevel, message: str, error: BaseException | None = None) -> None:
        self._sink(TaskLogEvent(task=self._task, level=level, message=message, error=error))


class TaskContext:
    """
    Execution context of one task.
    单个任务的执行上下文。

    Attributes:
        task:   the resolved task being run
        logger: TaskLogger bound to this task
        build:  the BuildContext shared by every task of the run
        ci:     name of the CI system the build runs under, or None locally
    """

    def __init__(self, task: ResolvedTask, logger: TaskLogger, build: BuildContext, ci: str | None = None):
        self.task = task
        self.logger = logger
        self.build = build
        self.ci = ci

    def __repr__(self) -> str:
        return f"TaskContext(task={self.task.name!r}, build={self.build.name!r}, ci={self.ci!r})"


ContextFactory = Callable[[ResolvedTask, EventSink], TaskContext]


def create_context_factory(build: BuildContext, ci: str | None = None) -> ContextFactory:
    """
    Return a factory building a TaskContext per task for `Executor.execute()`.
    返回供 `Executor.execute()` 使用的工厂：为每个任务构建 TaskContext。
    """

    def factory(task: ResolvedTask, sink: EventSink) -> TaskContext:
        return TaskContext(task=task, logger=TaskLogger(sink, task.name), build=build, ci=ci)

    return factory
