"""
Executor - Runs a Graph on the asyncio event loop, spawning tasks as they become ready.
执行器 —— 在 asyncio 事件循环上运行 Graph，任务一旦就绪即被派发。

There are no rounds: every finished task immediately checks its dependents
and spawns the ones whose dependencies have all reached a terminal state.
All scheduler bookkeeping happens synchronously between awaits, so the
"am I eligible" check and the spawn never race.
这里没有「轮」的概念：
每个任务结束时立即检查其下游，并派发所有依赖都已到达终态的任务。
调度器的簿记全部在两次 await 之间同步完成，因此「是否就绪」的检查与派发不会产生竞态。

Per spawned task:
每个被派发的任务：
  1. await before_task hook
  2. emit `started`
  3. evaluate conditions in order, stopping at the first falsy one
  4. run the body
  5. await after_task hook (finally, paired with before_task)
  6. emit the terminal event, or reject the whole Execution

    execution = create_executor().execute(graph, context_factory)
    execution.subscribe(print)
    result = await execution.execute()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

import config
from dag.graph import Graph, UnknownTaskError
from dag.state_machine import TaskStateMachine, advance_execution
from schema import (
    EventSink,
    ExecutionResult,
    ExecutionStatus,
    ResolvedTask,
    TaskEvent,
    TaskExecutionResult,
    TaskFailedConditionEvent,
    TaskFailedEvent,
    TaskFinishedSuccessfullyEvent,
    TaskLogEvent,
    TaskStartedEvent,
    TaskStatus,
    TaskTracker,
)
from tasks.task import describe_condition

logger = logging.getLogger(__name__)

# Builds the object handed to bodies and conditions. It receives the task and
# the sink through which the task's logger must report.
# 构建传给任务体与条件的上下文对象；接收任务本身以及日志需写入的事件汇。
ContextFactory = Callable[[ResolvedTask, EventSink], Any]
BeforeTaskHook = Callable[[ResolvedTask], Union[Awaitable[None], None]]
AfterTaskHook = Callable[[ResolvedTask, Union[BaseException, None]], Union[Awaitable[None], None]]

# Errors a hook, condition or body may raise that end the task rather than the
# scheduler. CancelledError is a BaseException and must be caught explicitly.
# 钩子、条件或任务体抛出的、应当结束任务而非调度器的异常；CancelledError 继承自 BaseException，需显式捕获。
_TASK_ERRORS = (Exception, asyncio.CancelledError)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def evaluate_conditions(task: ResolvedTask, context: Any) -> tuple[int, str] | None:
    """
    Evaluate `task`'s conditions in order; return (index, source) of the first falsy one.
    按声明顺序评估条件，返回第一个不满足条件的 (序号, 源码)；全部满足时返回 None。
    """
    for index, condition in enumerate(task.conditions):
        if not await _maybe_await(condition(context)):
            return index, describe_condition(condition)
    return None


class Execution:
    """
    One run of a Graph. Not reusable: `execute()` may be awaited only once.
    Graph 的一次运行。不可复用：`execute()` 只能被 await 一次。
    """

    def __init__(self, graph: Graph, context_factory: ContextFactory, max_parallel: int | None = None):
        self._graph = graph
        self._context_factory = context_factory
        self._max_parallel = config.MAX_PARALLEL_TASKS if max_parallel is None else max_parallel

        self._status = ExecutionStatus.PENDING
        self._handlers: list[EventSink] = []
        self._before_task: BeforeTaskHook | None = None
        self._after_task: AfterTaskHook | None = None
        self._sm = TaskStateMachine(on_transition=self._on_task_transition)

        self._trackers: dict[str, TaskTracker] = {
            name: TaskTracker(task=graph.get_existing_task(name)) for name in graph.task_names
        }
        self._spawned: set[str] = set()
        self._running: set[asyncio.Task] = set()  # strong refs so tasks aren't GC'd mid-flight
        self._active = 0
        self._done: asyncio.Future[ExecutionResult] | None = None
        self._semaphore: asyncio.Semaphore | None = None

    @property
    def status(self) -> ExecutionStatus:
        return self._status

    @property
    def graph(self) -> Graph:
        return self._graph

    def tracker(self, name: str) -> TaskTracker:
        tracker = self._trackers.get(name)
        if tracker is None:
            raise UnknownTaskError(f"Task '{name}' is not part of this execution.")
        return tracker

    # ------------------------------------------------------------------
    # Subscription and hooks
    # 订阅与钩子
    # ------------------------------------------------------------------

    def subscribe(self, handler: EventSink) -> None:
        """
        Receive every event synchronously, in production order.
        同步接收所有事件，顺序与产生顺序一致。
        """
        self._handlers.append(handler)

    def before_task(self, hook: BeforeTaskHook) -> None:
        self._before_task = hook

    def after_task(self, hook: AfterTaskHook) -> None:
        self._after_task = hook

    # ------------------------------------------------------------------
    # Run
    # 运行
    # ------------------------------------------------------------------

    async def execute(self) -> ExecutionResult:
        """
        Run the graph and return the outcome of every task that finished.
        运行整张图，返回所有已完成任务的结果。

        Raises the error of the first failing task whose failures propagate.
        Tasks already running at that point are not cancelled.
        若某个会传播异常的任务失败，则抛出该异常；此时已在运行的任务不会被取消。
        """
        if self._status != ExecutionStatus.PENDING:
            raise RuntimeError("Execution.execute() may only be awaited once.")
        self._status = advance_execution(self._status, ExecutionStatus.RUNNING)

        self._done = asyncio.get_running_loop().create_future()
        if self._max_parallel > 0:
            self._semaphore = asyncio.Semaphore(self._max_parallel)

        logger.info("[Executor] Starting execution: %s", self._graph.summary())

        for name in self._graph.start_tasks:
            self._spawn(self._trackers[name])
        self._check_finished()

        return await self._done

    # ------------------------------------------------------------------
    # Scheduling
    # 调度
    # ------------------------------------------------------------------

    def _spawn(self, tracker: TaskTracker) -> None:
        name = tracker.task.name
        if name in self._spawned:
            return
        self._spawned.add(name)
        self._active += 1

        runner = asyncio.create_task(self._run_task(tracker), name=f"pipeline-task:{name}")
        self._running.add(runner)
        runner.add_done_callback(self._on_runner_done)

    def _on_runner_done(self, runner: asyncio.Task) -> None:
        self._running.discard(runner)
        if runner.cancelled():
            # Cancelled from outside before the task could record an outcome.
            # 在任务记录结果之前被外部取消。
            logger.error("[Executor] %s was cancelled", runner.get_name())
            self._active -= 1
            self._reject(asyncio.CancelledError(f"{runner.get_name()} was cancelled"))
            return
        exc = runner.exception()
        if exc is not None:
            # Only scheduler or subscriber bugs reach here.
            logger.error("[Executor] %s crashed: %r", runner.get_name(), exc)
            self._reject(exc)

    def _slot(self) -> contextlib.AbstractAsyncContextManager:
        if self._semaphore is None:
            return contextlib.nullcontext()
        return self._semaphore

    async def _run_task(self, tracker: TaskTracker) -> None:
        task = tracker.task

        async with self._slot():
            if self._finished:
                # The run was rejected while this task waited for a slot.
                # 等待并发槽位期间执行已被拒绝，任务保持 pending，不再运行。
                logger.debug("[Executor] Task '%s' dropped after rejection", task.name)
                self._active -= 1
                return

            try:
                context = self._context_factory(task, self._fire_event)
                if self._before_task is not None:
                    await _maybe_await(self._before_task(task))
            except _TASK_ERRORS as exc:
                self._fail_task(tracker, exc)
                return

            self._sm.transition(tracker, TaskStatus.RUNNING)
            self._fire_event(TaskStartedEvent(task=task.name))

            failed_condition: tuple[int, str] | None = None
            try:
                error: BaseException | None = None
                try:
                    failed_condition = await evaluate_conditions(task, context)
                    if failed_condition is None and task.body is not None:
                        await _maybe_await(task.body(context))
                except _TASK_ERRORS as exc:
                    error = exc
                    raise
                finally:
                    if self._after_task is not None:
                        await _maybe_await(self._after_task(task, error))
            except _TASK_ERRORS as exc:
                self._fail_task(tracker, exc)
                return

        if failed_condition is not None:
            condition_id, condition = failed_condition
            tracker.failed_condition = failed_condition
            self._finish_task(
                tracker,
                TaskStatus.FAILED_CONDITION,
                TaskFailedConditionEvent(task=task.name, condition_id=condition_id, condition=condition),
            )
        else:
            self._finish_task(
                tracker,
                TaskStatus.FINISHED_SUCCESSFULLY,
                TaskFinishedSuccessfullyEvent(task=task.name),
            )

    def _fail_task(self, tracker: TaskTracker, error: BaseException) -> None:
        tracker.error = error
        task = tracker.task

        if task.propagate_exceptions:
            self._sm.transition(tracker, TaskStatus.FAILED)
            logger.error("[Executor] Task '%s' failed, aborting execution: %r", task.name, error)
            self._active -= 1
            self._reject(error)
            return

        logger.warning("[Executor] Task '%s' failed (contained): %r", task.name, error)
        self._finish_task(tracker, TaskStatus.FAILED, TaskFailedEvent(task=task.name, error=error))

    def _finish_task(self, tracker: TaskTracker, status: TaskStatus, event: TaskEvent) -> None:
        self._sm.transition(tracker, status)
        self._fire_event(event)

        # Rejection blocks new spawns; tasks already in flight are left alone.
        # 一旦拒绝，不再派发新任务；已在运行的任务不受影响。
        if not self._finished:
            for name in tracker.task.dependents:
                dependent = self._trackers[name]
                dependent.dependencies_finished += 1
                if dependent.dependencies_finished == len(dependent.task.dependencies):
                    self._spawn(dependent)

        self._active -= 1
        self._check_finished()

    @property
    def _finished(self) -> bool:
        return self._done is not None and self._done.done()

    def _check_finished(self) -> None:
        if self._active > 0 or self._finished:
            return

        self._status = advance_execution(self._status, ExecutionStatus.RESOLVED)
        result = self._build_result()
        logger.info(
            "[Executor] Execution resolved: %d tasks, %d failed",
            len(result.tasks), len(result.failed_tasks()),
        )
        self._done.set_result(result)

    def _reject(self, error: BaseException) -> None:
        if self._finished:
            logger.debug("[Executor] Ignoring failure after execution finished: %r", error)
            return
        self._status = advance_execution(self._status, ExecutionStatus.REJECTED)
        self._done.set_exception(error)

    def _build_result(self) -> ExecutionResult:
        tasks: dict[str, TaskExecutionResult] = {}
        for name, tracker in self._trackers.items():
            if not tracker.finished or tracker.last_event is None:
                continue
            tasks[name] = TaskExecutionResult(
                task=name,
                success=tracker.status == TaskStatus.FINISHED_SUCCESSFULLY,
                logs=list(tracker.logs),
                last_event=tracker.last_event,
            )
        return ExecutionResult(tasks=tasks)

    # ------------------------------------------------------------------
    # Events
    # 事件
    # ------------------------------------------------------------------

    def _fire_event(self, event: TaskEvent) -> None:
        tracker = self._trackers.get(event.task)
        if tracker is None:
            raise UnknownTaskError(f"Event for unknown task '{event.task}'.")

        if isinstance(event, TaskLogEvent):
            tracker.logs.append(event)
        else:
            tracker.last_event = event

        for handler in self._handlers:
            handler(event)

    def _on_task_transition(self, name: str, old: TaskStatus, new: TaskStatus) -> None:
        if new == TaskStatus.RUNNING:
            logger.debug("[Executor] Task '%s' started", name)


class Executor:
    """
    Factory for Executions.
    Execution 的工厂。

    `max_parallel` caps how many tasks run at once (0 = unbounded); when
    omitted, config.MAX_PARALLEL_TASKS applies.
    """

    def __init__(self, max_parallel: int | None = None):
        self._max_parallel = max_parallel

    def execute(self, graph: Graph, context_factory: ContextFactory) -> Execution:
        return Execution(graph, context_factory, max_parallel=self._max_parallel)


def create_executor(max_parallel: int | None = None) -> Executor:
    return Executor(max_parallel=max_parallel)
