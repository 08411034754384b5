"""
Local Runner - Runs a resolved Graph on this machine.
本地运行器 —— 在本机运行已解析的 Graph。

Pipeline of a local run:
本地运行流程：
  1. select_graph():     apply run options as graph rewrites
  2. before_execution(): report the services the pipeline expects
  3. execute:            the executor, with log_event() as event sink and a
                         per-task secret check as before_task hook
  4. after_execution():  always runs, even when the execution rejected

  1. select_graph():     将运行选项转化为图重写
  2. before_execution(): 报告流水线所需的外部服务
  3. 执行：              以 log_event() 作为事件汇，并以逐任务密钥检查作为 before_task 钩子
  4. after_execution():  无论执行是否被拒绝都会运行
"""

from __future__ import annotations

import logging
import os
from typing import Iterable

from pydantic import BaseModel, Field, model_validator

from context.task_context import BuildContext, ContextFactory, TaskContext, TaskLogger, create_context_factory
from dag.executor import create_executor, evaluate_conditions
from dag.graph import Graph
from schema import EventSink, ExecutionResult, LogLevel, ResolvedTask, TaskEvent
from tasks.extensions import SECRETS_PROPERTY, SERVICES_PROPERTY, Service

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class MissingSecretError(RuntimeError):
    """A task declares a secret that is not set in the environment."""


# ======================================================================
# Run options
# 运行选项
# ======================================================================

class RunOptions(BaseModel):
    """
    How to reshape the graph before running it.
    运行前如何重塑图。

    `only` runs exactly the listed tasks, serially and in list order, so it
    cannot be combined with `exclude` or `target`.
    """
    only: list[str] = Field(default_factory=list)       # 仅运行这些任务（串行，按列表顺序）
    exclude: list[str] = Field(default_factory=list)    # 排除这些任务
    target: str | None = None                           # 以该任务为唯一目标提取子图
    serial: bool = False                                # 按层级顺序串行运行
    skip_conditions: bool = False                       # 忽略所有条件

    @model_validator(mode="after")
    def _check_conflicts(self) -> RunOptions:
        if self.only and (self.exclude or self.target):
            raise ValueError("'only' cannot be combined with 'exclude' or 'target'")
        return self


async def select_graph(graph: Graph, options: RunOptions) -> Graph:
    """
    Apply `options` to `graph` as a sequence of rewrites.
    按顺序将 `options` 作为一系列重写应用到 `graph`。
    """
    if options.only:
        graph = graph.create_serial_graph_from(options.only)
    else:
        if options.target:
            graph = graph.create_graph_from_target(options.target)
        if options.exclude:
            graph = graph.create_graph_except(options.exclude)

    if options.serial:
        graph = graph.create_serial_graph()

    if options.skip_conditions:
        graph = await graph.create_transformed_graph(lambda t: t.model_copy(update={"conditions": ()}))

    logger.debug("[Runner] Selected graph: %s", graph.summary())
    return graph


# ======================================================================
# Event sink
# 事件汇
# ======================================================================

def log_event(event: TaskEvent, log: logging.Logger = logger) -> None:
    """
    Map an execution event onto a `logging` record.
    将执行事件映射为一条 `logging` 日志记录。
    """
    if event.type == "started":
        log.info("=== STARTED '%s' ===", event.task)
    elif event.type == "log":
        log.log(_LOG_LEVELS[event.level], "[%s] %s", event.task, event.message, exc_info=event.error)
    elif event.type == "finishedSuccessfully":
        log.info("=== FINISHED '%s' ===", event.task)
    elif event.type == "failedCondition":
        log.warning("[%s] Failed condition #%d (%s)", event.task, event.condition_id, event.condition)
    elif event.type == "failed":
        log.error("[%s] Failed: %r", event.task, event.error)


# ======================================================================
# Runner
# 运行器
# ======================================================================

def required_services(graph: Graph) -> dict[str, Service]:
    services: dict[str, Service] = {}
    for name in graph.task_names:
        services.update(graph.get_existing_task(name).properties.get(SERVICES_PROPERTY, {}))
    return services


class LocalRunner:
    """
    Runs a Graph locally, with log output and pre/post execution steps.
    在本地运行 Graph，附带日志输出以及执行前/后步骤。
    """

    def __init__(
        self,
        graph: Graph,
        build: BuildContext | None = None,
        options: RunOptions | None = None,
        ci: str | None = None,
        max_parallel: int | None = None,
        sinks: Iterable[EventSink] = (),
    ):
        self._graph = graph
        self._build = build or BuildContext(targets=graph.declared_targets)
        self._options = options or RunOptions()
        self._ci = ci
        self._max_parallel = max_parallel
        self._sinks = list(sinks)

    async def before_execution(self) -> None:
        for service in required_services(self._graph).values():
            logger.info(
                "[Runner] Pipeline expects service '%s' (%s) on ports %s",
                service.name, service.image, service.ports or "-",
            )

    async def after_execution(self) -> None:
        logger.debug("[Runner] Build '%s' finished", self._build.name)

    async def before_task(self, task: ResolvedTask) -> None:
        missing = [s for s in task.properties.get(SECRETS_PROPERTY, []) if s not in os.environ]
        if missing:
            raise MissingSecretError(f"Task '{task.name}' requires unset secrets: {', '.join(missing)}")

    async def run(self) -> ExecutionResult:
        """
        Run the pipeline. A propagated task failure is re-raised.
        运行流水线；传播的任务失败会被重新抛出。
        """
        graph = await select_graph(self._graph, self._options)
        execution = create_executor(self._max_parallel).execute(graph, create_context_factory(self._build, self._ci))

        execution.subscribe(log_event)
        for sink in self._sinks:
            execution.subscribe(sink)
        execution.before_task(self.before_task)

        logger.info("[Runner] Running build '%s': %s", self._build.name, graph.summary())
        await self.before_execution()
        try:
            return await execution.execute()
        finally:
            await self.after_execution()


# ======================================================================
# Condition checking
# 条件检查
# ======================================================================

async def check_conditions(
    graph: Graph,
    name: str,
    context_factory: ContextFactory | None = None,
) -> tuple[int, str] | None:
    """
    Evaluate the conditions of task `name` without running it.
    在不运行任务的情况下评估任务 `name` 的条件。

    Returns (index, source) of the first failing condition, or None when
    every condition holds. Log calls made by conditions are discarded.
    """
    task = graph.get_existing_task(name)
    if context_factory is None:
        build = BuildContext(targets=graph.declared_targets)
        context: TaskContext = TaskContext(task=task, logger=TaskLogger(lambda _: None, task.name), build=build)
    else:
        context = context_factory(task, lambda _: None)

    failed = await evaluate_conditions(task, context)
    if failed is not None:
        logger.info("[Runner] Task '%s' failed condition #%d (%s)", name, failed[0], failed[1])
    return failed
