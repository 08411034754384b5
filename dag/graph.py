"""
Graph - Immutable DAG of resolved tasks, plus the builder that creates it.
Graph —— 已解析任务组成的不可变 DAG，以及创建它的构建器。

The Graph holds:
  - tasks:   name -> ResolvedTask arena (edges are names, never objects)
  - targets: the declared target names the graph was resolved for
  - start_tasks / target_tasks: derived root and leaf sets

Graph 包含：
  - tasks:   名称 -> ResolvedTask 的“竞技场”（边只存名称，从不存对象引用）
  - targets: 构建时声明的目标任务名
  - start_tasks / target_tasks: 派生出的根节点集合与叶节点集合

Key operations:
  - build_graph():                 flatten TaskSpecs into a Graph
  - get_tasks_by_level():          convergent BFS levels
  - create_*_graph*():             rewrites, each returning a new Graph

核心操作：
  - build_graph():                 将 TaskSpec 展平为 Graph
  - get_tasks_by_level():          收敛式 BFS 分层
  - create_*_graph*():             图重写，每次都返回新的 Graph
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Union

from dag.algos import breadth_first, breadth_first_with_depth
from schema import ResolvedTask
from tasks.task import TaskSpec

logger = logging.getLogger(__name__)

TaskTransformer = Callable[[ResolvedTask], Union[ResolvedTask, Awaitable[ResolvedTask]]]


# ======================================================================
# Structural errors
# 结构性错误
# ======================================================================

class GraphError(Exception):
    """Base class for structural graph errors."""


class DuplicateTaskError(GraphError):
    """Two distinct task declarations share a name."""


class UnknownTaskError(GraphError, KeyError):
    """A task name is referenced but not defined in the graph."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CycleDetectedError(GraphError):
    """The dependency edges form a cycle."""

    def __init__(self, tasks: list[str]):
        self.tasks = tasks
        super().__init__(f"Cycle detected between tasks: {', '.join(sorted(tasks))}")


# ======================================================================
# Graph
# ======================================================================

class Graph:
    """
    Immutable directed acyclic graph whose vertices are resolved tasks.
    顶点为已解析任务的不可变有向无环图。

    Construction validates that every referenced name exists and that the
    dependency edges are acyclic, then derives the start and target sets.
    构造时校验所有被引用的名称都存在且依赖边无环，然后派生起始与目标集合。
    """

    def __init__(self, tasks: Mapping[str, ResolvedTask], targets: Iterable[str]):
        # Each graph owns its tasks' containers; rewrites never alias another graph.
        # 每张图独占其任务的 tags/properties 容器，重写不会与其他图共享。
        self._tasks: Mapping[str, ResolvedTask] = MappingProxyType({n: t.owned() for n, t in tasks.items()})
        self._targets: tuple[str, ...] = tuple(targets)

        self._validate()

        self._names: tuple[str, ...] = tuple(self._tasks)
        self._start_tasks: tuple[str, ...] = self._find_start_tasks(self._targets)
        self._end_tasks: tuple[str, ...] = self._find_end_tasks(self._start_tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __repr__(self) -> str:
        return f"Graph({self.summary()})"

    # ------------------------------------------------------------------
    # Read surface
    # 只读接口
    # ------------------------------------------------------------------

    @property
    def task_names(self) -> list[str]:
        return list(self._names)

    @property
    def start_tasks(self) -> list[str]:
        """Tasks with no dependencies; the first to run."""
        return list(self._start_tasks)

    @property
    def target_tasks(self) -> list[str]:
        """Tasks with no dependents; the last to run."""
        return list(self._end_tasks)

    @property
    def declared_targets(self) -> list[str]:
        return list(self._targets)

    def get_task(self, name: str) -> ResolvedTask | None:
        return self._tasks.get(name)

    def get_existing_task(self, name: str) -> ResolvedTask:
        task = self._tasks.get(name)
        if task is None:
            raise UnknownTaskError(f"Task '{name}' is not defined.")
        return task

    def get_tasks_by_level(self) -> dict[int, list[ResolvedTask]]:
        """
        Return a map from level to the tasks in that level.
        返回「层级 -> 该层任务列表」的映射。

        Level 0 holds the tasks without dependencies. A task's level is one
        more than the deepest of its dependencies, so tasks of a level only
        depend on tasks of lower levels.
        第 0 层是没有依赖的任务；一个任务的层级等于其最深依赖的层级加一。
        """
        levels: dict[int, list[ResolvedTask]] = {}

        breadth_first_with_depth(
            self._objects(self._start_tasks),
            lambda t: self._objects(t.dependents),
            lambda t: self._objects(t.dependencies),
            lambda t, level: levels.setdefault(level, []).append(t),
            key=lambda t: t.name,
        )

        return levels

    def summary(self) -> str:
        return (
            f"{len(self._tasks)} tasks, "
            f"start={list(self._start_tasks)}, targets={list(self._end_tasks)}"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the graph structure for external consumers (CI renderers).
        序列化图结构，供外部消费者（如 CI 配置生成器）使用。

        Bodies and conditions are callables and are reported by count only.
        """
        return {
            "tasks": {
                name: {
                    "name": t.name,
                    "dependencies": list(t.dependencies),
                    "dependents": list(t.dependents),
                    "tags": {k: list(v) for k, v in t.tags.items()},
                    "properties": dict(t.properties),
                    "propagate_exceptions": t.propagate_exceptions,
                    "has_body": t.body is not None,
                    "conditions": len(t.conditions),
                }
                for name, t in self._tasks.items()
            },
            "start_tasks": list(self._start_tasks),
            "target_tasks": list(self._end_tasks),
        }

    # ------------------------------------------------------------------
    # Rewrites
    # 图重写（均返回新 Graph，原图保持不变）
    # ------------------------------------------------------------------

    def create_serial_graph_from(self, names: list[str]) -> Graph:
        """
        Build a graph of only `names`, chained in list order.
        仅包含 `names` 的新图，按列表顺序串成一条链。
        """
        tasks: dict[str, ResolvedTask] = {}
        previous: str | None = None

        for name in self._checked_subset(names):
            detached = self.get_existing_task(name).detached()
            if previous is not None:
                detached = detached.model_copy(update={"dependencies": (previous,)})
                tasks[previous] = tasks[previous].model_copy(update={"dependents": (name,)})
            tasks[name] = detached
            previous = name

        return Graph(tasks, [previous] if previous is not None else [])

    def create_parallel_graph_from(self, names: list[str]) -> Graph:
        """
        Build a graph of only `names` with every edge stripped.
        仅包含 `names` 且去掉所有边的新图：每个任务既是根也是目标。
        """
        subset = self._checked_subset(names)
        tasks = {name: self.get_existing_task(name).detached() for name in subset}
        return Graph(tasks, subset)

    def create_serial_graph(self) -> Graph:
        return self.create_serial_graph_from(self._names_in_level_order())

    def create_parallel_graph(self) -> Graph:
        return self.create_parallel_graph_from(self._names_in_level_order())

    def create_graph_from_target(self, name: str) -> Graph:
        """
        Extract the part of the graph connected to `name`, with `name` as target.
        提取与 `name` 相连的子图，并以 `name` 作为唯一声明目标。

        The walk follows both edge kinds but never leaves `name` through its
        own dependents. Edges pointing outside the extracted set are dropped.
        """
        target = self.get_existing_task(name)
        collected: dict[str, ResolvedTask] = {}

        def neighbors(t: ResolvedTask) -> list[ResolvedTask]:
            names = t.dependencies if t.name == name else t.dependencies + t.dependents
            return self._objects(names)

        breadth_first(
            [target],
            neighbors,
            lambda t: collected.__setitem__(t.name, t),
            key=lambda t: t.name,
        )

        tasks = {
            n: t.model_copy(update={
                "dependencies": tuple(d for d in t.dependencies if d in collected),
                "dependents": tuple(d for d in t.dependents if d in collected),
            })
            for n, t in collected.items()
        }
        return Graph(tasks, [name])

    def create_graph_except(self, names: Iterable[str]) -> Graph:
        """
        Build a graph without `names`; references to them are stripped.
        构建不含 `names` 的新图；其余任务中对它们的引用被移除（不跨越缺口重连）。
        """
        removed = set(names)
        tasks: dict[str, ResolvedTask] = {}
        targets: list[str] = []

        for name in self._names:
            if name in removed:
                continue
            task = self._tasks[name]
            trimmed = task.model_copy(update={
                "dependencies": tuple(d for d in task.dependencies if d not in removed),
                "dependents": tuple(d for d in task.dependents if d not in removed),
            })
            tasks[name] = trimmed
            if not trimmed.dependents:
                targets.append(name)

        return Graph(tasks, targets)

    async def create_transformed_graph(self, transformer: TaskTransformer) -> Graph:
        """
        Apply `transformer` to every task; the result keeps the declared targets.
        对每个任务应用 `transformer`，新图保留原声明目标。

        `transformer` may be a plain function or a coroutine function.
        """
        tasks: dict[str, ResolvedTask] = {}
        for name in self._names:
            transformed = transformer(self._tasks[name])
            if inspect.isawaitable(transformed):
                transformed = await transformed
            tasks[transformed.name] = transformed

        return Graph(tasks, self._targets)

    # ------------------------------------------------------------------
    # Internals
    # 内部方法
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        for task in self._tasks.values():
            for ref in task.dependencies + task.dependents:
                if ref not in self._tasks:
                    raise UnknownTaskError(f"Task '{task.name}' references undefined task '{ref}'.")
        for name in self._targets:
            if name not in self._tasks:
                raise UnknownTaskError(f"Target task '{name}' is not defined.")
        self._check_acyclic()

    def _check_acyclic(self) -> None:
        # Kahn's algorithm over dependency edges; leftovers sit on a cycle.
        remaining: dict[str, int] = {name: len(t.dependencies) for name, t in self._tasks.items()}
        queue = deque(name for name, count in remaining.items() if count == 0)
        visited = 0

        while queue:
            name = queue.popleft()
            visited += 1
            for dependent in self._tasks[name].dependents:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    queue.append(dependent)

        if visited != len(self._tasks):
            stuck = [name for name, count in remaining.items() if count > 0]
            logger.error("[Graph] Cycle detected among %s", stuck)
            raise CycleDetectedError(stuck)

    def _find_start_tasks(self, targets: Iterable[str]) -> tuple[str, ...]:
        start: list[str] = []

        def collect(t: ResolvedTask) -> None:
            if not t.dependencies:
                start.append(t.name)

        breadth_first(
            self._objects(targets),
            lambda t: self._objects(t.dependencies),
            collect,
            key=lambda t: t.name,
        )
        return tuple(start)

    def _find_end_tasks(self, start_tasks: Iterable[str]) -> tuple[str, ...]:
        end: list[str] = []

        def collect(t: ResolvedTask) -> None:
            if not t.dependents:
                end.append(t.name)

        breadth_first(
            self._objects(start_tasks),
            lambda t: self._objects(t.dependents),
            collect,
            key=lambda t: t.name,
        )
        return tuple(end)

    def _objects(self, names: Iterable[str]) -> list[ResolvedTask]:
        return [self._tasks[n] for n in names]

    def _checked_subset(self, names: list[str]) -> list[str]:
        seen: set[str] = set()
        for name in names:
            self.get_existing_task(name)
            if name in seen:
                raise DuplicateTaskError(f"Task '{name}' is listed more than once.")
            seen.add(name)
        return list(names)

    def _names_in_level_order(self) -> list[str]:
        levels = self.get_tasks_by_level()
        return [t.name for level in sorted(levels) for t in levels[level]]


# ======================================================================
# Builder
# 构建器
# ======================================================================

def build_graph(targets: TaskSpec | Iterable[TaskSpec]) -> Graph:
    """
    Resolve task declarations into an immutable Graph.
    将任务声明解析为不可变的 Graph。

    Walks breadth-first from `targets` over both dependencies and dependents,
    so targets may sit in the middle of the declared graph. Each declaration
    is visited once (by identity) and snapshotted with name-only edges.
    从 `targets` 出发，沿依赖与被依赖两个方向做广度优先遍历，
    因此目标可以位于声明图的中间。每个声明（按对象身份）只访问一次，
    并被快照为仅含名称边的 ResolvedTask。

    Raises:
        DuplicateTaskError: two distinct TaskSpecs share a name.
        CycleDetectedError: the dependency edges form a cycle.
    """
    roots = [targets] if isinstance(targets, TaskSpec) else list(targets)
    tasks: dict[str, ResolvedTask] = {}

    def resolve(spec: TaskSpec) -> None:
        if spec.name in tasks:
            raise DuplicateTaskError(f"Task '{spec.name}' is defined more than once.")
        tasks[spec.name] = ResolvedTask(
            name=spec.name,
            body=spec.body,
            conditions=tuple(spec.conditions),
            dependencies=tuple(d.name for d in spec.dependencies),
            dependents=tuple(d.name for d in spec.dependents),
            tags={k: list(v) for k, v in spec.tags.items()},
            properties=dict(spec.properties),
            propagate_exceptions=spec.propagate_exceptions,
        )

    breadth_first(roots, lambda t: t.dependencies + t.dependents, resolve)

    graph = Graph(tasks, [t.name for t in roots])
    logger.info("[Graph] Built graph: %s", graph.summary())
    return graph
