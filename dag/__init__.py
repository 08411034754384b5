"""
DAG module - Core engine for task graph resolution and execution.
DAG 模块 —— 任务图解析与执行的核心引擎。

Components:
  - algos.py:         breadth-first traversal helpers
  - graph.py:         immutable Graph, graph rewrites and build_graph()
  - state_machine.py: task / execution lifecycle state machine
  - executor.py:      asyncio executor (spawn-on-ready model)

模块组成：
  - algos.py:         广度优先遍历辅助函数
  - graph.py:         不可变 Graph、图重写以及 build_graph()
  - state_machine.py: 任务与执行的生命周期状态机（强制合法状态转移）
  - executor.py:      基于 asyncio 的执行器（就绪即派发）
"""

from dag.graph import (                       # 图与结构性错误
    CycleDetectedError,
    DuplicateTaskError,
    Graph,
    GraphError,
    UnknownTaskError,
    build_graph,
)
from dag.state_machine import InvalidTransitionError, TaskStateMachine  # 任务状态机
from dag.executor import Execution, Executor, create_executor          # 执行器

__all__ = [
    "CycleDetectedError",
    "DuplicateTaskError",
    "Execution",
    "Executor",
    "Graph",
    "GraphError",
    "InvalidTransitionError",
    "TaskStateMachine",
    "UnknownTaskError",
    "build_graph",
    "create_executor",
]
