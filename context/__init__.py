"""
Context module - Per-task execution context handed to bodies and conditions.
Context 模块 —— 传给任务体与条件的单任务执行上下文。
"""

from context.task_context import BuildContext, TaskContext, TaskLogger, create_context_factory

__all__ = ["BuildContext", "TaskContext", "TaskLogger", "create_context_factory"]
