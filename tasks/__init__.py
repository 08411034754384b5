"""
Tasks module - declaration API for pipeline authors.
Tasks 模块 —— 面向流水线作者的声明式 API。

Components:
  - task.py:       TaskSpec builder, task() factory, Extension
  - extensions.py: built-in extensions (secret, service, container, uses)
"""

from tasks.task import Extension, ExtensionAlreadyAppliedError, TaskSpec, describe_condition, task
from tasks.extensions import container, secret, service, uses

__all__ = [
    "Extension",
    "ExtensionAlreadyAppliedError",
    "TaskSpec",
    "describe_condition",
    "task",
    "container",
    "secret",
    "service",
    "uses",
]
