"""
Runner module - Local execution of a resolved pipeline.
Runner 模块 —— 在本地执行已解析的流水线。
"""

from runner.local import (
    LocalRunner,
    MissingSecretError,
    RunOptions,
    check_conditions,
    log_event,
    required_services,
    select_graph,
)

__all__ = [
    "LocalRunner",
    "MissingSecretError",
    "RunOptions",
    "check_conditions",
    "log_event",
    "required_services",
    "select_graph",
]
