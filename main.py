"""
Pipeline runner - Command-line entry point.
流水线运行器 —— 命令行入口。

Loads a pipeline file, resolves its targets into a Graph and then runs it,
lists its tasks or checks a task's conditions, with a rich console UI.
加载流水线文件，将其中的目标解析为 Graph，然后运行、列出任务或检查某任务的条件，
并提供 Rich 控制台 UI。

A pipeline file is a plain Python module that defines `targets` (a task or a
list of tasks) and optionally `name`:
流水线文件是一个普通 Python 模块，需定义 `targets`（单个任务或任务列表），可选定义 `name`：

    from tasks import task

    lint = task("lint").does(lambda ctx: ctx.logger.info("linting"))
    build = task("build").depends_on(lint)
    targets = [build]

Usage:
    python main.py pipeline.py                       # run everything
    python main.py pipeline.py --only lint           # run a single task
    python main.py pipeline.py run --serial          # run options after an explicit `run`
    python main.py pipeline.py tasks                 # list tasks by level
    python main.py pipeline.py check-conditions --task deploy --fail
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import runpy
import sys
from typing import Any, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

import config
from context import BuildContext, create_context_factory
from dag import Graph, GraphError, build_graph
from runner import LocalRunner, RunOptions, check_conditions
from schema import ExecutionResult
from tasks import TaskSpec

console = Console()
logger = logging.getLogger(__name__)

# Last event type -> Rich style mapping
# 最终事件类型 -> Rich 样式映射（用于结果表格中的颜色标注）
_EVENT_STYLES = {
    "finishedSuccessfully": "green",     # 成功：绿色
    "failedCondition": "yellow",         # 条件不满足：黄色
    "failed": "red",                     # 失败：红色
}


# ======================================================================
# Pipeline loading
# 流水线加载
# ======================================================================

def load_pipeline(path: str) -> tuple[str, Graph]:
    """
    Execute a pipeline file and resolve its `targets` into a Graph.
    执行流水线文件，并将其中的 `targets` 解析为 Graph。
    """
    namespace: dict[str, Any] = runpy.run_path(path)
    targets = namespace.get("targets")
    if targets is None:
        raise ValueError(f"Pipeline file '{path}' must define 'targets'.")
    if isinstance(targets, TaskSpec):
        targets = [targets]

    name = namespace.get("name") or config.PIPELINE_NAME
    return name, build_graph(targets)


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _build_level_tree(name: str, graph: Graph) -> Tree:
    """
    Build a Rich Tree showing the graph level by level.
    构建 Rich Tree，逐层展示图结构；每个任务旁标注其依赖与标签。
    """
    tree = Tree(f"[bold]{name}[/bold] [dim]({len(graph)} tasks)[/dim]")
    for level, tasks in sorted(graph.get_tasks_by_level().items()):
        branch = tree.add(f"[cyan]Level {level}[/cyan]")
        for t in tasks:
            label = f"[bold]{t.name}[/bold]"
            if t.dependencies:
                label += f" [dim]<- {', '.join(t.dependencies)}[/dim]"
            if t.tags:
                tags = ", ".join(f"{k}={'|'.join(v)}" for k, v in t.tags.items())
                label += f" [magenta]{{{tags}}}[/magenta]"
            if t.conditions:
                label += f" [yellow]({len(t.conditions)} conditions)[/yellow]"
            if not t.propagate_exceptions:
                label += " [dim]circuit-broken[/dim]"
            branch.add(label)
    return tree


def _build_result_table(result: ExecutionResult) -> Table:
    table = Table(title="Execution Result", border_style="cyan", show_lines=False)
    table.add_column("Task", style="cyan")
    table.add_column("Outcome")
    table.add_column("Logs", justify="right", style="dim")
    for name, r in result.tasks.items():
        style = _EVENT_STYLES.get(r.last_event.type, "white")
        table.add_row(name, f"[{style}]{r.last_event.type}[/{style}]", str(len(r.logs)))
    return table


# ======================================================================
# Commands
# 子命令
# ======================================================================

async def cmd_run(name: str, graph: Graph, args: argparse.Namespace) -> int:
    options = RunOptions(
        only=args.only or [],
        exclude=args.exclude or [],
        target=args.target,
        serial=args.serial,
        skip_conditions=args.skip_conditions,
    )
    build = BuildContext(name=name, targets=graph.declared_targets)
    runner = LocalRunner(graph, build=build, options=options, ci=args.ci, max_parallel=args.max_parallel)

    try:
        result = await runner.run()
    except (Exception, asyncio.CancelledError) as exc:
        console.print(f"\n[red]Build '{name}' failed: {exc!r}[/red]")
        logger.debug("Execution rejected", exc_info=exc)
        return 1

    console.print(_build_result_table(result))
    return 0


def cmd_tasks(name: str, graph: Graph) -> int:
    console.print(_build_level_tree(name, graph))
    console.print(f"  [dim]{graph.summary()}[/dim]")
    return 0


async def cmd_check_conditions(name: str, graph: Graph, args: argparse.Namespace) -> int:
    build = BuildContext(name=name, targets=graph.declared_targets)
    failed = await check_conditions(graph, args.task, create_context_factory(build, ci=args.ci))
    if failed is None:
        console.print(f"[green]All conditions of '{args.task}' hold.[/green]")
        return 0

    index, condition = failed
    console.print(f"[yellow]Task '{args.task}' failed condition #{index} ({condition})[/yellow]")
    return 1 if args.fail else 0


# ======================================================================
# Main
# 主函数
# ======================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipeline",
        description="Resolve and run a declarative task pipeline.",
    )
    parser.add_argument("pipeline", help="Path to the pipeline file defining 'targets'")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--ci",
        default="ci" if config.PIPELINE_CI else None,
        help="Name of the CI system the build runs under",
    )

    # Run options are accepted without the `run` subcommand too, since it is the default.
    # 运行选项在省略 `run` 子命令时同样可用（run 为默认子命令）。
    _add_run_arguments(parser)

    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run the pipeline (default)")
    _add_run_arguments(run)

    subparsers.add_parser("tasks", help="List the pipeline's tasks by level")

    check = subparsers.add_parser("check-conditions", help="Check the conditions of a task")
    check.add_argument("--task", required=True, help="The name of the task")
    check.add_argument("--fail", action="store_true", help="Exit with an error code when a condition fails")

    return parser


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--only", action="append", help="Run only this task (repeatable, runs serially)")
    parser.add_argument("--except", dest="exclude", action="append", help="Skip this task (repeatable)")
    parser.add_argument("--target", default=None, help="Run the graph rooted at this target")
    parser.add_argument("--serial", action="store_true", help="Run tasks one at a time, level by level")
    parser.add_argument("--skip-conditions", action="store_true", help="Ignore task conditions")
    parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum number of tasks running at once (0 = unbounded)",
    )


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。
    verbose=True 时启用 DEBUG 级别，否则使用 config.LOG_LEVEL。
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


async def dispatch(args: argparse.Namespace) -> int:
    name, graph = load_pipeline(args.pipeline)

    if args.command == "tasks":
        return cmd_tasks(name, graph)
    if args.command == "check-conditions":
        return await cmd_check_conditions(name, graph, args)
    return await cmd_run(name, graph, args)


def main(argv: Sequence[str] | None = None) -> int:
    """
    程序入口：解析命令行参数，加载流水线并分派到子命令。
    - 无子命令：等同于 run，运行选项可直接跟在流水线路径之后
    - -v / --verbose：启用调试日志
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        return asyncio.run(dispatch(args))
    except (GraphError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
