"""
TaskSpec - Mutable declaration of a unit of work.
TaskSpec —— 工作单元的可变声明。

User code builds pipelines by chaining calls on TaskSpec objects:
用户代码通过链式调用 TaskSpec 来声明流水线：

    lint = task("lint").does(run_lint)
    test = task("test").does(run_tests)
    build = task("build").depends_on(lint, test).when(on_main_branch)

Dependency and dependent lists are always kept in sync: `a.depends_on(b)`
records `b` in `a.dependencies` and `a` in `b.dependents`.
依赖列表与被依赖列表始终双向同步。

TaskSpecs stay mutable until `build_graph()` snapshots them into
ResolvedTask objects.
TaskSpec 在 `build_graph()` 将其快照为 ResolvedTask 之前都是可变的。
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ConfigDict

from schema import Condition, TaskBody

logger = logging.getLogger(__name__)


class ExtensionAlreadyAppliedError(ValueError):
    """Raised when an extension key is applied to the same task twice."""


class Extension(BaseModel):
    """
    A reusable enricher applied to a task at declaration time.
    声明阶段应用到任务上的可复用「增强器」。

    `key` identifies the extension instance; a task refuses the same key twice.
    When `key` is empty the extension's `name` is used.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    enrich: Callable[[Any], None]
    key: str = ""

    @property
    def effective_key(self) -> str:
        return self.key or self.name


class TaskSpec:
    """
    A unit of work that may depend on, or trigger, other tasks.
    一个可以依赖其他任务、也可以触发其他任务的工作单元。
    """

    def __init__(self, name: str):
        if not isinstance(name, str) or not name.strip():
            raise ValueError("task name must be a non-empty string")
        self._name = name
        self._body: TaskBody | None = None
        self._conditions: list[Condition] = []
        self._dependencies: list[TaskSpec] = []
        self._dependents: list[TaskSpec] = []
        self._tags: dict[str, list[str]] = {}
        self._properties: dict[str, Any] = {}
        self._propagate_exceptions = True
        self._extensions: list[Extension] = []
        self._extension_keys: set[str] = set()

    def __repr__(self) -> str:
        return f"TaskSpec({self._name!r})"

    # ------------------------------------------------------------------
    # Edges
    # 依赖边
    # ------------------------------------------------------------------

    def depends_on(self, *items: TaskSpec | Extension | Iterable[TaskSpec | Extension]) -> TaskSpec:
        """
        Declare tasks the current task depends on.
        声明当前任务所依赖的任务。

        Extensions may be passed alongside tasks; they are applied to this
        task instead of creating an edge.
        也可以传入 Extension，此时不会建立边，而是将其应用到当前任务。
        """
        for item in _flatten(items):
            if isinstance(item, Extension):
                self.apply(item)
            else:
                item._dependents.append(self)
                self._dependencies.append(item)
        return self

    def triggers(self, *tasks: TaskSpec | Iterable[TaskSpec]) -> TaskSpec:
        """
        Declare tasks that run after the current task (inverse of depends_on).
        声明在当前任务之后运行的任务（depends_on 的反向操作）。
        """
        for other in _flatten(tasks):
            other._dependencies.append(self)
            self._dependents.append(other)
        return self

    # ------------------------------------------------------------------
    # Behaviour
    # 行为
    # ------------------------------------------------------------------

    def when(self, condition: Condition) -> TaskSpec:
        """Add a condition; conditions are evaluated in declaration order."""
        self._conditions.append(condition)
        return self

    def does(self, body: TaskBody) -> TaskSpec:
        self._body = body
        return self

    def break_circuit(self, value: bool = True) -> TaskSpec:
        """
        Contain this task's failures instead of aborting the whole run.
        将本任务的失败限制在任务内部，而不是中止整个运行。
        """
        self._propagate_exceptions = not value
        return self

    # ------------------------------------------------------------------
    # Metadata
    # 元数据
    # ------------------------------------------------------------------

    def tag(self, name: str, value: str) -> TaskSpec:
        self._tags.setdefault(name, []).append(value)
        return self

    def apply(self, extension: Extension) -> TaskSpec:
        key = extension.effective_key
        if key in self._extension_keys:
            raise ExtensionAlreadyAppliedError(
                f"Extension '{key}' is already applied to task '{self._name}'."
            )
        extension.enrich(self)
        self._extension_keys.add(key)
        self._extensions.append(extension)
        logger.debug("[Task] %s enriched by extension %s", self._name, key)
        return self

    # ------------------------------------------------------------------
    # Read accessors
    # 只读访问器
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def body(self) -> TaskBody | None:
        return self._body

    @property
    def conditions(self) -> list[Condition]:
        return self._conditions

    @property
    def dependencies(self) -> list[TaskSpec]:
        return self._dependencies

    @property
    def dependents(self) -> list[TaskSpec]:
        return self._dependents

    @property
    def tags(self) -> dict[str, list[str]]:
        return self._tags

    @property
    def properties(self) -> dict[str, Any]:
        return self._properties

    @property
    def propagate_exceptions(self) -> bool:
        return self._propagate_exceptions

    @property
    def extensions(self) -> list[Extension]:
        return self._extensions

    # Defined last: the name shadows the builtin decorator inside the class body.
    def property(self, name: str, value: Any) -> TaskSpec:
        self._properties[name] = value
        return self


def task(name: str) -> TaskSpec:
    """
    Create a new task declaration.
    创建一个新的任务声明。
    """
    return TaskSpec(name)


def describe_condition(condition: Condition) -> str:
    """
    Return a human-readable source text for a condition.
    返回条件的可读源码文本（用于 failedCondition 事件）。

    Named functions are described by their qualified name; lambdas are cut
    out of their source line.
    """
    if getattr(condition, "__name__", None) != "<lambda>":
        return getattr(condition, "__qualname__", None) or repr(condition)

    try:
        source = inspect.getsource(condition)
    except (OSError, TypeError):
        return repr(condition)
    return _extract_lambda(source) or source.strip()


def _extract_lambda(source: str) -> str | None:
    start = source.find("lambda")
    if start < 0:
        return None

    depth = 0
    end = len(source)
    for index in range(start, len(source)):
        char = source[index]
        if char in "([{":
            depth += 1
        elif char in ")]}":
            if depth == 0:
                end = index
                break
            depth -= 1
        elif (char == "," and depth == 0) or char == "\n":
            end = index
            break
    return source[start:end].strip()


def _flatten(items: Iterable[Any]) -> list[Any]:
    out: list[Any] = []
    for item in items:
        if isinstance(item, (TaskSpec, Extension)):
            out.append(item)
        else:
            out.extend(item)
    return out
