"""
本地运行器测试 — 覆盖：
  1. RunOptions 冲突校验
  2. select_graph 的重写流水线
  3. LocalRunner：事件日志、钩子、密钥检查、执行前/后步骤
  4. check_conditions

运行方式:
    .venv/bin/python -m pytest tests/test_runner.py -v
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from dag import build_graph
from runner import LocalRunner, MissingSecretError, RunOptions, check_conditions, log_event, required_services, select_graph
from schema import LogLevel, TaskFailedConditionEvent, TaskLogEvent, TaskStartedEvent
from tasks import secret, service, task


def _pipeline():
    """
    lint ─┐
          ├─> build ─> deploy (条件：永不满足)
    test ─┘
    """
    lint = task("lint")
    test = task("test")
    build = task("build").depends_on(lint, test)
    deploy = task("deploy").depends_on(build).when(lambda ctx: False)
    return build_graph(deploy)


# ======================================================================
# Test 1: 运行选项
# ======================================================================


class TestRunOptions:

    def test_defaults(self):
        options = RunOptions()
        assert options.only == [] and options.exclude == []
        assert options.target is None
        assert not options.serial and not options.skip_conditions

    @pytest.mark.parametrize("kwargs", [
        {"only": ["a"], "exclude": ["b"]},
        {"only": ["a"], "target": "b"},
    ])
    def test_only_conflicts(self, kwargs):
        with pytest.raises(ValidationError):
            RunOptions(**kwargs)

    def test_target_and_exclude_combine(self):
        options = RunOptions(target="build", exclude=["lint"])
        assert options.target == "build"


# ======================================================================
# Test 2: select_graph
# ======================================================================


class TestSelectGraph:

    @pytest.mark.asyncio
    async def test_no_options_keeps_graph(self):
        graph = _pipeline()
        assert await select_graph(graph, RunOptions()) is graph

    @pytest.mark.asyncio
    async def test_only_builds_serial_subset(self):
        selected = await select_graph(_pipeline(), RunOptions(only=["test", "lint"]))
        assert selected.task_names == ["test", "lint"]
        assert selected.get_existing_task("lint").dependencies == ("test",)

    @pytest.mark.asyncio
    async def test_target_then_exclude(self):
        selected = await select_graph(_pipeline(), RunOptions(target="build", exclude=["lint"]))
        assert set(selected.task_names) == {"test", "build"}

    @pytest.mark.asyncio
    async def test_serial(self):
        selected = await select_graph(_pipeline(), RunOptions(serial=True))
        assert selected.task_names == ["lint", "test", "build", "deploy"]

    @pytest.mark.asyncio
    async def test_skip_conditions(self):
        graph = _pipeline()
        selected = await select_graph(graph, RunOptions(skip_conditions=True))
        assert selected.get_existing_task("deploy").conditions == ()
        assert len(graph.get_existing_task("deploy").conditions) == 1


# ======================================================================
# Test 3: LocalRunner
# ======================================================================


class TestLogEvent:

    def test_started(self):
        log = MagicMock()
        log_event(TaskStartedEvent(task="lint"), log)
        log.info.assert_called_once_with("=== STARTED '%s' ===", "lint")

    def test_log_level_mapping(self):
        log = MagicMock()
        log_event(TaskLogEvent(task="lint", level=LogLevel.WARN, message="slow"), log)
        log.log.assert_called_once_with(logging.WARNING, "[%s] %s", "lint", "slow", exc_info=None)

    def test_failed_condition(self):
        log = MagicMock()
        log_event(TaskFailedConditionEvent(task="deploy", condition_id=0, condition="on_tag"), log)
        log.warning.assert_called_once()


class TestLocalRunner:

    @pytest.mark.asyncio
    async def test_run_resolves(self):
        result = await LocalRunner(_pipeline()).run()

        assert result.tasks["build"].success
        assert result.tasks["deploy"].last_event.type == "failedCondition"

    @pytest.mark.asyncio
    async def test_run_with_options_and_sink(self):
        sink = MagicMock()
        runner = LocalRunner(_pipeline(), options=RunOptions(skip_conditions=True), sinks=[sink])

        result = await runner.run()

        assert result.success
        assert sink.call_count > 0

    @pytest.mark.asyncio
    async def test_after_execution_runs_on_failure(self):
        graph = build_graph(task("a").does(MagicMock(side_effect=RuntimeError("boom"))))
        runner = LocalRunner(graph)
        runner.after_execution = AsyncMock()

        with pytest.raises(RuntimeError, match="boom"):
            await runner.run()

        runner.after_execution.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_secret_fails_task(self, monkeypatch):
        monkeypatch.delenv("PIPELINE_TEST_TOKEN", raising=False)
        body = MagicMock()
        graph = build_graph(task("publish").depends_on(secret("PIPELINE_TEST_TOKEN")).does(body))

        with pytest.raises(MissingSecretError):
            await LocalRunner(graph).run()
        body.assert_not_called()

    @pytest.mark.asyncio
    async def test_present_secret_passes(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_TEST_TOKEN", "xyz")
        graph = build_graph(task("publish").depends_on(secret("PIPELINE_TEST_TOKEN")))

        result = await LocalRunner(graph).run()
        assert result.success

    def test_required_services(self):
        graph = build_graph(task("it").depends_on(service("redis", "redis:7", ports=[6379])))
        services = required_services(graph)
        assert list(services) == ["redis"]
        assert services["redis"].ports == [6379]


# ======================================================================
# Test 4: check_conditions
# ======================================================================


class TestCheckConditions:

    @pytest.mark.asyncio
    async def test_reports_first_failure(self):
        failed = await check_conditions(_pipeline(), "deploy")
        assert failed is not None
        index, text = failed
        assert index == 0
        assert text.replace(" ", "") == "lambdactx:False"

    @pytest.mark.asyncio
    async def test_none_when_all_hold(self):
        assert await check_conditions(_pipeline(), "build") is None

    @pytest.mark.asyncio
    async def test_uses_given_factory(self):
        seen = []

        def cond(ctx):
            seen.append(ctx)
            return True

        graph = build_graph(task("a").when(cond))
        factory = MagicMock(return_value="ctx")
        assert await check_conditions(graph, "a", factory) is None
        assert seen == ["ctx"]
