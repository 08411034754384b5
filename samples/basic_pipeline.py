"""
Sample pipeline: clean -> build -> {test, pack} -> deploy -> notify.
示例流水线：clean -> build -> {test, pack} -> deploy -> notify。

    python main.py samples/basic_pipeline.py tasks
    python main.py samples/basic_pipeline.py run
    RELEASE=1 python main.py samples/basic_pipeline.py run --target deploy
"""

import asyncio
import os

from tasks import task

name = "sample-basic"

is_release = os.getenv("RELEASE", "") == "1"


async def clean(ctx):
    ctx.logger.info("start cleaning")
    await asyncio.sleep(0.1)
    ctx.logger.info("done cleaning")


async def build_step(ctx):
    ctx.logger.info("start building")
    await asyncio.sleep(0.2)
    ctx.logger.info("done building")


async def run_tests(ctx):
    ctx.logger.info("start testing")
    await asyncio.sleep(0.3)
    ctx.logger.info("done testing")


async def pack_step(ctx):
    ctx.logger.info("start packing")
    await asyncio.sleep(0.2)
    ctx.logger.info("done packing")


def deploy_step(ctx):
    ctx.logger.info(f"deploying build '{ctx.build.name}'")


clean_task = task("clean").does(clean)
build_task = task("build").depends_on(clean_task).does(build_step)
test_task = task("test").depends_on(build_task).when(lambda ctx: not is_release).does(run_tests)
pack_task = task("pack").depends_on(build_task).does(pack_step).tag("stage", "package")
deploy_task = (
    task("deploy")
    .depends_on(pack_task)
    .when(lambda ctx: is_release)
    .does(deploy_step)
    .break_circuit()
)
notify = task("notify").depends_on(deploy_task, test_task).does(lambda ctx: ctx.logger.info("sent email"))

targets = [notify]
