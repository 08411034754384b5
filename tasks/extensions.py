"""
Built-in extensions - declarative metadata consumed by runners and CI renderers.
内置扩展 —— 供运行器与 CI 渲染器读取的声明式元数据。

Each factory returns an Extension whose `enrich` writes into the task's
property map. The engine itself never reads these properties.
每个工厂函数返回一个 Extension，其 `enrich` 只写入任务的 properties，
引擎本身从不读取这些属性。

    task("integration").depends_on(service("redis", "redis:7", ports=[6379]))
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from tasks.task import Extension, TaskSpec

SECRETS_PROPERTY = "secrets"
SERVICES_PROPERTY = "services"
CONTAINER_PROPERTY = "container-image"
USES_PROPERTY = "uses"


class Service(BaseModel):
    """A sidecar service a task needs while it runs."""
    name: str
    image: str
    ports: list[int] = Field(default_factory=list)


def secret(name: str) -> Extension:
    """Declare that the task reads the environment secret `name`."""

    def enrich(t: TaskSpec) -> None:
        t.properties.setdefault(SECRETS_PROPERTY, []).append(name)

    return Extension(name="secret", key=f"secret_{name}", enrich=enrich)


def service(name: str, image: str, ports: list[int] | None = None) -> Extension:
    """Declare a service container the task must be able to reach."""

    def enrich(t: TaskSpec) -> None:
        services: dict[str, Service] = t.properties.setdefault(SERVICES_PROPERTY, {})
        if name in services:
            raise ValueError(f"Task '{t.name}' already has a service '{name}' in the '{SERVICES_PROPERTY}' property.")
        services[name] = Service(name=name, image=image, ports=list(ports or []))

    return Extension(name="service", key=f"service_{name}", enrich=enrich)


def container(image: str) -> Extension:
    """Declare the container image the task should run inside."""

    def enrich(t: TaskSpec) -> None:
        if t.properties.get(CONTAINER_PROPERTY):
            raise ValueError(f"Task '{t.name}' already has a '{CONTAINER_PROPERTY}' property.")
        t.properties[CONTAINER_PROPERTY] = image

    return Extension(name="container", key=f"container_{image}", enrich=enrich)


def uses(action: str, **with_args: Any) -> Extension:
    """
    Declare a CI "uses" step (e.g. a prebuilt action) to run before the task.
    声明一个在任务之前执行的 CI "uses" 步骤（例如预构建的 action）。
    """

    def enrich(t: TaskSpec) -> None:
        t.properties.setdefault(USES_PROPERTY, []).append({"uses": action, "with": dict(with_args)})

    return Extension(name="uses", key=f"uses_{action}", enrich=enrich)
