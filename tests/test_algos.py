"""
遍历算法测试 — breadth_first / breadth_first_with_depth。

运行方式:
    .venv/bin/python -m pytest tests/test_algos.py -v
"""

from __future__ import annotations

from dag.algos import breadth_first, breadth_first_with_depth
from tasks import task


class TestBreadthFirst:
    """验证广度优先遍历的顺序与去重."""

    def test_visits_in_breadth_first_order(self):
        a = task("a")
        a1 = task("a1")
        b = task("b").depends_on(a)
        task("c").depends_on(a, a1)
        task("d").depends_on(b)
        task("e").depends_on(b)
        log: list[str] = []

        breadth_first([a], lambda t: t.dependents + t.dependencies, lambda t: log.append(t.name))

        assert log == ["a", "b", "c", "d", "e", "a1"]

    def test_dedup_by_identity(self):
        # Two distinct objects with the same name are both visited without a key.
        x1, x2 = task("x"), task("x")
        log: list[str] = []
        breadth_first([x1, x2, x1], lambda t: [], lambda t: log.append(t.name))
        assert log == ["x", "x"]

    def test_dedup_by_key(self):
        log: list[str] = []
        breadth_first([task("x"), task("x")], lambda t: [], lambda t: log.append(t.name), key=lambda t: t.name)
        assert log == ["x"]


class TestBreadthFirstWithDepth:
    """验证「收敛深度」：顶点在所有父节点到达后才确定，深度取最大值."""

    def test_records_convergent_depth(self):
        a = task("a")
        b = task("b").depends_on(a)
        c = task("c").depends_on(a)
        d = task("d").depends_on(b)
        task("e").depends_on(d, c)
        log: list[tuple[str, int]] = []

        breadth_first_with_depth(
            [a],
            lambda t: t.dependents,
            lambda t: t.dependencies,
            lambda t, depth: log.append((t.name, depth)),
        )

        assert log == [("a", 0), ("b", 1), ("c", 1), ("d", 2), ("e", 3)], "e 的深度应为 3 而不是 2"

    def test_multiple_roots(self):
        a, a1 = task("a"), task("a1")
        task("c").depends_on(a, a1)
        log: list[tuple[str, int]] = []

        breadth_first_with_depth(
            [a, a1],
            lambda t: t.dependents,
            lambda t: t.dependencies,
            lambda t, depth: log.append((t.name, depth)),
        )

        assert log == [("a", 0), ("a1", 0), ("c", 1)]
