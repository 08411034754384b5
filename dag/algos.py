"""
Graph traversal helpers shared by the graph builder and the Graph itself.
图遍历辅助函数，供图构建器与 Graph 共用。

Vertices are deduplicated by `key(vertex)` when a key function is given and
by object identity otherwise.
提供 key 函数时按 `key(vertex)` 去重，否则按对象身份（id）去重。
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Hashable, Iterable, TypeVar

V = TypeVar("V")


def breadth_first(
    roots: Iterable[V],
    neighbors: Callable[[V], Iterable[V]],
    fn: Callable[[V], None],
    key: Callable[[V], Hashable] | None = None,
) -> None:
    """
    Visit every vertex reachable from `roots` once, in breadth-first order.
    按广度优先顺序访问从 `roots` 可达的每个顶点，每个顶点只访问一次。
    """
    key_of = key or id
    visited: set[Hashable] = set()
    queue: deque[V] = deque(roots)

    while queue:
        vertex = queue.popleft()
        k = key_of(vertex)
        if k in visited:
            continue
        visited.add(k)

        fn(vertex)
        queue.extend(neighbors(vertex))


def breadth_first_with_depth(
    roots: Iterable[V],
    children: Callable[[V], Iterable[V]],
    parents: Callable[[V], list[V]],
    fn: Callable[[V, int], None],
    key: Callable[[V], Hashable] | None = None,
) -> None:
    """
    Breadth-first traversal that reports each vertex's convergent depth.
    记录「收敛深度」的广度优先遍历。

    A vertex is only finalized once it has been reached once per parent; its
    depth is the maximum of those arrival depths. For example:
    只有当一个顶点被它的每个父节点各到达一次后才会被确定；
    其深度取所有到达深度中的最大值。例如：

         A
        / \\
       B   C
       |   |
       D   |
        \\ /
         E

    A=0, B=C=1, D=2, E=3 (never 2, which is what plain BFS would give).
    A=0，B=C=1，D=2，E=3（普通 BFS 会错误地得到 2）。

    Vertices on a cycle never collect enough arrivals and are not reported.
    """
    key_of = key or id
    finalized: set[Hashable] = set()
    arrivals: dict[Hashable, list[int]] = {}
    queue: deque[tuple[V, int]] = deque((root, 0) for root in roots)

    while queue:
        vertex, depth = queue.popleft()
        k = key_of(vertex)
        if k in finalized:
            continue

        depths = arrivals.setdefault(k, [])
        depths.append(depth)

        if len(depths) >= len(parents(vertex)):
            level = max(depths)
            fn(vertex, level)
            del arrivals[k]
            finalized.add(k)
            for child in children(vertex):
                queue.append((child, level + 1))
