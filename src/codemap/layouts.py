"""One-shot layouts used by the dependency view, and initial seeding.

None of these run the simulation.  ``hierarchical_layout`` stacks nodes in
columns by dependency depth, ``circular_layout`` spreads them evenly on a
ring, and ``seed_positions`` gives unplaced nodes a deterministic spiral
start so the force layout never begins with every node on one point.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Iterable, Optional

from .models import MapGraph, MapNode
from .packing import LayoutPosition

# Golden angle for the seeding spiral
_GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))
INITIAL_RADIUS = 10.0


def seed_positions(
    nodes: Iterable[MapNode],
    center: tuple[float, float] = (0.0, 0.0),
    spacing: float = INITIAL_RADIUS,
    only_unplaced: bool = True,
) -> int:
    """Place nodes on a phyllotaxis spiral around ``center``.

    Pinned nodes snap to their pin.  With ``only_unplaced`` a node already
    away from the origin keeps its position.  Returns the number of nodes
    moved onto the spiral.
    """
    cx, cy = center
    moved = 0
    for i, node in enumerate(nodes):
        if node.fx is not None:
            node.x = node.fx
        if node.fy is not None:
            node.y = node.fy
        if node.is_pinned:
            continue
        if only_unplaced and (node.x != 0.0 or node.y != 0.0):
            continue
        radius = spacing * math.sqrt(0.5 + i)
        angle = i * _GOLDEN_ANGLE
        node.x = cx + radius * math.cos(angle)
        node.y = cy + radius * math.sin(angle)
        node.vx = 0.0
        node.vy = 0.0
        moved += 1
    return moved


def _place(node: MapNode, x: float, y: float) -> LayoutPosition:
    # a pinned axis keeps its pin
    node.x = node.fx if node.fx is not None else x
    node.y = node.fy if node.fy is not None else y
    node.vx = node.vy = 0.0
    return LayoutPosition(node.x, node.y)


def dependency_levels(graph: MapGraph) -> dict[str, int]:
    """Longest-path depth of every node from the roots of the edge graph.

    Roots are nodes without incoming edges; nodes only reachable through a
    cycle start at level 0.  Each node is relaxed at most once per node, so
    cycles terminate.
    """
    ids = [n.id for n in graph.nodes]
    outgoing: dict[str, list[str]] = {nid: [] for nid in ids}
    indegree: dict[str, int] = {nid: 0 for nid in ids}
    for edge, source, target in graph.resolved_edges():
        if source.id == target.id:
            continue
        outgoing[source.id].append(target.id)
        indegree[target.id] += 1

    levels = {nid: 0 for nid in ids}
    queue = deque(nid for nid in ids if indegree[nid] == 0)
    remaining = dict(indegree)
    visited: set[str] = set()
    while queue:
        current = queue.popleft()
        visited.add(current)
        for nxt in outgoing[current]:
            levels[nxt] = max(levels[nxt], levels[current] + 1)
            remaining[nxt] -= 1
            if remaining[nxt] == 0:
                queue.append(nxt)

    # Nodes on cycles: one level below their deepest resolved predecessor
    for nid in ids:
        if nid in visited:
            continue
        preds = [levels[s] for s in visited if nid in outgoing[s]]
        levels[nid] = (max(preds) + 1) if preds else 0
    return levels


def hierarchical_layout(
    graph: MapGraph,
    width: float,
    height: float,
    margin: float = 50.0,
) -> dict[str, LayoutPosition]:
    """Columns by dependency level, nodes spread evenly down each column.

    Pinned nodes stay on their pins.
    """
    if graph.is_empty():
        return {}
    levels = dependency_levels(graph)
    max_level = max(levels.values())
    columns: dict[int, list[MapNode]] = {}
    for node in graph.nodes:
        columns.setdefault(levels[node.id], []).append(node)

    positions: dict[str, LayoutPosition] = {}
    column_width = width / (max_level + 1)
    for level, members in columns.items():
        row_height = height / (len(members) + 1)
        for index, node in enumerate(members):
            positions[node.id] = _place(node, column_width * level + margin, row_height * (index + 1))
    return positions


def circular_layout(
    graph: MapGraph,
    width: float,
    height: float,
    inset: float = 100.0,
    center: Optional[tuple[float, float]] = None,
) -> dict[str, LayoutPosition]:
    """Evenly spaced ring inside the viewport; pinned nodes stay put."""
    if graph.is_empty():
        return {}
    cx, cy = center if center else (width / 2, height / 2)
    radius = max(min(width, height) / 2 - inset, 0.0)
    count = len(graph.nodes)
    positions: dict[str, LayoutPosition] = {}
    for i, node in enumerate(graph.nodes):
        angle = 2 * math.pi * i / count
        positions[node.id] = _place(node, cx + radius * math.cos(angle), cy + radius * math.sin(angle))
    return positions
