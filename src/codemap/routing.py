"""Elbow connector routing between node boxes.

A connector leaves the source box from the edge facing the target, runs
horizontally to the midpoint between the two facing edges, drops (or
rises) to the target's height and runs into the target:

    (x1, y1) -> (mid, y1) -> (mid, y2) -> (x2, y2)

File and external boxes other than the two endpoints are obstacles.  When
the vertical leg crosses one, the colliding obstacles are merged into a
single band and the connector detours above or below it, whichever is
closer to the source's height:

    (x1, y1) -> (mid, y1) -> (mid, ry) -> (x2, ry) -> (x2, y2)

This is a greedy one-band heuristic; it keeps the map readable, it does not
search for shortest or fully collision-free paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .config import RoutingConfig
from .models import OBSTACLE_KINDS, MapGraph, MapNode

Point = Tuple[float, float]


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_node(cls, node: MapNode, margin: float = 0.0) -> "Rect":
        return cls(
            node.x - node.width / 2 - margin,
            node.y - node.height / 2 - margin,
            node.width + 2 * margin,
            node.height + 2 * margin,
        )

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def top(self) -> float:
        return self.y

    @property
    def bottom(self) -> float:
        return self.y + self.h


def segment_intersects_rect(a: Point, b: Point, r: Rect) -> bool:
    """Whether an axis-aligned segment touches ``r``, borders included.

    Diagonal segments never count; connectors only run horizontally or
    vertically.
    """
    (ax, ay), (bx, by) = a, b
    if ax == bx:
        return r.left <= ax <= r.right and min(ay, by) <= r.bottom and max(ay, by) >= r.top
    if ay == by:
        return r.top <= ay <= r.bottom and min(ax, bx) <= r.right and max(ax, bx) >= r.left
    return False


@dataclass
class Connector:
    """A routed orthogonal connector."""
    source_id: str
    target_id: str
    points: List[Point] = field(default_factory=list)
    rerouted: bool = False
    kind: Optional[str] = None

    @property
    def segments(self) -> List[Tuple[Point, Point]]:
        return [(self.points[i], self.points[i + 1]) for i in range(len(self.points) - 1)]

    @property
    def length(self) -> float:
        return sum(abs(b[0] - a[0]) + abs(b[1] - a[1]) for a, b in self.segments)

    def path_d(self) -> str:
        """SVG path with straight corners."""
        if not self.points:
            return ""
        head, *rest = self.points
        return " ".join([f"M {head[0]} {head[1]}"] + [f"L {x} {y}" for x, y in rest])

    def rounded_path_d(self, radius: float = 8.0) -> str:
        return rounded_path_d(self.points, radius)


def obstacles_for(source: MapNode, target: MapNode, all_nodes: Iterable[MapNode], margin: float) -> List[Rect]:
    """Rectangles of every file/external node other than the endpoints."""
    return [
        Rect.from_node(n, margin)
        for n in all_nodes
        if n.kind in OBSTACLE_KINDS and n.id != source.id and n.id != target.id
    ]


def route_connector(
    source: MapNode,
    target: MapNode,
    all_nodes: Iterable[MapNode],
    config: Optional[RoutingConfig] = None,
) -> Connector:
    """Route an elbow connector from ``source`` to ``target`` around obstacles."""
    cfg = config or RoutingConfig()
    src_w = source.width or cfg.default_source_width
    tgt_w = target.width or cfg.default_target_width

    if target.x < source.x:
        x1 = source.x - src_w / 2
        x2 = target.x + tgt_w / 2
    else:
        x1 = source.x + src_w / 2
        x2 = target.x - tgt_w / 2
    y1 = source.y
    y2 = target.y
    mid = (x1 + x2) / 2

    colliding = [
        r for r in obstacles_for(source, target, all_nodes, cfg.margin)
        if segment_intersects_rect((mid, y1), (mid, y2), r)
    ]

    connector = Connector(source.id, target.id)
    if not colliding:
        connector.points = [(x1, y1), (mid, y1), (mid, y2), (x2, y2)]
        return connector

    above = min(r.top for r in colliding) - cfg.clearance
    below = max(r.bottom for r in colliding) + cfg.clearance
    route_y = above if abs(above - y1) <= abs(below - y1) else below
    connector.points = [(x1, y1), (mid, y1), (mid, route_y), (x2, route_y), (x2, y2)]
    connector.rerouted = True
    return connector


def route_all(
    graph: MapGraph,
    kinds: Optional[Iterable[str]] = None,
    visible_ids: Optional[Iterable[str]] = None,
    config: Optional[RoutingConfig] = None,
) -> List[Connector]:
    """Route every resolved edge of ``kinds`` whose endpoints are visible."""
    wanted = set(kinds) if kinds is not None else None
    visible = set(visible_ids) if visible_ids is not None else None
    connectors = []
    for edge, source, target in graph.resolved_edges():
        if wanted is not None and edge.kind_name not in wanted:
            continue
        if visible is not None and (source.id not in visible or target.id not in visible):
            continue
        connector = route_connector(source, target, graph.nodes, config)
        connector.kind = edge.kind_name
        connectors.append(connector)
    return connectors


def rounded_path_d(pts: List[Point], radius: float = 8.0) -> str:
    """SVG path string for an orthogonal polyline with rounded corners."""
    if not pts:
        return ""
    if len(pts) == 1:
        x, y = pts[0]
        return f"M {x} {y}"

    def clamp(v: float, lo: float, hi: float) -> float:
        return max(lo, min(hi, v))

    def direction(a: float, b: float) -> int:
        return 0 if a == b else (1 if b > a else -1)

    d: List[str] = [f"M {pts[0][0]} {pts[0][1]}"]
    for i in range(1, len(pts) - 1):
        xp, yp = pts[i - 1]
        x1, y1 = pts[i]
        x2, y2 = pts[i + 1]
        in_dir = (direction(xp, x1), direction(yp, y1))
        out_dir = (direction(x1, x2), direction(y1, y2))

        if in_dir == out_dir:
            d.append(f"L {x1} {y1}")
            continue

        # Half of each leg at most, so consecutive corners never cross
        r_in = min(radius, (abs(x1 - xp) + abs(y1 - yp)) / 2)
        r_out = min(radius, (abs(x2 - x1) + abs(y2 - y1)) / 2)
        cut_in = (x1 - in_dir[0] * r_in, y1 - in_dir[1] * r_in)
        cut_out = (x1 + out_dir[0] * r_out, y1 + out_dir[1] * r_out)
        cut_in = (clamp(cut_in[0], min(xp, x1), max(xp, x1)), clamp(cut_in[1], min(yp, y1), max(yp, y1)))
        cut_out = (clamp(cut_out[0], min(x1, x2), max(x1, x2)), clamp(cut_out[1], min(y1, y2), max(y1, y2)))

        d.append(f"L {cut_in[0]} {cut_in[1]}")
        d.append(f"Q {x1} {y1} {cut_out[0]} {cut_out[1]}")

    xn, yn = pts[-1]
    d.append(f"L {xn} {yn}")
    return " ".join(d)
