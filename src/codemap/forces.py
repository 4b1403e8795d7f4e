"""
Pluggable forces for the codemap simulation.

A force is a small stateful object with two hooks:

    initialize(nodes): called whenever the force is registered or the
                       simulation's node list is replaced; caches lookups
    apply(nodes, alpha): called once per tick; adds velocity deltas

Forces only ever touch ``vx``/``vy``.  Positions are integrated by the
simulation, so any number of forces compose by plain summation.

Most parameters accept three shapes, resolved by ``_accessor``:

    a number: used for every node / edge
    a dict: keyed by kind, with a ``"default"`` fallback
    a callable: called with the node / edge
"""

from __future__ import annotations

import hashlib
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from .config import ForceConfig
from .models import MapEdge, MapNode, kind_value

logger = logging.getLogger(__name__)

# Distance below which two nodes count as coincident
_EPSILON = 1e-6


def _deterministic_jitter(key: str, scale: float = 1e-3) -> tuple[float, float]:
    """Reproducible small offset derived from ``key``.

    Coincident nodes need *some* direction to be pushed apart in; hashing the
    pair of ids keeps the layout identical across runs.
    """
    h = hashlib.md5(key.encode()).hexdigest()
    x_val = int(h[:8], 16) / 0xFFFFFFFF
    y_val = int(h[8:16], 16) / 0xFFFFFFFF
    dx = (x_val - 0.5) * 2 * scale
    dy = (y_val - 0.5) * 2 * scale
    if dx == 0 and dy == 0:
        dx = scale
    return dx, dy


def _accessor(value: Any, default: float, key: Callable[[Any], str]) -> Callable[[Any], float]:
    """Turn a number, per-kind dict or callable into ``item -> float``."""
    if callable(value):
        return value
    if isinstance(value, dict):
        fallback = value.get("default", default)
        return lambda item: float(value.get(key(item), fallback))
    constant = float(default if value is None else value)
    return lambda item: constant


def _node_kind(node: MapNode) -> str:
    return kind_value(node.kind)


def _edge_kind(edge: MapEdge) -> str:
    return edge.kind_name


class Force(ABC):
    """Base class for simulation forces."""

    def __init__(self) -> None:
        self.nodes: list[MapNode] = []

    def initialize(self, nodes: list[MapNode]) -> None:
        self.nodes = nodes

    @abstractmethod
    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        ...


# ---------------------------------------------------------------------------
# Link
# ---------------------------------------------------------------------------

class LinkForce(Force):
    """Spring between the endpoints of each edge.

    Per edge the correction is ``(d - rest) / d * strength * alpha`` applied
    to the predicted offset between the endpoints; the target takes
    ``bias`` of it and the source the remainder.  ``bias=None`` uses the
    degree-based split (the lower-degree endpoint moves more).  Strength is
    multiplied by the edge weight.  Edges whose endpoints are missing are
    skipped.
    """

    def __init__(
        self,
        edges: Iterable[MapEdge] = (),
        distance: Any = 30.0,
        strength: Any = 0.1,
        bias: Optional[float] = 0.5,
        weighted: bool = True,
    ):
        super().__init__()
        self.edges = list(edges)
        self._distance = _accessor(distance, 30.0, _edge_kind)
        self._strength = _accessor(strength, 0.1, _edge_kind)
        self.bias = bias
        self.weighted = weighted
        self._links: list[tuple[MapNode, MapNode, float, float, float]] = []

    @classmethod
    def from_config(cls, edges: Iterable[MapEdge], config: ForceConfig) -> "LinkForce":
        distance = dict(config.link_distance, default=config.default_link_distance)
        strength = dict(config.link_strength, default=config.default_link_strength)
        return cls(edges, distance=distance, strength=strength, bias=config.link_bias)

    def set_edges(self, edges: Iterable[MapEdge]) -> None:
        self.edges = list(edges)
        self.initialize(self.nodes)

    def initialize(self, nodes: list[MapNode]) -> None:
        super().initialize(nodes)
        by_id = {n.id: n for n in nodes}
        resolved = []
        degree: dict[str, int] = {}
        for edge in self.edges:
            source = by_id.get(edge.source_id)
            target = by_id.get(edge.target_id)
            if source is None or target is None:
                logger.debug("Link force skipping dangling edge %s -> %s", edge.source_id, edge.target_id)
                continue
            resolved.append((edge, source, target))
            degree[source.id] = degree.get(source.id, 0) + 1
            degree[target.id] = degree.get(target.id, 0) + 1

        self._links = []
        for edge, source, target in resolved:
            strength = self._strength(edge)
            if self.weighted:
                strength *= edge.weight
            if self.bias is None:
                bias = degree[source.id] / (degree[source.id] + degree[target.id])
            else:
                bias = self.bias
            self._links.append((source, target, self._distance(edge), strength, bias))

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        for source, target, rest, strength, bias in self._links:
            if source is target:
                continue
            dx = target.x + target.vx - source.x - source.vx
            dy = target.y + target.vy - source.y - source.vy
            if abs(dx) < _EPSILON and abs(dy) < _EPSILON:
                dx, dy = _deterministic_jitter(f"{source.id}|{target.id}")
            d = math.sqrt(dx * dx + dy * dy)
            l = (d - rest) / d * alpha * strength
            dx *= l
            dy *= l
            target.vx -= dx * bias
            target.vy -= dy * bias
            source.vx += dx * (1 - bias)
            source.vy += dy * (1 - bias)


# ---------------------------------------------------------------------------
# Many-body
# ---------------------------------------------------------------------------

class ManyBodyForce(Force):
    """Pairwise inverse-square charge between free nodes.

    Negative strength repels.  Each node ``i`` receives
    ``dx * s_j * alpha / d²`` from every other node ``j``.  Pinned nodes are
    left out entirely unless ``include_pinned`` is set.  The pass is O(n²);
    above ``max_nodes`` only the first ``max_nodes`` nodes act as sources.
    """

    def __init__(
        self,
        strength: Any = -30.0,
        distance_min: float = 1.0,
        distance_max: Optional[float] = None,
        max_nodes: int = 2000,
        include_pinned: bool = False,
    ):
        super().__init__()
        self._strength = _accessor(strength, -30.0, _node_kind)
        self.distance_min2 = distance_min * distance_min
        self.distance_max2 = math.inf if distance_max is None else distance_max * distance_max
        self.max_nodes = max_nodes
        self.include_pinned = include_pinned
        self._strengths: dict[str, float] = {}
        self._warned = False

    @classmethod
    def from_config(cls, config: ForceConfig) -> "ManyBodyForce":
        return cls(
            strength=dict(config.charge, default=config.default_charge),
            distance_min=config.charge_distance_min,
            distance_max=config.charge_distance_max,
            max_nodes=config.max_charge_nodes,
        )

    def initialize(self, nodes: list[MapNode]) -> None:
        super().initialize(nodes)
        self._strengths = {n.id: self._strength(n) for n in nodes}
        self._warned = False

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        active = [n for n in nodes if self.include_pinned or not n.is_pinned]
        sources = active
        if len(active) > self.max_nodes:
            sources = active[: self.max_nodes]
            if not self._warned:
                logger.warning(
                    "Many-body force capped at %d of %d nodes", self.max_nodes, len(active)
                )
                self._warned = True

        for node in active:
            for other in sources:
                if other is node:
                    continue
                dx = other.x - node.x
                dy = other.y - node.y
                l = dx * dx + dy * dy
                if l < _EPSILON:
                    dx, dy = _deterministic_jitter(f"{node.id}|{other.id}")
                    l = dx * dx + dy * dy
                if l >= self.distance_max2:
                    continue
                if l < self.distance_min2:
                    l = math.sqrt(self.distance_min2 * l)
                w = self._strengths.get(other.id, 0.0) * alpha / l
                node.vx += dx * w
                node.vy += dy * w


# ---------------------------------------------------------------------------
# Center
# ---------------------------------------------------------------------------

class CenterForce(Force):
    """Moves the centroid of all nodes toward ``(x, y)``.

    Every node receives the same velocity shift, so relative positions are
    untouched.  The shift does not scale with alpha.
    """

    def __init__(self, x: float = 0.0, y: float = 0.0, strength: float = 0.05):
        super().__init__()
        self.x = x
        self.y = y
        self.strength = strength

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        if not nodes:
            return
        mx = sum(n.x for n in nodes) / len(nodes)
        my = sum(n.y for n in nodes) / len(nodes)
        sx = (self.x - mx) * self.strength
        sy = (self.y - my) * self.strength
        for node in nodes:
            node.vx += sx
            node.vy += sy


# ---------------------------------------------------------------------------
# Collision
# ---------------------------------------------------------------------------

class CollisionForce(Force):
    """Separates nodes whose bounding circles overlap.

    Uses predicted positions (``x + vx``) and repeats ``iterations`` times per
    tick.  Overlapping pairs are pushed apart by
    ``penetration * strength * alpha``, split by the squared radii.  When one
    partner is pinned the free one takes the whole push; two pinned nodes are
    left alone.
    """

    def __init__(self, radius: Any = 30.0, strength: float = 1.0, iterations: int = 3):
        super().__init__()
        self._radius = _accessor(radius, 30.0, _node_kind)
        self.strength = strength
        self.iterations = max(1, iterations)
        self._radii: dict[str, float] = {}

    @classmethod
    def from_config(cls, config: ForceConfig, scale: float = 1.0) -> "CollisionForce":
        table = dict(config.collision_radius, default=config.default_collision_radius)
        radius = {k: v * scale for k, v in table.items()}
        return cls(radius=radius, strength=config.collision_strength, iterations=config.collision_iterations)

    def initialize(self, nodes: list[MapNode]) -> None:
        super().initialize(nodes)
        self._radii = {n.id: self._radius(n) for n in nodes}

    def radius_of(self, node: MapNode) -> float:
        return self._radii.get(node.id, self._radius(node))

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        count = len(nodes)
        for _ in range(self.iterations):
            for i in range(count):
                a = nodes[i]
                ra = self.radius_of(a)
                for j in range(i + 1, count):
                    b = nodes[j]
                    a_pinned = a.is_pinned
                    b_pinned = b.is_pinned
                    if a_pinned and b_pinned:
                        continue
                    rb = self.radius_of(b)
                    r = ra + rb
                    dx = (a.x + a.vx) - (b.x + b.vx)
                    dy = (a.y + a.vy) - (b.y + b.vy)
                    l = dx * dx + dy * dy
                    if l >= r * r:
                        continue
                    if l < _EPSILON:
                        dx, dy = _deterministic_jitter(f"{a.id}|{b.id}")
                        l = dx * dx + dy * dy
                    d = math.sqrt(l)
                    push = (r - d) / d * self.strength * alpha
                    dx *= push
                    dy *= push
                    if a_pinned:
                        share_a, share_b = 0.0, 1.0
                    elif b_pinned:
                        share_a, share_b = 1.0, 0.0
                    else:
                        rb2 = rb * rb
                        share_a = rb2 / (ra * ra + rb2) if (ra or rb) else 0.5
                        share_b = 1.0 - share_a
                    a.vx += dx * share_a
                    a.vy += dy * share_a
                    b.vx -= dx * share_b
                    b.vy -= dy * share_b


# ---------------------------------------------------------------------------
# Orbit
# ---------------------------------------------------------------------------

class OrbitForce(Force):
    """Holds each child at a fixed polar offset from its live parent.

    The offset ``(angle, radius)`` is captured from the current positions at
    ``initialize`` unless ``offsets`` supplies it.  The pull toward the
    target point is a spring whose stiffness rises with the displacement,
    capped at ``max_stiffness``; it does not scale with alpha, so a dragged
    parent keeps carrying its children after the layout cools.
    """

    def __init__(
        self,
        parent_of: Optional[Callable[[MapNode], Optional[str]]] = None,
        offsets: Optional[dict[str, tuple[float, float]]] = None,
        stiffness: float = 0.3,
        max_stiffness: float = 1.0,
    ):
        super().__init__()
        self.parent_of = parent_of or (lambda node: node.parent_id)
        self.stiffness = stiffness
        self.max_stiffness = max_stiffness
        self._given = dict(offsets or {})
        self.offsets: dict[str, tuple[float, float]] = {}
        self._pairs: list[tuple[MapNode, MapNode]] = []

    def initialize(self, nodes: list[MapNode]) -> None:
        super().initialize(nodes)
        by_id = {n.id: n for n in nodes}
        self._pairs = []
        self.offsets = {}
        for node in nodes:
            parent_id = self.parent_of(node)
            parent = by_id.get(parent_id) if parent_id else None
            if parent is None or parent is node:
                continue
            if node.id in self._given:
                self.offsets[node.id] = self._given[node.id]
            else:
                dx = node.x - parent.x
                dy = node.y - parent.y
                self.offsets[node.id] = (math.atan2(dy, dx), math.hypot(dx, dy))
            self._pairs.append((node, parent))

    def target_of(self, child: MapNode, parent: MapNode) -> tuple[float, float]:
        angle, radius = self.offsets[child.id]
        return parent.x + math.cos(angle) * radius, parent.y + math.sin(angle) * radius

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        for child, parent in self._pairs:
            if child.is_pinned:
                continue
            tx, ty = self.target_of(child, parent)
            dx = tx - child.x
            dy = ty - child.y
            displacement = math.hypot(dx, dy)
            radius = max(self.offsets[child.id][1], 1.0)
            k = min(self.max_stiffness, self.stiffness * (1 + displacement / radius))
            child.vx += dx * k
            child.vy += dy * k


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------

class PositionForce(Force):
    """Per-axis pull toward a target coordinate.

    ``x`` or ``y`` may be ``None`` to leave that axis alone.  The pull is
    ``(target - position) * strength * alpha``.
    """

    def __init__(self, x: Any = None, y: Any = None, strength: Any = 0.1):
        super().__init__()
        self._x = None if x is None else _accessor(x, 0.0, _node_kind)
        self._y = None if y is None else _accessor(y, 0.0, _node_kind)
        self._strength = _accessor(strength, 0.1, _node_kind)

    def apply(self, nodes: list[MapNode], alpha: float) -> None:
        for node in nodes:
            s = self._strength(node) * alpha
            if self._x is not None:
                node.vx += (self._x(node) - node.x) * s
            if self._y is not None:
                node.vy += (self._y(node) - node.y) * s
