"""
Data models for codemap: the graph the layout engine works on.

A codebase map is a flat graph of typed nodes and edges.  Hierarchy is
expressed through ``contains``-style edges and the ``parent_id`` field rather
than through nested containers:

    component: a logical group of files declared in the component config
    directory: a folder in the files view (nested by ``depth``)
    file: a single source file (the leaf unit)
    external: an external system a component talks to (DB, API, queue)

Every node carries geometry (``x``/``y`` centre, ``width``/``height`` box)
plus simulation state (``vx``/``vy``) and an optional pinned position
(``fx``/``fy``).  A pinned axis is never moved by the physics solver.

Edges are directed and weighted.  An edge whose endpoints do not both exist
is a dangling reference: it is kept in the graph (the indexer may be ahead of
us) but every consumer skips it silently.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from pydantic import BaseModel, Field, PrivateAttr, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

class NodeKind(str, Enum):
    COMPONENT = "component"
    DIRECTORY = "directory"
    FILE = "file"
    EXTERNAL = "external"


class EdgeKind(str, Enum):
    CONTAINS = "contains"
    DIR_CONTAINS = "dir-contains"
    IMPORTS = "imports"
    CALLS = "calls"
    INHERITS = "inherits"
    DEFINES = "defines"
    USES = "uses"
    EXTERNAL_USES = "external-uses"


# Kinds that draw as boxes holding other nodes
CONTAINER_KINDS = frozenset({NodeKind.COMPONENT, NodeKind.DIRECTORY})

# Kinds the connector router treats as obstacles
OBSTACLE_KINDS = frozenset({NodeKind.FILE, NodeKind.EXTERNAL})

# Default box sizes per kind (width, height)
DEFAULT_SIZES: dict[str, tuple[float, float]] = {
    "component": (300.0, 200.0),
    "directory": (240.0, 120.0),
    "file": (100.0, 30.0),
    "external": (140.0, 50.0),
}


def kind_value(kind: Any) -> str:
    """Return the plain string for a kind that may be an Enum member."""
    return kind.value if isinstance(kind, Enum) else str(kind)


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------

class MapNode(BaseModel):
    """A node of the codebase map.

    Position
    --------
    ``x`` and ``y`` are the centre of the node's box in graph space.
    ``vx``/``vy`` only matter while a simulation is running.

    Pinning
    -------
    ``fx``/``fy`` hold a fixed position.  When set, the simulation snaps the
    node to it every tick and zeroes its velocity.  Dragging a node pins it;
    the static packing layout pins every node it places.

    Payload
    -------
    ``payload`` is opaque to the engine.  Builders put metrics (line counts,
    smell scores, language) there for the host to display.
    """
    id: str
    kind: NodeKind = NodeKind.FILE
    label: Optional[str] = None
    path: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    fx: Optional[float] = None
    fy: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    depth: int = 0
    parent_id: Optional[str] = None
    color: Optional[str] = None
    overflow: bool = False
    changed: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        default_w, default_h = DEFAULT_SIZES.get(kind_value(self.kind), (100.0, 30.0))
        if self.width is None:
            self.width = default_w
        if self.height is None:
            self.height = default_h

    @property
    def is_pinned(self) -> bool:
        return self.fx is not None and self.fy is not None

    @property
    def is_container(self) -> bool:
        return self.kind in CONTAINER_KINDS

    @property
    def radius(self) -> float:
        """Radius of the circle enclosing the node's box."""
        return math.hypot(self.width, self.height) / 2

    def pin(self, x: Optional[float] = None, y: Optional[float] = None) -> None:
        """Pin the node at ``(x, y)``, defaulting to its current position."""
        self.fx = self.x if x is None else x
        self.fy = self.y if y is None else y
        self.x = self.fx
        self.y = self.fy
        self.vx = 0.0
        self.vy = 0.0

    def unpin(self) -> None:
        self.fx = None
        self.fy = None

    def get_label(self) -> str:
        """Get the display label for this node.

        Returns ``label`` if set, otherwise the last path segment, otherwise
        the id.
        """
        if self.label:
            return self.label
        if self.path:
            return self.path.rstrip("/").split("/")[-1] or self.path
        return self.id

    def box(self) -> tuple[float, float, float, float]:
        """Return ``(left, top, right, bottom)`` of the node's box."""
        hw = self.width / 2
        hh = self.height / 2
        return (self.x - hw, self.y - hh, self.x + hw, self.y + hh)


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------

class MapEdge(BaseModel):
    """A directed, weighted relationship between two nodes.

    ``kind`` accepts any string so indexers can introduce new relationship
    types; known kinds are normalised to ``EdgeKind`` members.
    """
    source_id: str
    target_id: str
    kind: EdgeKind | str = EdgeKind.IMPORTS
    weight: float = 1.0
    color: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value):
        try:
            return EdgeKind(kind_value(value))
        except ValueError:
            return kind_value(value)

    @field_validator("weight")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("edge weight must be >= 0")
        return value

    @property
    def kind_name(self) -> str:
        return kind_value(self.kind)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class MapGraph(BaseModel):
    """Nodes and edges of one map, with an id index.

    The graph is rebuilt wholesale on every update; nothing patches it
    incrementally.  Call ``reindex()`` after mutating ``nodes`` directly.
    """
    nodes: list[MapNode] = Field(default_factory=list)
    edges: list[MapEdge] = Field(default_factory=list)
    _node_map: dict[str, MapNode] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context) -> None:
        self.reindex()

    def reindex(self) -> None:
        self._node_map = {}
        for node in self.nodes:
            if node.id in self._node_map:
                logger.warning("Duplicate node id %r; keeping the first", node.id)
                continue
            self._node_map[node.id] = node

    def get_node(self, node_id: str) -> Optional[MapNode]:
        """Return the node with ``node_id``, or ``None`` when it is unknown."""
        return self._node_map.get(node_id)

    def add_node(self, node: MapNode) -> MapNode:
        self.nodes.append(node)
        self._node_map.setdefault(node.id, node)
        return node

    def add_edge(self, edge: MapEdge) -> MapEdge:
        self.edges.append(edge)
        return edge

    def is_empty(self) -> bool:
        return not self.nodes

    def nodes_of_kind(self, *kinds: NodeKind | str) -> list[MapNode]:
        wanted = {kind_value(k) for k in kinds}
        return [n for n in self.nodes if kind_value(n.kind) in wanted]

    def resolved_edges(self) -> Iterator[tuple[MapEdge, MapNode, MapNode]]:
        """Yield ``(edge, source, target)`` for edges whose endpoints exist.

        Dangling edges are skipped without raising.
        """
        for edge in self.edges:
            source = self._node_map.get(edge.source_id)
            target = self._node_map.get(edge.target_id)
            if source is None or target is None:
                logger.debug(
                    "Skipping dangling edge %s -> %s", edge.source_id, edge.target_id
                )
                continue
            yield edge, source, target

    def visible_edges(self, visible_ids: Iterable[str]) -> list[MapEdge]:
        """Edges whose endpoints both exist and are both visible."""
        visible = set(visible_ids)
        return [
            edge for edge, source, target in self.resolved_edges()
            if source.id in visible and target.id in visible
        ]

    def children_of(self, node_id: str, kinds: Iterable[str] = ("contains", "uses")) -> list[MapNode]:
        """Targets of ``kinds`` edges leaving ``node_id``, in edge order, deduplicated."""
        wanted = set(kinds)
        seen: set[str] = set()
        children: list[MapNode] = []
        for edge, source, target in self.resolved_edges():
            if source.id != node_id or edge.kind_name not in wanted:
                continue
            if target.id in seen:
                continue
            seen.add(target.id)
            children.append(target)
        return children

    def descendants_of(self, node_id: str) -> list[MapNode]:
        """All nodes below ``node_id`` through ``parent_id`` or containment edges."""
        by_parent: dict[str, list[MapNode]] = {}
        for node in self.nodes:
            if node.parent_id:
                by_parent.setdefault(node.parent_id, []).append(node)
        for edge, source, target in self.resolved_edges():
            if edge.kind_name in ("contains", "dir-contains", "uses"):
                bucket = by_parent.setdefault(source.id, [])
                if target not in bucket:
                    bucket.append(target)

        result: list[MapNode] = []
        seen = {node_id}
        stack = [node_id]
        while stack:
            current = stack.pop()
            for child in by_parent.get(current, []):
                if child.id in seen:
                    continue
                seen.add(child.id)
                result.append(child)
                stack.append(child.id)
        return result

    def bounds(self, nodes: Optional[Iterable[MapNode]] = None) -> Optional[tuple[float, float, float, float]]:
        """Return ``(min_x, min_y, max_x, max_y)`` over node boxes, or ``None``."""
        boxes = [n.box() for n in (self.nodes if nodes is None else nodes)]
        boxes = [b for b in boxes if all(math.isfinite(v) for v in b)]
        if not boxes:
            return None
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )

    def copy_positions_from(self, previous: "MapGraph") -> int:
        """Carry ``x/y/fx/fy`` over from ``previous`` for nodes with matching ids.

        Returns the number of nodes updated.
        """
        copied = 0
        for node in self.nodes:
            old = previous.get_node(node.id)
            if old is None:
                continue
            node.x, node.y = old.x, old.y
            node.fx, node.fy = old.fx, old.fy
            copied += 1
        return copied
