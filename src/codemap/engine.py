"""
Per-panel layout engine.

``LayoutEngine`` owns everything one map panel needs: the current graph, the
running simulation (if any), the viewport, the drag/pointer state and the
persisted layout.  One engine is created per panel and torn down with
``dispose()``; nothing here is module-global.

Views
-----
``components``    static brick packing; every node pinned, no simulation
``files``         directory tree under the force simulation, files orbiting
                  their directory
``dependencies``  flat file graph; force, hierarchical or circular layout

Failure policy
--------------
The public methods never raise for bad data: dangling ids, unknown nodes
and numeric trouble are logged and answered with an empty result.  Only
``dispose()``-after-use and host failures are reported, and those are
logged too.
"""

from __future__ import annotations

import functools
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .config import CodemapConfig
from .forces import (
    CenterForce,
    CollisionForce,
    LinkForce,
    ManyBodyForce,
    OrbitForce,
    PositionForce,
)
from .interfaces import ChangeTracker, GraphStore, HostShell
from .layouts import circular_layout, hierarchical_layout, seed_positions
from .messages import (
    EMPTY_STATE_MESSAGE,
    EdgePayload,
    FilesChanged,
    GraphUpdate,
    HostMessage,
    LayoutSave,
    NodeEvent,
    NodePayload,
    OverlayClear,
    OverlaySession,
    PathResult,
)
from .models import EdgeKind, MapGraph, MapNode, NodeKind, kind_value
from .packing import PackingResult, pack_components
from .routing import Connector, route_all
from .simulation import Simulation, TickSource
from .viewport import SceneState, ViewportController

logger = logging.getLogger(__name__)


class ViewMode(str, Enum):
    COMPONENTS = "components"
    FILES = "files"
    DEPENDENCIES = "dependencies"


# Files-view tables, indexed by directory depth
DIR_LINK_DISTANCES = [250.0, 200.0, 150.0, 120.0]
DIR_CHARGES = [-4000.0, -2500.0, -1500.0, -1000.0]
FILE_CHARGE = -100.0

# Edges drawn as elbow connectors in the component view
ROUTED_KINDS = ("external-uses", "imports")


def _fail_soft(default: Any = None):
    """Log and swallow unexpected errors from a public engine method."""

    def decorator(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            if self.disposed:
                logger.debug("%s called on a disposed engine", method.__name__)
                return default() if callable(default) else default
            try:
                return method(self, *args, **kwargs)
            except Exception:
                logger.exception("LayoutEngine.%s failed", method.__name__)
                return default() if callable(default) else default

        return wrapper

    return decorator


@dataclass
class DragState:
    node_id: str
    grab_dx: float = 0.0
    grab_dy: float = 0.0
    offsets: dict[str, tuple[float, float]] = field(default_factory=dict)
    moved: bool = False


@dataclass
class PointerState:
    start_x: float
    start_y: float
    node_id: Optional[str] = None
    mode: str = "pending"  # pending | drag | pan


def _by_depth(table: list[float], depth: int) -> float:
    return table[min(max(depth, 0), len(table) - 1)]


class LayoutEngine:
    """Layout, interaction and messaging for one map panel."""

    def __init__(
        self,
        host: Optional[HostShell] = None,
        store: Optional[GraphStore] = None,
        config: Optional[CodemapConfig] = None,
        tick_source: Optional[TickSource] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
    ):
        self.config = config or CodemapConfig()
        self.host = host
        self.store = store
        self.tick_source = tick_source
        self.viewport = ViewportController(width, height, self.config.viewport)
        self.graph = MapGraph()
        self.mode = ViewMode.DEPENDENCIES
        self.simulation: Optional[Simulation] = None
        self.packing: Optional[PackingResult] = None
        self.layout: dict[str, dict[str, float]] = {}
        self.session_id: Optional[int] = None
        self.disposed = False
        self._drag: Optional[DragState] = None
        self._pointer: Optional[PointerState] = None
        self._tick_listeners: list[Callable[["LayoutEngine"], None]] = []

        if host is not None:
            try:
                self.layout = dict(host.read_layout() or {})
            except Exception:
                logger.exception("Could not read the saved layout from the host")

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    def _post(self, message: HostMessage) -> HostMessage:
        if self.host is not None:
            try:
                self.host.post_message(message.to_message())
            except Exception:
                logger.exception("Host rejected %s message", message.type)
        return message

    def on_tick(self, callback: Callable[["LayoutEngine"], None]) -> None:
        """Observe simulation ticks (for redrawing)."""
        self._tick_listeners.append(callback)

    def _emit_tick(self, _sim: Simulation) -> None:
        for callback in list(self._tick_listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Tick listener failed")

    # ------------------------------------------------------------------
    # Graph updates
    # ------------------------------------------------------------------

    @_fail_soft(default=lambda: GraphUpdate(empty_message=EMPTY_STATE_MESSAGE))
    def update_graph(
        self,
        graph: MapGraph,
        mode: ViewMode | str | None = None,
        keep_positions: bool = False,
        settle: bool = False,
        layout: str = "force",
        fit: bool = False,
    ) -> GraphUpdate:
        """Replace the graph wholesale and lay it out.

        The previous simulation is stopped first.  With ``keep_positions``
        nodes whose id survives keep their ``x/y/fx/fy``.  Saved positions
        are applied as pins before layout.  ``settle`` runs the simulation
        to rest synchronously instead of on the tick source.  ``fit`` resets
        the viewport to the laid-out graph (after the simulation settles when
        one runs).
        """
        self._stop_simulation()
        self._drag = None
        self._pointer = None
        if mode is not None:
            self.mode = ViewMode(mode)
        previous = self.graph
        self.graph = graph
        self.packing = None

        if graph.is_empty():
            logger.info("Graph update with no nodes; showing the empty state")
            return self._post(GraphUpdate(empty_message=EMPTY_STATE_MESSAGE))

        if keep_positions:
            copied = graph.copy_positions_from(previous)
            logger.debug("Carried positions over for %d nodes", copied)

        if self.mode == ViewMode.COMPONENTS:
            self.packing = pack_components(graph, self.config.packing)
            self._apply_saved_boxes()
        else:
            self._apply_saved_pins()
            if self.mode == ViewMode.DEPENDENCIES and layout == "hierarchical":
                hierarchical_layout(graph, self.viewport.width, self.viewport.height)
            elif self.mode == ViewMode.DEPENDENCIES and layout == "circular":
                circular_layout(graph, self.viewport.width, self.viewport.height)
            else:
                self._start_simulation(settle, fit)
                return self._post(self.graph_update_message())
        if fit:
            self.viewport.reset_view(graph, animate=False)

        return self._post(self.graph_update_message())

    def _apply_saved_pins(self) -> None:
        for node in self.graph.nodes:
            saved = self.layout.get(self._layout_key(node))
            if saved:
                node.pin(saved["x"], saved["y"])

    def _apply_saved_boxes(self) -> None:
        """Move packed components (and their children) to saved positions."""
        for node in self.graph.nodes_of_kind(NodeKind.COMPONENT):
            saved = self.layout.get(self._layout_key(node))
            if not saved:
                continue
            dx = saved["x"] - node.x
            dy = saved["y"] - node.y
            for member in [node] + self.graph.descendants_of(node.id):
                member.pin(member.x + dx, member.y + dy)

    @staticmethod
    def _layout_key(node: MapNode) -> str:
        return node.path or node.id

    def _stop_simulation(self) -> None:
        if self.simulation is not None:
            self.simulation.stop()
            self.simulation.on("tick", None)
            self.simulation.on("end", None)
            self.simulation = None

    def _start_simulation(self, settle: bool, fit: bool = False) -> None:
        cx, cy = self.viewport.width / 2, self.viewport.height / 2
        seed_positions(self.graph.nodes, center=(cx, cy))
        self.simulation = self.build_simulation()
        self.simulation.on("tick", self._emit_tick)
        if fit:
            self.simulation.on("end", lambda _sim: self.viewport.reset_view(self.graph, animate=not settle))
        if settle or self.tick_source is None:
            self.simulation.alpha(1.0)
            self.simulation.run_until_settled()
        else:
            self.simulation.restart(1.0)

    def build_simulation(self) -> Simulation:
        """Simulation with the force set for the current view."""
        forces_cfg = self.config.forces
        sim = Simulation(self.graph.nodes, self.config.simulation, self.tick_source)
        cx, cy = self.viewport.width / 2, self.viewport.height / 2

        if self.mode == ViewMode.FILES:
            collision = CollisionForce(radius=self._files_collision_radius, strength=1.2,
                                       iterations=forces_cfg.collision_iterations)
            sim.force("link", LinkForce(
                [e for e in self.graph.edges if e.kind_name == EdgeKind.DIR_CONTAINS.value],
                distance=self._files_link_distance,
                strength=0.5,
                bias=forces_cfg.link_bias,
            ))
            sim.force("charge", ManyBodyForce(
                strength=lambda n: _by_depth(DIR_CHARGES, n.depth) if n.kind == NodeKind.DIRECTORY else FILE_CHARGE,
                max_nodes=forces_cfg.max_charge_nodes,
            ))
            sim.force("center", CenterForce(cx, cy, forces_cfg.center_strength))
            sim.force("collision", collision)
            sim.force("x", PositionForce(x=cx, strength=forces_cfg.position_strength))
            sim.force("y", PositionForce(y=cy, strength=forces_cfg.position_strength))
            sim.force("orbit", OrbitForce(
                parent_of=lambda n: n.parent_id if n.kind == NodeKind.FILE else None,
                offsets=self._orbit_offsets(collision),
                stiffness=forces_cfg.orbit_stiffness,
                max_stiffness=forces_cfg.orbit_max_stiffness,
            ))
        else:
            sim.force("link", LinkForce.from_config(self.graph.edges, forces_cfg))
            sim.force("charge", ManyBodyForce.from_config(forces_cfg))
            sim.force("center", CenterForce(cx, cy, forces_cfg.center_strength))
            sim.force("collision", CollisionForce.from_config(forces_cfg))
        return sim

    def _files_link_distance(self, edge) -> float:
        source = self.graph.get_node(edge.source_id)
        return _by_depth(DIR_LINK_DISTANCES, source.depth if source else 0)

    @staticmethod
    def _files_collision_radius(node: MapNode) -> float:
        pad = 50.0 if node.kind == NodeKind.DIRECTORY else 30.0
        return math.hypot(node.width, node.height) / 2 + pad

    def _orbit_offsets(self, collision: CollisionForce) -> dict[str, tuple[float, float]]:
        """Files spread evenly around their directory, just outside its collision circle."""
        by_parent: dict[str, list[MapNode]] = {}
        for node in self.graph.nodes:
            if node.kind == NodeKind.FILE and node.parent_id:
                by_parent.setdefault(node.parent_id, []).append(node)
        offsets: dict[str, tuple[float, float]] = {}
        for parent_id, children in by_parent.items():
            parent = self.graph.get_node(parent_id)
            if parent is None:
                continue
            child_r = max(self._files_collision_radius(c) for c in children)
            ring = self._files_collision_radius(parent) + child_r + 10
            ring = max(ring, len(children) * 2 * child_r / (2 * math.pi))
            for i, child in enumerate(children):
                offsets[child.id] = (2 * math.pi * i / len(children), ring)
        return offsets

    def graph_update_message(self) -> GraphUpdate:
        nodes = [
            NodePayload(
                id=n.id,
                kind=kind_value(n.kind),
                label=n.get_label(),
                path=n.path,
                x=n.x,
                y=n.y,
                width=n.width,
                height=n.height,
                pinned=n.is_pinned,
                color=n.color,
                changed=n.changed,
                parent_id=n.parent_id,
            )
            for n in self.graph.nodes
        ]
        routed = {(c.source_id, c.target_id, c.kind): c.points for c in self.connectors()}
        edges = [
            EdgePayload(
                source=e.source_id,
                target=e.target_id,
                kind=e.kind_name,
                weight=e.weight,
                points=routed.get((e.source_id, e.target_id, e.kind_name)),
            )
            for e, _s, _t in self.graph.resolved_edges()
        ]
        return GraphUpdate(nodes=nodes, edges=edges)

    # ------------------------------------------------------------------
    # Rendering support
    # ------------------------------------------------------------------

    @_fail_soft(default=list)
    def connectors(self) -> list[Connector]:
        """Elbow connectors for the component view at the current zoom."""
        if self.mode != ViewMode.COMPONENTS:
            return []
        scene = self.viewport.render_state(self.graph)
        if not scene.edges_visible:
            return []
        return route_all(self.graph, ROUTED_KINDS, scene.visible_ids(), self.config.routing)

    def scene(self) -> SceneState:
        return self.viewport.render_state(self.graph)

    # ------------------------------------------------------------------
    # Dragging
    # ------------------------------------------------------------------

    @_fail_soft(default=False)
    def drag_start(self, node_id: str, gx: Optional[float] = None, gy: Optional[float] = None) -> bool:
        """Pin ``node_id`` and start dragging it; only one drag at a time."""
        if self._drag is not None:
            logger.debug("Ignoring drag on %s while %s is dragged", node_id, self._drag.node_id)
            return False
        node = self.graph.get_node(node_id)
        if node is None:
            logger.debug("drag_start on unknown node %s", node_id)
            return False

        node.pin()
        drag = DragState(node_id)
        if gx is not None and gy is not None:
            drag.grab_dx = node.x - gx
            drag.grab_dy = node.y - gy
        if node.is_container:
            for child in self.graph.descendants_of(node_id):
                if child.is_pinned or self.simulation is None:
                    drag.offsets[child.id] = (child.x - node.x, child.y - node.y)
        self._drag = drag

        if self.simulation is not None:
            self.simulation.alpha_target(self.config.simulation.drag_alpha)
            if not self.simulation.running and self.tick_source is not None:
                self.simulation.restart(max(self.simulation.alpha(), self.config.simulation.drag_alpha))
        return True

    @_fail_soft(default=False)
    def drag_move(self, gx: float, gy: float) -> bool:
        """Move the dragged node (and its tracked descendants) to graph point ``(gx, gy)``."""
        if self._drag is None:
            return False
        node = self.graph.get_node(self._drag.node_id)
        if node is None:
            self._drag = None
            return False
        x = gx + self._drag.grab_dx
        y = gy + self._drag.grab_dy
        node.pin(x, y)
        for child_id, (dx, dy) in self._drag.offsets.items():
            child = self.graph.get_node(child_id)
            if child is None:
                continue
            if child.is_pinned:
                child.pin(x + dx, y + dy)
            else:
                child.x, child.y = x + dx, y + dy
        self._drag.moved = True
        return True

    @_fail_soft(default=None)
    def drag_end(self) -> Optional[LayoutSave]:
        """Finish the drag, leaving the node pinned, and persist the layout."""
        drag = self._drag
        self._drag = None
        if drag is None:
            return None
        node = self.graph.get_node(drag.node_id)
        if node is None:
            return None

        if self.simulation is not None:
            self.simulation.alpha_target(0.0)
            if node.is_container:
                self.simulation.restart(self.config.simulation.drag_alpha)
                if self.tick_source is None:
                    self.simulation.run_until_settled()

        if not drag.moved:
            return None
        self.layout[self._layout_key(node)] = {"x": node.x, "y": node.y}
        return self.save_layout()

    @property
    def dragging(self) -> Optional[str]:
        return self._drag.node_id if self._drag else None

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------

    def _draggable(self, node: MapNode) -> bool:
        if self.mode == ViewMode.COMPONENTS:
            return node.kind == NodeKind.COMPONENT
        if self.mode == ViewMode.FILES:
            return node.kind == NodeKind.DIRECTORY
        return True

    @_fail_soft(default=None)
    def pointer_down(self, px: float, py: float) -> Optional[str]:
        """Start a gesture; returns the id of the node under the pointer, if any."""
        node = self.viewport.hit_test(self.graph, px, py)
        self._pointer = PointerState(px, py, node.id if node else None)
        return self._pointer.node_id

    @_fail_soft(default=None)
    def pointer_move(self, px: float, py: float) -> Optional[str]:
        """Returns ``"drag"`` or ``"pan"`` once the gesture has left the deadzone."""
        pointer = self._pointer
        if pointer is None:
            return None
        if pointer.mode == "pending":
            if math.hypot(px - pointer.start_x, py - pointer.start_y) < self.config.viewport.drag_deadzone:
                return None
            node = self.graph.get_node(pointer.node_id) if pointer.node_id else None
            if node is not None and self._draggable(node):
                gx, gy = self.viewport.screen_to_graph(pointer.start_x, pointer.start_y)
                pointer.mode = "drag" if self.drag_start(node.id, gx, gy) else "pan"
            else:
                pointer.mode = "pan"
            if pointer.mode == "pan":
                self.viewport.pan_start(pointer.start_x, pointer.start_y)

        if pointer.mode == "drag":
            self.drag_move(*self.viewport.screen_to_graph(px, py))
        else:
            self.viewport.pan_move(px, py)
        return pointer.mode

    @_fail_soft(default=None)
    def pointer_up(self, px: float, py: float) -> Optional[HostMessage]:
        """End the gesture; a press that never left the deadzone is a click."""
        pointer = self._pointer
        self._pointer = None
        if pointer is None:
            return None
        if pointer.mode == "drag":
            return self.drag_end()
        if pointer.mode == "pan":
            self.viewport.pan_end()
            return None
        if pointer.node_id:
            return self.node_action(pointer.node_id, "select")
        return None

    def wheel(self, px: float, py: float, delta_y: float, shift: bool = False) -> None:
        self.viewport.wheel(px, py, delta_y, shift)

    # ------------------------------------------------------------------
    # Node actions and queries
    # ------------------------------------------------------------------

    @_fail_soft(default=None)
    def node_action(self, node_id: str, action: str = "select") -> Optional[NodeEvent]:
        """Open, reveal, copy the path of, or select a node."""
        node = self.graph.get_node(node_id)
        if node is None:
            logger.debug("node_action on unknown node %s", node_id)
            return None
        event = NodeEvent(action=action, node_id=node.id, path=node.path)
        if self.host is not None and node.path:
            handlers = {
                "open": self.host.open_file,
                "reveal": self.host.reveal_file,
                "copy-path": self.host.copy_to_clipboard,
            }
            handler = handlers.get(action)
            if handler is not None:
                try:
                    handler(node.path)
                except Exception:
                    logger.exception("Host failed to %s %s", action, node.path)
        return self._post(event)

    @_fail_soft(default=lambda: PathResult(source="", target=""))
    def find_path(self, source_id: str, target_id: str) -> PathResult:
        """Shortest directed path by breadth-first search; empty when unreachable."""
        result = PathResult(source=source_id, target=target_id)
        if self.graph.get_node(source_id) is None or self.graph.get_node(target_id) is None:
            return self._post(result)

        adjacency: dict[str, list[str]] = {}
        for _edge, source, target in self.graph.resolved_edges():
            adjacency.setdefault(source.id, []).append(target.id)

        previous: dict[str, Optional[str]] = {source_id: None}
        queue = deque([source_id])
        while queue:
            current = queue.popleft()
            if current == target_id:
                path = []
                step: Optional[str] = current
                while step is not None:
                    path.append(step)
                    step = previous[step]
                result.path = list(reversed(path))
                break
            for nxt in adjacency.get(current, []):
                if nxt not in previous:
                    previous[nxt] = current
                    queue.append(nxt)
        return self._post(result)

    @_fail_soft(default=None)
    def centered_details(self) -> Optional[dict[str, Any]]:
        """Details of the node at the viewport centre, for a detail panel."""
        if self.viewport.collapsed:
            kinds = [NodeKind.COMPONENT, NodeKind.DIRECTORY]
        else:
            kinds = [NodeKind.FILE, NodeKind.EXTERNAL]
        node = self.viewport.centered_node(self.graph, kinds)
        if node is None:
            return None
        details = {
            "id": node.id,
            "kind": kind_value(node.kind),
            "label": node.get_label(),
            "path": node.path,
            "changed": node.changed,
        }
        if "smell" in node.payload:
            details["metrics"] = node.payload["smell"]
        return details

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------

    @_fail_soft(default=None)
    def highlight_changes(self, tracker: ChangeTracker) -> Optional[OverlaySession]:
        """Mark files changed in the current git session and focus the first one."""
        session_id = tracker.create_session_from_git_changes()
        changes: list[dict[str, Any]] = []
        paths: list[str] = []
        if session_id is not None:
            files = {f.id: f.path for f in self.store.list_files()} if self.store else {}
            for change in tracker.get_changes_by_session(session_id):
                path = files.get(change.file_id)
                if path is None:
                    continue
                paths.append(path)
                changes.append({"filePath": path, "summary": change.summary_text, "hunks": change.hunks_json})
        else:
            for change in tracker.get_current_branch_changes():
                paths.append(change.file_path)
                changes.append({"filePath": change.file_path, "diff": change.diff_text})

        self.session_id = session_id
        self._mark_changed(paths)
        return self._post(OverlaySession(session_id=session_id, changes=changes))

    @_fail_soft(default=None)
    def highlight_paths(self, paths: list[str], focus: bool = True) -> FilesChanged:
        """Mark ``paths`` as changed; optionally centre the first one."""
        changed = self._mark_changed(paths)
        if focus and changed:
            self.viewport.focus_on(changed[0], animate=True)
        return self._post(FilesChanged(paths=[n.path or n.id for n in changed]))

    def _mark_changed(self, paths: list[str]) -> list[MapNode]:
        wanted = set(paths)
        marked = []
        for node in self.graph.nodes:
            node.changed = (node.path in wanted or node.id in wanted) and node.kind == NodeKind.FILE
            if node.changed:
                marked.append(node)
        return marked

    @_fail_soft(default=None)
    def clear_overlays(self) -> OverlayClear:
        self.session_id = None
        for node in self.graph.nodes:
            node.changed = False
        return self._post(OverlayClear())

    # ------------------------------------------------------------------
    # Layout persistence
    # ------------------------------------------------------------------

    @_fail_soft(default=None)
    def load_layout(self, layout: dict[str, dict[str, float]]) -> None:
        """Replace the saved layout; applied on the next graph update."""
        self.layout = dict(layout)

    @_fail_soft(default=None)
    def save_layout(self) -> LayoutSave:
        message = LayoutSave(layout=dict(self.layout))
        if self.host is not None:
            try:
                self.host.write_layout(message.layout)
            except Exception:
                logger.exception("Host could not persist the layout")
        return self._post(message)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """Stop the simulation and drop every reference; safe to call twice."""
        if self.disposed:
            return
        self._stop_simulation()
        self._tick_listeners.clear()
        self._drag = None
        self._pointer = None
        self.graph = MapGraph()
        self.disposed = True
