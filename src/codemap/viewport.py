"""
Viewport and semantic zoom for codemap.

The viewport owns one ``Transform`` (scale ``k`` and offset ``x``/``y``)
mapping graph space to screen space:

    screen = graph * k + offset
    graph  = (screen - offset) / k

Zooming is *semantic*: below ``zoom_threshold`` the map switches to a
collapsed view where container boxes are filled with their colour and show
one big label, and everything inside them (files, externals, connectors)
is hidden and ignores the pointer.  Above the threshold the full detail
comes back.

The controller also answers "what is under the pointer" (``hit_test``) and
"what is in the middle of the screen" (``centered_node``), and computes
fit/reset transforms with an eased animation the host advances frame by
frame.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .config import ViewportConfig
from .models import CONTAINER_KINDS, MapGraph, MapNode, kind_value

logger = logging.getLogger(__name__)

DETAIL_FULL = "full"
DETAIL_COLLAPSED = "collapsed"


@dataclass
class Transform:
    """Pan/zoom state: ``screen = graph * k + (x, y)``."""
    k: float = 1.0
    x: float = 0.0
    y: float = 0.0

    def apply(self, gx: float, gy: float) -> tuple[float, float]:
        return gx * self.k + self.x, gy * self.k + self.y

    def invert(self, px: float, py: float) -> tuple[float, float]:
        return (px - self.x) / self.k, (py - self.y) / self.k

    def copy(self) -> "Transform":
        return Transform(self.k, self.x, self.y)


def ease_out_cubic(p: float) -> float:
    return 1 - (1 - p) ** 3


class TransformAnimation:
    """Eased interpolation between two transforms in a fixed number of steps."""

    def __init__(self, start: Transform, end: Transform, duration_ms: float = 750.0, steps: int = 30):
        self.start = start.copy()
        self.end = end.copy()
        self.duration_ms = duration_ms
        self.steps = max(1, steps)
        self.elapsed_ms = 0.0
        self.step_index = 0

    @property
    def done(self) -> bool:
        return self.step_index >= self.steps

    def at(self, progress: float) -> Transform:
        if progress >= 1:
            return self.end.copy()
        e = ease_out_cubic(max(0.0, progress))
        return Transform(
            self.start.k + (self.end.k - self.start.k) * e,
            self.start.x + (self.end.x - self.start.x) * e,
            self.start.y + (self.end.y - self.start.y) * e,
        )

    def step(self, elapsed_ms: float) -> Transform:
        """Advance by ``elapsed_ms`` and return the transform for the current step."""
        self.elapsed_ms += elapsed_ms
        step_ms = self.duration_ms / self.steps
        self.step_index = min(self.steps, int(self.elapsed_ms / step_ms) if step_ms > 0 else self.steps)
        return self.at(self.step_index / self.steps)


@dataclass
class FittedLabel:
    lines: list[str]
    font_size: float
    line_height: float

    @property
    def height(self) -> float:
        return len(self.lines) * self.line_height


def _two_line_split(words: list[str]) -> list[str]:
    half = math.ceil(len(words) / 2)
    return [" ".join(words[:half]), " ".join(words[half:])]


def fit_label(text: str, width: float, height: float, config: Optional[ViewportConfig] = None) -> FittedLabel:
    """Largest font that fits ``text`` in the box on one or two lines.

    Text width is estimated as ``chars * char_width * font``.  The size is
    found by binary search, capped at ``min(label_max_font, avail_h / 3)``.
    A two-line layout splits the words at ``ceil(n / 2)``.
    """
    cfg = config or ViewportConfig()
    avail_w = max(0.0, width - 2 * cfg.label_padding)
    avail_h = max(0.0, height - 2 * cfg.label_padding)
    upper = min(cfg.label_max_font, avail_h / 3)
    lower = cfg.label_min_font

    words = text.split()
    layouts = [[text]]
    if len(words) > 1:
        layouts.append(_two_line_split(words))

    def fits(lines: list[str], size: float) -> bool:
        longest = max(len(line) for line in lines)
        return (
            longest * cfg.label_char_width * size <= avail_w
            and len(lines) * cfg.label_line_height * size <= avail_h
        )

    best_lines, best_size = layouts[-1], lower
    for lines in layouts:
        if upper < lower or not fits(lines, lower):
            continue
        lo, hi = lower, upper
        for _ in range(20):
            mid = (lo + hi) / 2
            if fits(lines, mid):
                lo = mid
            else:
                hi = mid
        size = hi if fits(lines, hi) else lo
        if size > best_size or (size == best_size and len(lines) < len(best_lines)):
            best_lines, best_size = lines, size

    return FittedLabel(best_lines, best_size, best_size * cfg.label_line_height)


@dataclass
class NodeRenderState:
    """How one node should be drawn at the current zoom."""
    node_id: str
    visible: bool = True
    filled: bool = False
    pointer_events: bool = True
    header_visible: bool = False
    opacity: float = 1.0
    fill_color: Optional[str] = None
    label: Optional[FittedLabel] = None


@dataclass
class SceneState:
    """Render decisions for a whole graph at one zoom level."""
    detail: str
    nodes: dict[str, NodeRenderState] = field(default_factory=dict)
    edges_visible: bool = True

    def visible_ids(self) -> set[str]:
        return {nid for nid, state in self.nodes.items() if state.visible}

    def visible_edges(self, graph: MapGraph):
        if not self.edges_visible:
            return []
        return graph.visible_edges(self.visible_ids())


class ViewportController:
    """Pan/zoom state and semantic zoom for one map panel."""

    def __init__(self, width: Optional[float] = None, height: Optional[float] = None,
                 config: Optional[ViewportConfig] = None):
        self.config = config or ViewportConfig()
        self.width = width if width else self.config.width
        self.height = height if height else self.config.height
        self._transform = Transform()
        self._pan_origin: Optional[tuple[float, float]] = None
        self._listeners: list[Callable[[Transform], None]] = []
        self.animation: Optional[TransformAnimation] = None

    # --- transform ---------------------------------------------------------

    @property
    def transform(self) -> Transform:
        return self._transform.copy()

    def set_transform(self, transform: Transform) -> None:
        self._transform = transform.copy()
        self._notify()

    def on_change(self, callback: Callable[[Transform], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self.transform)
            except Exception:
                logger.exception("Viewport change listener failed")

    def resize(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            logger.warning("Ignoring viewport resize to %sx%s", width, height)
            return
        self.width = width
        self.height = height

    def screen_to_graph(self, px: float, py: float) -> tuple[float, float]:
        return self._transform.invert(px, py)

    def graph_to_screen(self, gx: float, gy: float) -> tuple[float, float]:
        return self._transform.apply(gx, gy)

    # --- zoom and pan ------------------------------------------------------

    def zoom_by(self, factor: float, px: Optional[float] = None, py: Optional[float] = None) -> Transform:
        """Scale by ``factor`` keeping screen point ``(px, py)`` fixed."""
        if px is None:
            px = self.width / 2
        if py is None:
            py = self.height / 2
        t = self._transform
        new_k = max(self.config.min_scale, min(self.config.max_scale, t.k * factor))
        ratio = new_k / t.k
        self._transform = Transform(new_k, px - (px - t.x) * ratio, py - (py - t.y) * ratio)
        self._notify()
        return self.transform

    def wheel(self, px: float, py: float, delta_y: float, shift: bool = False) -> Transform:
        """Zoom in for negative ``delta_y`` (scroll up), out otherwise."""
        zoom_in = delta_y < 0
        if shift:
            factor = self.config.fast_wheel_in if zoom_in else self.config.fast_wheel_out
        else:
            factor = self.config.wheel_in if zoom_in else self.config.wheel_out
        return self.zoom_by(factor, px, py)

    def pan_start(self, px: float, py: float) -> None:
        self.animation = None
        self._pan_origin = (px - self._transform.x, py - self._transform.y)

    def pan_move(self, px: float, py: float) -> Optional[Transform]:
        if self._pan_origin is None:
            return None
        ox, oy = self._pan_origin
        self._transform = Transform(self._transform.k, px - ox, py - oy)
        self._notify()
        return self.transform

    def pan_end(self) -> None:
        self._pan_origin = None

    @property
    def panning(self) -> bool:
        return self._pan_origin is not None

    # --- semantic zoom -----------------------------------------------------

    @property
    def detail_level(self) -> str:
        return DETAIL_COLLAPSED if self._transform.k < self.config.zoom_threshold else DETAIL_FULL

    @property
    def collapsed(self) -> bool:
        return self.detail_level == DETAIL_COLLAPSED

    def render_state(self, graph: MapGraph) -> SceneState:
        """Per-node draw decisions for the current zoom.

        Collapsing only hides leaves when the graph has containers to fold
        them into; a flat dependency graph keeps its nodes at any zoom.
        """
        detail = self.detail_level
        has_containers = any(n.kind in CONTAINER_KINDS for n in graph.nodes)
        collapse = detail == DETAIL_COLLAPSED and has_containers
        scene = SceneState(detail=detail, edges_visible=not collapse)
        cfg = self.config

        for node in graph.nodes:
            label = node.get_label()
            if node.kind in CONTAINER_KINDS:
                if collapse:
                    state = NodeRenderState(
                        node.id,
                        filled=True,
                        header_visible=False,
                        opacity=cfg.collapsed_opacity,
                        fill_color=node.color,
                        label=fit_label(label, node.width, node.height, cfg),
                    )
                else:
                    state = NodeRenderState(
                        node.id,
                        header_visible=True,
                        label=FittedLabel([label], cfg.detail_font, cfg.detail_font * cfg.label_line_height),
                    )
            elif collapse:
                state = NodeRenderState(node.id, visible=False, pointer_events=False)
            else:
                state = NodeRenderState(
                    node.id,
                    label=FittedLabel([label], cfg.detail_font, cfg.detail_font * cfg.label_line_height),
                )
            scene.nodes[node.id] = state
        return scene

    # --- hit testing -------------------------------------------------------

    def hit_test(self, graph: MapGraph, px: float, py: float) -> Optional[MapNode]:
        """Node under screen point ``(px, py)``; leaves win over containers.

        Nodes hidden at the current zoom are never hit.  Among overlapping
        candidates the one drawn last wins.
        """
        gx, gy = self.screen_to_graph(px, py)
        scene = self.render_state(graph)
        leaf: Optional[MapNode] = None
        container: Optional[MapNode] = None
        for node in graph.nodes:
            state = scene.nodes[node.id]
            if not (state.visible and state.pointer_events):
                continue
            left, top, right, bottom = node.box()
            if left <= gx <= right and top <= gy <= bottom:
                if node.kind in CONTAINER_KINDS:
                    container = node
                else:
                    leaf = node
        return leaf or container

    def centered_node(self, graph: MapGraph, kinds: Optional[Iterable[str]] = None) -> Optional[MapNode]:
        """Nearest node to the viewport centre whose half-size exceeds the distance."""
        cx, cy = self.screen_to_graph(self.width / 2, self.height / 2)
        wanted = {kind_value(k) for k in kinds} if kinds is not None else None
        best: Optional[MapNode] = None
        best_distance = math.inf
        for node in graph.nodes:
            if wanted is not None and kind_value(node.kind) not in wanted:
                continue
            distance = math.hypot(node.x - cx, node.y - cy)
            if max(node.width, node.height) / 2 > distance and distance < best_distance:
                best = node
                best_distance = distance
        return best

    # --- fit / focus -------------------------------------------------------

    def fit_transform(self, bounds: tuple[float, float, float, float]) -> Transform:
        """Transform that centres ``bounds`` and scales it to ``fit_fraction`` of the viewport."""
        min_x, min_y, max_x, max_y = bounds
        bw = max(max_x - min_x, 1.0)
        bh = max(max_y - min_y, 1.0)
        scale = self.config.fit_fraction / max(bw / self.width, bh / self.height)
        scale = max(self.config.min_scale, min(self.config.max_scale, scale))
        mid_x = (min_x + max_x) / 2
        mid_y = (min_y + max_y) / 2
        return Transform(scale, self.width / 2 - scale * mid_x, self.height / 2 - scale * mid_y)

    def _go_to(self, target: Transform, animate: bool) -> Optional[TransformAnimation]:
        if not animate:
            self.animation = None
            self.set_transform(target)
            return None
        self.animation = TransformAnimation(
            self._transform, target, self.config.animation_ms, self.config.animation_steps
        )
        return self.animation

    def reset_view(self, graph: MapGraph, animate: bool = True) -> Optional[TransformAnimation]:
        """Fit every positioned node; returns the animation when ``animate``."""
        bounds = graph.bounds()
        if bounds is None:
            logger.debug("reset_view on an empty graph")
            return None
        return self._go_to(self.fit_transform(bounds), animate)

    def focus_on(self, node: MapNode, animate: bool = True) -> Optional[TransformAnimation]:
        """Centre ``node`` without changing the zoom."""
        k = self._transform.k
        target = Transform(k, self.width / 2 - k * node.x, self.height / 2 - k * node.y)
        return self._go_to(target, animate)

    def advance(self, elapsed_ms: float) -> bool:
        """Advance the running animation; returns True while it is still running."""
        if self.animation is None:
            return False
        self.set_transform(self.animation.step(elapsed_ms))
        if self.animation.done:
            self.animation = None
            return False
        return True
