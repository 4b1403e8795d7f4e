"""
Static brick-packing layout for the component view.

The component view shows each logical component as a box holding its files
(in a small grid on the left) and its external dependencies (in a column on
the right).  Nothing here is iterative: the same input always produces the
same positions, so re-renders of unchanged data do not move anything.

Two passes:

  1. Sizing: each component box is sized from its children.  File boxes
     are as wide as their label (``len * 7 + 20``, at least 80), laid out in
     2-4 columns; externals stack in a fixed-width column.  The box is at
     least 300 x 200.

  2. Placement: boxes are sorted widest first (area breaks near-ties) and
     placed one by one.  Each box scans a coarse grid of top-left candidates
     and keeps the one with the lowest score:

         aspect  = layout_height / layout_width      (after placing the box)
         penalty = aspect * 1000 if aspect > 1 else aspect * 200
         score   = penalty + 2 * y + 0.5 * x

     Candidates closer than the gap to a placed box are rejected.  The scan
     stops early once it finds a wide layout near the top-left corner.
     Overflow boxes (newly discovered files) go below everything else.

Every node placed here is pinned (``fx``/``fy``) so a simulation running in
this mode does no work on them.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from .config import PackingConfig
from .models import MapGraph, MapNode, NodeKind, kind_value

logger = logging.getLogger(__name__)

OVERFLOW_COMPONENT = "__new_files__"


@dataclass
class LayoutPosition:
    """Computed position for a node (box centre)."""
    x: float
    y: float


@dataclass
class ChildSlot:
    """A child box inside a component, relative to the component's top-left."""
    node_id: str
    x: float
    y: float
    width: float
    height: float


@dataclass
class ComponentBox:
    """A sized (and, after placement, positioned) component box."""
    id: str
    width: float
    height: float
    files: list[ChildSlot] = field(default_factory=list)
    externals: list[ChildSlot] = field(default_factory=list)
    columns: int = 2
    overflow: bool = False
    x: float = 0.0
    y: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class PackingResult:
    """Everything the packing pass decided."""
    positions: dict[str, LayoutPosition] = field(default_factory=dict)
    boxes: list[ComponentBox] = field(default_factory=list)
    unplaced: list[str] = field(default_factory=list)

    def box(self, component_id: str) -> Optional[ComponentBox]:
        for box in self.boxes:
            if box.id == component_id:
                return box
        return None


# ---------------------------------------------------------------------------
# Sizing pass
# ---------------------------------------------------------------------------

def file_box_width(label: str, config: PackingConfig) -> float:
    """Width of a file box, from its label length."""
    return max(config.file_min_width, len(label) * config.file_char_width + config.file_text_padding)


def size_component(
    component: MapNode,
    files: list[MapNode],
    externals: list[MapNode],
    config: Optional[PackingConfig] = None,
) -> ComponentBox:
    """Size one component box and lay out its children inside it."""
    cfg = config or PackingConfig()
    widths = [file_box_width(f.get_label(), cfg) for f in files]

    columns = min(cfg.max_columns, max(cfg.min_columns, math.ceil(math.sqrt(len(files)))))
    rows = math.ceil(len(files) / columns)

    col_widths = []
    for col in range(columns):
        widest = cfg.file_min_width
        for row in range(rows):
            idx = row * columns + col
            if idx < len(files):
                widest = max(widest, widths[idx])
        col_widths.append(widest)

    files_w = sum(col_widths) + (columns - 1) * cfg.file_spacing_x
    files_h = rows * (cfg.file_box_height + cfg.file_spacing_y)
    ext_step_gap = cfg.external_spacing_y - cfg.external_box_height
    externals_h = max(0.0, len(externals) * cfg.external_box_height + (len(externals) - 1) * ext_step_gap)

    width = max(
        cfg.min_box_width,
        files_w + 20 + cfg.external_box_width + cfg.content_padding * 2,
    )
    height = max(
        cfg.min_box_height,
        cfg.header_height + max(files_h, externals_h) + cfg.content_padding * 2,
    )

    top = cfg.header_height + cfg.content_padding
    box = ComponentBox(
        id=component.id,
        width=width,
        height=height,
        columns=columns,
        overflow=component.overflow or component.id == OVERFLOW_COMPONENT,
    )

    for idx, (node, w) in enumerate(zip(files, widths)):
        col = idx % columns
        row = idx // columns
        x = cfg.content_padding + sum(col_widths[:col]) + col * cfg.file_spacing_x
        y = top + row * (cfg.file_box_height + cfg.file_spacing_y)
        box.files.append(ChildSlot(node.id, x, y, w, cfg.file_box_height))

    ext_x = width - cfg.external_box_width - cfg.content_padding
    for idx, node in enumerate(externals):
        y = top + idx * cfg.external_spacing_y
        box.externals.append(
            ChildSlot(node.id, ext_x, y, cfg.external_box_width, cfg.external_box_height)
        )

    return box


# ---------------------------------------------------------------------------
# Placement pass
# ---------------------------------------------------------------------------

def _compare_boxes(a: ComponentBox, b: ComponentBox, width_tie: float) -> float:
    width_diff = b.width - a.width
    if abs(width_diff) > width_tie:
        return width_diff
    return b.area - a.area


def _blocked_intervals(
    y: float, box: ComponentBox, placed: list[ComponentBox], cfg: PackingConfig
) -> list[tuple[float, float]]:
    """Open x-intervals where a box with top ``y`` would come within the gap of a placed box."""
    intervals = []
    for other in placed:
        if y + box.height + cfg.gap_y <= other.y or y >= other.bottom + cfg.gap_y:
            continue
        intervals.append((other.x - box.width - cfg.gap_x, other.right + cfg.gap_x))
    return intervals


def overlaps(x: float, y: float, box: ComponentBox, placed: list[ComponentBox], cfg: PackingConfig) -> bool:
    """True when ``box`` at ``(x, y)`` comes within the gap of any placed box."""
    for other in placed:
        if not (
            x + box.width + cfg.gap_x <= other.x
            or x >= other.right + cfg.gap_x
            or y + box.height + cfg.gap_y <= other.y
            or y >= other.bottom + cfg.gap_y
        ):
            return True
    return False


def find_best_position(
    box: ComponentBox, placed: list[ComponentBox], config: Optional[PackingConfig] = None
) -> Optional[tuple[float, float]]:
    """Grid-search the best top-left corner for ``box``; ``None`` if no cell is free."""
    cfg = config or PackingConfig()
    max_x = cfg.start_x
    max_y = cfg.start_y
    for other in placed:
        max_x = max(max_x, other.right)
        max_y = max(max_y, other.bottom)

    best: Optional[tuple[float, float]] = None
    best_score = math.inf
    step = cfg.search_step
    cols = max(0, math.ceil((cfg.search_width - cfg.start_x) / step))
    rows = max(0, math.ceil((cfg.search_height - cfg.start_y) / step))

    for row in range(rows):
        y = cfg.start_y + row * step
        blocked = _blocked_intervals(y, box, placed, cfg)
        for col in range(cols):
            x = cfg.start_x + col * step
            if any(lo < x < hi for lo, hi in blocked):
                continue
            layout_w = max(max_x, x + box.width) - cfg.start_x
            layout_h = max(max_y, y + box.height) - cfg.start_y
            aspect = layout_h / max(layout_w, 1.0)
            penalty = aspect * 1000 if aspect > 1 else aspect * 200
            score = penalty + y * 2 + x * 0.5
            if score < best_score:
                best_score = score
                best = (x, y)
            if (
                aspect < cfg.early_exit_aspect
                and y < cfg.start_y + cfg.early_exit_dy
                and x < cfg.start_x + cfg.early_exit_dx
            ):
                return best
    return best


def place_boxes(boxes: list[ComponentBox], config: Optional[PackingConfig] = None) -> list[ComponentBox]:
    """Place boxes without overlap; returns them in placement order."""
    cfg = config or PackingConfig()
    regular = [b for b in boxes if not b.overflow]
    overflow = [b for b in boxes if b.overflow]
    ordered = sorted(
        regular,
        key=functools.cmp_to_key(lambda a, b: _compare_boxes(a, b, cfg.width_tie)),
    )

    placed: list[ComponentBox] = []
    for index, box in enumerate(ordered):
        if index == 0:
            box.x, box.y = cfg.start_x, cfg.start_y
        else:
            spot = find_best_position(box, placed, cfg)
            if spot is None:
                logger.warning(
                    "No free cell for component %s inside the %gx%g search area; placing below",
                    box.id, cfg.search_width, cfg.search_height,
                )
                spot = (cfg.start_x, _bottom(placed, cfg) + cfg.gap_y)
            box.x, box.y = spot
        placed.append(box)

    for box in overflow:
        box.x = cfg.start_x
        box.y = _bottom(placed, cfg) + cfg.gap_y
        placed.append(box)

    return placed


def _bottom(placed: list[ComponentBox], cfg: PackingConfig) -> float:
    return max([cfg.start_y] + [b.bottom for b in placed])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def pack_components(graph: MapGraph, config: Optional[PackingConfig] = None) -> PackingResult:
    """Size, place and pin every component box and its children.

    Mutates node positions, sizes and pins in place and returns the
    positions keyed by node id.  Children are found through ``contains`` and
    ``uses`` edges leaving a component; a child claimed by two components
    stays with the first one.  Nodes that belong to no component are pinned
    at the centre of the packed area.
    """
    cfg = config or PackingConfig()
    result = PackingResult()
    components = graph.nodes_of_kind(NodeKind.COMPONENT)
    if not components:
        logger.info("No components to pack")
        return result

    claimed: set[str] = set()
    boxes: list[ComponentBox] = []
    for component in components:
        files, externals = [], []
        for child in graph.children_of(component.id, ("contains", "uses")):
            if child.id in claimed:
                continue
            kind = kind_value(child.kind)
            if kind == NodeKind.FILE.value:
                files.append(child)
            elif kind == NodeKind.EXTERNAL.value:
                externals.append(child)
            else:
                continue
            claimed.add(child.id)
        boxes.append(size_component(component, files, externals, cfg))

    result.boxes = place_boxes(boxes, cfg)

    for box in result.boxes:
        component = graph.get_node(box.id)
        component.width = box.width
        component.height = box.height
        _pin(component, box.x + box.width / 2, box.y + box.height / 2, result)
        for slot in box.files + box.externals:
            child = graph.get_node(slot.node_id)
            child.width = slot.width
            child.height = slot.height
            child.parent_id = child.parent_id or box.id
            _pin(child, box.x + slot.x + slot.width / 2, box.y + slot.y + slot.height / 2, result)

    placed_ids = set(result.positions)
    leftovers = [n for n in graph.nodes if n.id not in placed_ids]
    if leftovers:
        min_x = min(b.x for b in result.boxes)
        min_y = min(b.y for b in result.boxes)
        max_x = max(b.right for b in result.boxes)
        max_y = max(b.bottom for b in result.boxes)
        cx, cy = (min_x + max_x) / 2, (min_y + max_y) / 2
        for node in leftovers:
            _pin(node, cx, cy, result)
            result.unplaced.append(node.id)
        logger.debug("%d nodes outside any component pinned at the centre", len(leftovers))

    return result


def _pin(node: MapNode, x: float, y: float, result: PackingResult) -> None:
    node.pin(x, y)
    result.positions[node.id] = LayoutPosition(x, y)
