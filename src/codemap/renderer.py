"""Map renderer using Pillow: draws the current viewport of a codebase map to PNG."""

from __future__ import annotations

import math
from io import BytesIO
from pathlib import Path
from typing import Iterable, Optional

from PIL import Image, ImageDraw, ImageFont

from .exceptions import RenderSurfaceError
from .messages import EMPTY_STATE_MESSAGE
from .models import CONTAINER_KINDS, MapGraph, MapNode, NodeKind, kind_value
from .routing import Connector
from .themes import CHANGED_FILL, CHANGED_STROKE, KIND_COLORS, ThemePalette, get_theme
from .viewport import SceneState, Transform, ViewportController


# --- Font handling ---

def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a font, falling back to default if none available."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return ImageFont.load_default()


def _load_bold_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load a bold font, falling back to regular."""
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
        "/usr/share/fonts/TTF/DejaVuSans-Bold.ttf",
    ]
    for fp in font_paths:
        if Path(fp).exists():
            return ImageFont.truetype(fp, size)
    return _load_font(size)


# --- Color helpers ---

def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert hex color to RGB tuple. Supports both 3-char and 6-char hex."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = hex_color[0]*2 + hex_color[1]*2 + hex_color[2]*2
    return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))


def _hex_to_rgba(hex_color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    """Convert hex color to RGBA tuple."""
    r, g, b = _hex_to_rgb(hex_color)
    return (r, g, b, alpha)


def _darken(hex_color: str, factor: float = 0.6) -> str:
    """Darken a hex color."""
    r, g, b = _hex_to_rgb(hex_color)
    return f"#{int(r * factor):02x}{int(g * factor):02x}{int(b * factor):02x}"


def _blend(hex_color: str, background: str, opacity: float) -> str:
    """Mix ``hex_color`` over ``background`` at ``opacity`` (0..1)."""
    fr, fg, fb = _hex_to_rgb(hex_color)
    br, bg, bb = _hex_to_rgb(background)
    r = int(br + (fr - br) * opacity)
    g = int(bg + (fg - bg) * opacity)
    b = int(bb + (fb - bb) * opacity)
    return f"#{r:02x}{g:02x}{b:02x}"


# --- Drawing primitives ---

def _draw_arrow_head(
    draw: ImageDraw.ImageDraw,
    start: tuple[float, float],
    end: tuple[float, float],
    color: str,
    arrow_size: float = 8,
):
    """Filled triangle at ``end`` pointing away from ``start``."""
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = math.hypot(dx, dy)
    if length == 0:
        return
    udx = dx / length
    udy = dy / length
    ax = end[0] - arrow_size * udx + (arrow_size / 2) * udy
    ay = end[1] - arrow_size * udy - (arrow_size / 2) * udx
    bx = end[0] - arrow_size * udx - (arrow_size / 2) * udy
    by = end[1] - arrow_size * udy + (arrow_size / 2) * udx
    draw.polygon([end, (ax, ay), (bx, by)], fill=color)


def _border_point(node: MapNode, toward: tuple[float, float]) -> tuple[float, float]:
    """Point where the ray from the node centre to ``toward`` leaves its box."""
    dx = toward[0] - node.x
    dy = toward[1] - node.y
    if dx == 0 and dy == 0:
        return node.x, node.y
    hw = node.width / 2
    hh = node.height / 2
    t = min(hw / abs(dx) if dx else math.inf, hh / abs(dy) if dy else math.inf)
    return node.x + dx * t, node.y + dy * t


# --- Main renderer ---

class MapRenderer:
    """Renders one viewport of a ``MapGraph`` to a PNG image."""

    CORNER_RADIUS = 8
    HEADER_HEIGHT = 50
    TEXT_PADDING = 10
    MIN_FONT = 6

    def __init__(self, theme: str = "dark"):
        self.theme: ThemePalette = get_theme(theme)
        self._fonts: dict[tuple[int, bool], ImageFont.FreeTypeFont | ImageFont.ImageFont] = {}

    def _font(self, size: float, bold: bool = False):
        key = (max(self.MIN_FONT, int(round(size))), bold)
        if key not in self._fonts:
            self._fonts[key] = _load_bold_font(key[0]) if bold else _load_font(key[0])
        return self._fonts[key]

    def render(
        self,
        graph: MapGraph,
        viewport: ViewportController,
        output_path: Optional[str] = None,
        connectors: Optional[Iterable[Connector]] = None,
        title: Optional[str] = None,
    ) -> bytes:
        """Render what ``viewport`` currently shows of ``graph`` to PNG bytes.

        Args:
            graph: The laid-out graph.
            viewport: Supplies the image size, transform and semantic zoom.
            output_path: Optional path to save the PNG.
            connectors: Routed elbow connectors; when ``None`` visible edges
                        are drawn as straight arrows between box borders.
            title: Optional caption in the top-left corner.

        Raises:
            RenderSurfaceError: If the image size is unusable or the file
                                cannot be written.
        """
        width = int(viewport.width)
        height = int(viewport.height)
        if width <= 0 or height <= 0:
            raise RenderSurfaceError(output_path or "<memory>", f"invalid image size {width}x{height}")

        img = Image.new("RGBA", (width, height), _hex_to_rgba(self.theme.background))
        draw = ImageDraw.Draw(img)
        transform = viewport.transform

        if graph.is_empty():
            self._draw_empty_state(draw, width, height)
        else:
            scene = viewport.render_state(graph)
            for node in graph.nodes:
                if node.kind in CONTAINER_KINDS:
                    self._draw_container(draw, node, scene, transform)
            if connectors is not None:
                self._draw_connectors(draw, list(connectors), scene, transform)
            else:
                self._draw_edges(draw, graph, scene, transform)
            for node in graph.nodes:
                if node.kind not in CONTAINER_KINDS and scene.nodes[node.id].visible:
                    self._draw_leaf(draw, node, scene, transform)

        if title:
            draw.text((16, 12), title, fill=self.theme.title_color, font=self._font(20, bold=True))

        buf = BytesIO()
        img.save(buf, format="PNG", optimize=True)
        png_bytes = buf.getvalue()

        if output_path:
            try:
                Path(output_path).write_bytes(png_bytes)
            except OSError as e:
                raise RenderSurfaceError(output_path, str(e)) from e

        return png_bytes

    # --- pieces ----------------------------------------------------------

    def _screen_box(self, node: MapNode, t: Transform) -> tuple[float, float, float, float]:
        left, top, right, bottom = node.box()
        x1, y1 = t.apply(left, top)
        x2, y2 = t.apply(right, bottom)
        return x1, y1, x2, y2

    def _draw_empty_state(self, draw: ImageDraw.ImageDraw, width: int, height: int):
        font = self._font(18)
        bbox = font.getbbox(EMPTY_STATE_MESSAGE)
        tw = bbox[2] - bbox[0]
        th = bbox[3] - bbox[1]
        draw.text(
            ((width - tw) / 2, (height - th) / 2),
            EMPTY_STATE_MESSAGE,
            fill=self.theme.muted_text_color,
            font=font,
        )

    def _draw_container(self, draw: ImageDraw.ImageDraw, node: MapNode, scene: SceneState, t: Transform):
        state = scene.nodes[node.id]
        if not state.visible:
            return
        x1, y1, x2, y2 = self._screen_box(node, t)
        color = node.color or KIND_COLORS.get(kind_value(node.kind), "#607D8B")
        radius = max(1, int(self.CORNER_RADIUS * t.k))

        if state.filled:
            fill = _blend(state.fill_color or color, self.theme.background, state.opacity)
            draw.rounded_rectangle([x1, y1, x2, y2], radius=radius, fill=fill, outline=color, width=2)
            if state.label is not None:
                font = self._font(state.label.font_size * t.k, bold=True)
                line_h = state.label.line_height * t.k
                total = line_h * len(state.label.lines)
                cy = (y1 + y2) / 2 - total / 2
                for i, line in enumerate(state.label.lines):
                    bbox = font.getbbox(line)
                    tw = bbox[2] - bbox[0]
                    draw.text(((x1 + x2) / 2 - tw / 2, cy + i * line_h), line, fill="#ffffff", font=font)
            return

        draw.rounded_rectangle([x1, y1, x2, y2], radius=radius, fill=self.theme.box_fill, outline=color, width=2)
        if state.header_visible:
            header_bottom = min(y2, y1 + self.HEADER_HEIGHT * t.k)
            draw.rounded_rectangle([x1, y1, x2, header_bottom], radius=radius, fill=_darken(color, 0.5))
            font = self._font((state.label.font_size if state.label else 18) * t.k, bold=True)
            draw.text(
                (x1 + self.TEXT_PADDING * t.k, y1 + self.TEXT_PADDING * t.k),
                node.get_label(),
                fill=self.theme.title_color,
                font=font,
            )

    def _draw_leaf(self, draw: ImageDraw.ImageDraw, node: MapNode, scene: SceneState, t: Transform):
        x1, y1, x2, y2 = self._screen_box(node, t)
        radius = max(1, int(4 * t.k))
        if node.kind == NodeKind.EXTERNAL:
            fill, text_color, outline = self.theme.external_fill, self.theme.external_text, node.color or KIND_COLORS["external"]
        else:
            fill, text_color, outline = self.theme.file_fill, self.theme.label_color, node.color or KIND_COLORS["file"]
        if node.changed:
            fill, text_color, outline = CHANGED_FILL, "#000000", CHANGED_STROKE

        draw.rounded_rectangle([x1, y1, x2, y2], radius=radius, fill=fill, outline=outline, width=3 if node.changed else 1)

        state = scene.nodes[node.id]
        size = (state.label.font_size if state.label else 12) * t.k * 0.6
        font = self._font(size)
        label = node.get_label()
        bbox = font.getbbox(label)
        tw = bbox[2] - bbox[0]
        th = bbox[3] - bbox[1]
        if tw <= (x2 - x1) - 4:
            draw.text(((x1 + x2) / 2 - tw / 2, (y1 + y2) / 2 - th / 2), label, fill=text_color, font=font)

    def _draw_connectors(self, draw: ImageDraw.ImageDraw, connectors: list[Connector], scene: SceneState, t: Transform):
        if not scene.edges_visible:
            return
        visible = scene.visible_ids()
        for connector in connectors:
            if connector.source_id not in visible or connector.target_id not in visible:
                continue
            points = [t.apply(x, y) for x, y in connector.points]
            if len(points) < 2:
                continue
            draw.line(points, fill=self.theme.connector, width=2, joint="curve")
            _draw_arrow_head(draw, points[-2], points[-1], self.theme.connector)

    def _draw_edges(self, draw: ImageDraw.ImageDraw, graph: MapGraph, scene: SceneState, t: Transform):
        visible = scene.visible_ids()
        if not scene.edges_visible:
            return
        for edge, source, target in graph.resolved_edges():
            if source.id not in visible or target.id not in visible or source is target:
                continue
            # component membership is shown by nesting
            if edge.kind_name == "contains" and source.kind == NodeKind.COMPONENT:
                continue
            start = t.apply(*_border_point(source, (target.x, target.y)))
            end = t.apply(*_border_point(target, (source.x, source.y)))
            color = edge.color or self.theme.edge
            draw.line([start, end], fill=color, width=max(1, int(round(1 + edge.weight * 0.5))))
            _draw_arrow_head(draw, start, end, color)
