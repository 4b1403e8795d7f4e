"""Codemap MCP server: MCP tools for laying out and rendering codebase maps."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .builder import build_component_graph
from .config import load_config
from .engine import LayoutEngine, ViewMode
from .interfaces import FileRecord, InMemoryStore
from .models import MapGraph, MapNode
from .packing import pack_components
from .parser import graph_to_yaml, parse_component_config, parse_yaml
from .renderer import MapRenderer
from .routing import route_connector
from .simulation import AsyncioTickSource

logger = logging.getLogger(__name__)


# --- Constants ---
OUTPUT_DIR = Path(os.environ.get("CODEMAP_OUTPUT_DIR", Path.home() / ".codemap" / "maps"))
LOG_LEVEL_ENV_VAR = "CODEMAP_LOG_LEVEL"

server = Server("codemap-mcp")


def _ensure_output_dir():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


def _text(payload: Any) -> list[TextContent]:
    if isinstance(payload, str):
        return [TextContent(type="text", text=payload)]
    return [TextContent(type="text", text=json.dumps(payload))]


_GRAPH_YAML = {
    "type": "string",
    "description": (
        "YAML graph document. Example:\n"
        "nodes:\n"
        "  - id: api\n"
        "    kind: component\n"
        "  - id: src/api/routes.py\n"
        "    kind: file\n"
        "edges:\n"
        "  - source: api\n"
        "    target: src/api/routes.py\n"
        "    kind: contains\n"
        "\n"
        "Node kinds: component, directory, file, external"
    ),
}

_MODE = {
    "type": "string",
    "enum": [m.value for m in ViewMode],
    "description": (
        "'components' packs component boxes statically, 'files' runs the "
        "directory-tree simulation, 'dependencies' lays out a flat file graph."
    ),
    "default": "dependencies",
}


# --- Tool definitions ---

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="render_map",
            description=(
                "Lay out a codebase map and render the current viewport to PNG. "
                "Give either a YAML graph document or a component config plus "
                "a list of file paths. Returns the path to the rendered PNG."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "graph_yaml": _GRAPH_YAML,
                    "component_config": {
                        "type": "string",
                        "description": "Component config YAML (project-spec.components). Implies mode 'components'.",
                    },
                    "files": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "File paths to group with component_config.",
                    },
                    "mode": _MODE,
                    "layout": {
                        "type": "string",
                        "enum": ["force", "hierarchical", "circular"],
                        "description": "Layout for the dependencies view (default force).",
                        "default": "force",
                    },
                    "zoom": {
                        "type": "number",
                        "description": (
                            "Zoom factor relative to the fitted view. Below the "
                            "semantic zoom threshold containers collapse to labels."
                        ),
                    },
                    "width": {"type": "number", "description": "Image width in pixels", "default": 1200},
                    "height": {"type": "number", "description": "Image height in pixels", "default": 800},
                    "theme": {"type": "string", "enum": ["dark", "light"], "default": "dark"},
                    "title": {"type": "string", "description": "Caption drawn in the corner"},
                    "filename": {
                        "type": "string",
                        "description": "Output filename (without extension). Default: auto-generated UUID.",
                    },
                },
            },
        ),
        Tool(
            name="pack_components",
            description=(
                "Run the static brick-packing layout on a component graph and "
                "return every component box and node position."
            ),
            inputSchema={
                "type": "object",
                "properties": {"graph_yaml": _GRAPH_YAML},
                "required": ["graph_yaml"],
            },
        ),
        Tool(
            name="route_connector",
            description=(
                "Route an orthogonal elbow connector between two boxes, detouring "
                "around obstacle boxes. Boxes are {x, y, width, height} with x/y the centre."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "source": {"type": "object", "description": "Source box"},
                    "target": {"type": "object", "description": "Target box"},
                    "obstacles": {
                        "type": "array",
                        "items": {"type": "object"},
                        "description": "Boxes the connector must avoid",
                    },
                },
                "required": ["source", "target"],
            },
        ),
        Tool(
            name="find_path",
            description="Shortest directed path between two nodes of a graph (breadth-first).",
            inputSchema={
                "type": "object",
                "properties": {
                    "graph_yaml": _GRAPH_YAML,
                    "source": {"type": "string", "description": "Start node id"},
                    "target": {"type": "string", "description": "End node id"},
                },
                "required": ["graph_yaml", "source", "target"],
            },
        ),
        Tool(
            name="simulate_layout",
            description=(
                "Run the force simulation on a graph until it settles and return "
                "the graph document with positions filled in."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "graph_yaml": _GRAPH_YAML,
                    "mode": _MODE,
                    "max_ticks": {
                        "type": "integer",
                        "description": "Stop after this many ticks even if still warm (default 3000)",
                        "default": 3000,
                    },
                    "interval_ms": {
                        "type": "number",
                        "description": "Delay between ticks on the event loop (default 0)",
                        "default": 0,
                    },
                },
                "required": ["graph_yaml"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    if name == "render_map":
        return await _render_map(arguments)
    elif name == "pack_components":
        return await _pack_components(arguments)
    elif name == "route_connector":
        return await _route_connector(arguments)
    elif name == "find_path":
        return await _find_path(arguments)
    elif name == "simulate_layout":
        return await _simulate_layout(arguments)
    else:
        return _text(f"Unknown tool: {name}")


def _graph_from_args(args: dict) -> tuple[MapGraph, Optional[str]]:
    """Graph from ``graph_yaml`` or from ``component_config`` + ``files``."""
    if args.get("component_config"):
        components = parse_component_config(args["component_config"])
        store = InMemoryStore(files=[
            FileRecord(id=i, path=path) for i, path in enumerate(args.get("files") or [])
        ])
        return build_component_graph(store, components), ViewMode.COMPONENTS.value
    if not args.get("graph_yaml"):
        raise ValueError("Provide graph_yaml or component_config")
    return parse_yaml(args["graph_yaml"]), None


async def _render_map(args: dict) -> list[TextContent]:
    """Lay out a graph and render it to PNG."""
    _ensure_output_dir()

    try:
        graph, implied_mode = _graph_from_args(args)
    except Exception as e:
        return _text(f"Failed to parse graph: {e}")

    try:
        config = load_config()
    except Exception as e:
        return _text(f"Failed to load config: {e}")

    mode = implied_mode or args.get("mode", ViewMode.DEPENDENCIES.value)
    engine = LayoutEngine(config=config, width=args.get("width", 1200), height=args.get("height", 800))
    try:
        update = engine.update_graph(graph, mode=mode, settle=True, layout=args.get("layout", "force"), fit=True)
        if args.get("zoom"):
            engine.viewport.zoom_by(float(args["zoom"]))

        renderer = MapRenderer(theme=args.get("theme", "dark"))
        filename = args.get("filename", str(uuid.uuid4())[:8])
        output_path = str(OUTPUT_DIR / f"{filename}.png")
        connectors = engine.connectors() if engine.mode == ViewMode.COMPONENTS else None
        renderer.render(engine.graph, engine.viewport, output_path=output_path,
                        connectors=connectors, title=args.get("title"))
        detail = engine.viewport.detail_level
        zoom = engine.viewport.transform.k
    except Exception as e:
        logger.exception("render_map failed")
        return _text(f"Rendering failed: {e}")
    finally:
        engine.dispose()

    return _text({
        "status": "success",
        "path": output_path,
        "mode": mode,
        "nodes": len(update.nodes),
        "edges": len(update.edges),
        "empty": update.empty_message is not None,
        "zoom": round(zoom, 4),
        "detail": detail,
    })


async def _pack_components(args: dict) -> list[TextContent]:
    """Pack component boxes and report positions."""
    try:
        graph = parse_yaml(args["graph_yaml"])
        result = pack_components(graph, load_config().packing)
    except Exception as e:
        return _text(f"Packing failed: {e}")

    return _text({
        "status": "success",
        "boxes": [
            {"id": b.id, "x": b.x, "y": b.y, "width": b.width, "height": b.height}
            for b in result.boxes
        ],
        "positions": {nid: {"x": p.x, "y": p.y} for nid, p in result.positions.items()},
        "unplaced": result.unplaced,
    })


def _box_node(node_id: str, box: dict, kind: str = "file") -> MapNode:
    return MapNode(
        id=str(box.get("id", node_id)),
        kind=box.get("kind", kind),
        x=float(box.get("x", 0.0)),
        y=float(box.get("y", 0.0)),
        width=box.get("width"),
        height=box.get("height"),
    )


async def _route_connector(args: dict) -> list[TextContent]:
    """Route one elbow connector."""
    try:
        source = _box_node("__source__", args["source"], kind="external")
        target = _box_node("__target__", args["target"])
        obstacles = [_box_node(f"__obstacle_{i}__", box) for i, box in enumerate(args.get("obstacles") or [])]
        connector = route_connector(source, target, [source, target] + obstacles, load_config().routing)
    except Exception as e:
        return _text(f"Routing failed: {e}")

    return _text({
        "status": "success",
        "points": [list(p) for p in connector.points],
        "rerouted": connector.rerouted,
        "length": connector.length,
        "path": connector.path_d(),
        "rounded_path": connector.rounded_path_d(),
    })


async def _find_path(args: dict) -> list[TextContent]:
    """Breadth-first path between two nodes."""
    try:
        graph = parse_yaml(args["graph_yaml"])
    except Exception as e:
        return _text(f"Failed to parse graph: {e}")

    engine = LayoutEngine()
    try:
        engine.update_graph(graph, mode=ViewMode.DEPENDENCIES, layout="circular")
        result = engine.find_path(args["source"], args["target"])
    finally:
        engine.dispose()
    return _text({"status": "success", "source": result.source, "target": result.target, "path": result.path})


async def _simulate_layout(args: dict) -> list[TextContent]:
    """Run the force simulation on the event loop until it settles."""
    try:
        graph = parse_yaml(args["graph_yaml"])
        config = load_config()
    except Exception as e:
        return _text(f"Failed to parse graph: {e}")

    mode = args.get("mode", ViewMode.DEPENDENCIES.value)
    max_ticks = int(args.get("max_ticks", config.simulation.max_ticks))
    config.simulation.interval_ms = float(args.get("interval_ms", 0))

    loop = asyncio.get_running_loop()
    done: asyncio.Future = loop.create_future()
    engine = LayoutEngine(config=config, tick_source=AsyncioTickSource(loop))

    def _check_tick_limit(eng: LayoutEngine) -> None:
        if eng.simulation is not None and eng.simulation.ticks >= max_ticks and not done.done():
            eng.simulation.stop()
            done.set_result("max_ticks")

    engine.on_tick(_check_tick_limit)
    try:
        engine.update_graph(graph, mode=mode)
        if engine.simulation is None:
            settled = "static"
        else:
            engine.simulation.on("end", lambda _sim: done.done() or done.set_result("settled"))
            settled = await done
        ticks = engine.simulation.ticks if engine.simulation else 0
        nan_resets = engine.simulation.nan_resets if engine.simulation else 0
        document = graph_to_yaml(engine.graph)
    except Exception as e:
        logger.exception("simulate_layout failed")
        return _text(f"Simulation failed: {e}")
    finally:
        engine.dispose()

    return _text({
        "status": settled,
        "mode": mode,
        "ticks": ticks,
        "nan_resets": nan_resets,
        "graph_yaml": document,
    })


def main():
    """Entry point for the MCP server."""
    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING").upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    asyncio.run(_run())


async def _run():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


if __name__ == "__main__":
    main()
