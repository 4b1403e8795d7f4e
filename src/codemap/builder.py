"""Build map graphs from the indexer's records.

Three views are built here:

    build_component_graph
        component boxes holding files and externals, laid out by the
        static packing pass
    build_files_graph
        the directory tree with files, laid out by the force simulation
    build_dependency_graph
        files only, joined by aggregated cross-file relationships

Node ids are stable strings: ``component:<key>``, ``external:<key>:<name>``,
``dir:<path>`` and the plain file path for files.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Iterable, Optional

from .interfaces import GraphStore
from .models import EdgeKind, MapEdge, MapGraph, MapNode, NodeKind
from .packing import OVERFLOW_COMPONENT
from .parser import ComponentSpec, component_for_file
from .themes import KIND_COLORS, NEW_FILES_COLOR, hash_string_to_color

logger = logging.getLogger(__name__)

# File boxes in the files view scale with line count
FILE_MIN_SIZE = 150.0
FILE_MAX_SIZE = 350.0
FILE_MAX_LINES = 3000
CHARS_PER_LINE = 50

# Directory boxes shrink with depth
DIRECTORY_SIZES = [600.0, 450.0, 320.0, 240.0]
DIRECTORY_FONTS = [72.0, 48.0, 28.0, 18.0]

_SKIPPED_SUFFIXES = (".md", ".txt", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".bmp", ".webp", ".ico")


def _by_depth(table: list[float], depth: int) -> float:
    return table[min(depth, len(table) - 1)]


def estimate_lines(size: int) -> int:
    """Line count estimated from a byte size (about 50 chars per line)."""
    return max(1, size // CHARS_PER_LINE)


def file_size_for_lines(lines: int) -> float:
    """Box width for a file: 150 px for one line up to 350 px at 3000 lines."""
    if lines <= 1:
        return FILE_MIN_SIZE
    if lines >= FILE_MAX_LINES:
        return FILE_MAX_SIZE
    return FILE_MIN_SIZE + (lines - 1) / (FILE_MAX_LINES - 1) * (FILE_MAX_SIZE - FILE_MIN_SIZE)


def component_id(key: str) -> str:
    return f"component:{key}"


def external_id(key: str, name: str) -> str:
    return f"external:{key}:{name}"


def directory_id(path: str) -> str:
    return f"dir:{path}"


def aggregate_file_edges(store: GraphStore) -> list[MapEdge]:
    """Collapse symbol-level edges into file-level edges.

    Edges inside one file are dropped; parallel edges of the same kind
    between two files are merged with their weights summed.
    """
    symbol_paths = {n.id: n.path for n in store.list_nodes()}
    merged: dict[tuple[str, str, str], float] = {}
    for edge in store.list_edges():
        src = symbol_paths.get(edge.src)
        dst = symbol_paths.get(edge.dst)
        if src is None or dst is None or src == dst:
            continue
        key = (src, dst, edge.kind)
        merged[key] = merged.get(key, 0.0) + edge.weight
    return [
        MapEdge(source_id=src, target_id=dst, kind=kind, weight=weight)
        for (src, dst, kind), weight in merged.items()
    ]


def _smell_payloads(store: GraphStore) -> dict[int, dict]:
    return {s.file_id: s.model_dump(exclude={"file_id"}) for s in store.list_file_smells()}


# ---------------------------------------------------------------------------
# Component view
# ---------------------------------------------------------------------------

def _synthetic_paths(components: list[ComponentSpec], indexed: set[str]) -> list[str]:
    """Files named explicitly in the config that the indexer has not seen."""
    paths = []
    for component in components:
        for pattern in component.files:
            path = pattern.replace("\\", "/")
            if "*" in path or path.endswith("/") or path.lower().endswith(_SKIPPED_SUFFIXES):
                continue
            if path not in indexed:
                indexed.add(path)
                paths.append(path)
    return paths


def build_component_graph(
    store: GraphStore,
    components: list[ComponentSpec],
    new_file_paths: Iterable[str] = (),
) -> MapGraph:
    """Component boxes with their files and externals.

    Newly added files are gathered in the overflow ``__new_files__``
    component.  Files no component claims are kept as loose nodes.
    Components with neither files nor externals are left out.
    """
    new_paths = set(new_file_paths)
    files = store.list_files()
    smells = _smell_payloads(store)
    indexed = {f.path for f in files}
    synthetic = _synthetic_paths(components, indexed)

    owner: dict[str, Optional[str]] = {}
    files_by_component: dict[str, list[str]] = {}
    for path in [f.path for f in files] + synthetic:
        if path in new_paths:
            key = OVERFLOW_COMPONENT
        else:
            spec = component_for_file(path, components)
            key = spec.key if spec else None
        owner[path] = key
        if key:
            files_by_component.setdefault(key, []).append(path)

    graph = MapGraph()
    colors: dict[str, str] = {}

    if files_by_component.get(OVERFLOW_COMPONENT):
        colors[OVERFLOW_COMPONENT] = NEW_FILES_COLOR
        graph.add_node(MapNode(
            id=component_id(OVERFLOW_COMPONENT),
            kind=NodeKind.COMPONENT,
            label="New Files",
            path=OVERFLOW_COMPONENT,
            color=NEW_FILES_COLOR,
            overflow=True,
            payload={"description": "Newly added files"},
        ))

    for spec in components:
        if not files_by_component.get(spec.key) and not spec.external:
            logger.debug("Skipping component %s: no files or externals", spec.name)
            continue
        color = hash_string_to_color(spec.name)
        colors[spec.key] = color
        cid = component_id(spec.key)
        graph.add_node(MapNode(
            id=cid,
            kind=NodeKind.COMPONENT,
            label=spec.name,
            path=spec.key,
            color=color,
            payload={"description": spec.description, "file_count": len(files_by_component.get(spec.key, []))},
        ))
        for ext in spec.external:
            eid = external_id(spec.key, ext.name)
            graph.add_node(MapNode(
                id=eid,
                kind=NodeKind.EXTERNAL,
                label=ext.name,
                path=f"{spec.key}:{ext.name}",
                parent_id=cid,
                color=KIND_COLORS["external"],
                payload={"type": ext.type, "description": ext.description},
            ))
            graph.add_edge(MapEdge(source_id=cid, target_id=eid, kind=EdgeKind.USES, weight=1.0, color=color))

    file_records = {f.path: f for f in files}
    for path, key in owner.items():
        record = file_records.get(path)
        payload = {"lang": record.lang if record else "", "size": record.size if record else 0}
        if record is None:
            payload["synthetic"] = True
        elif record.id in smells:
            payload["smell"] = smells[record.id]
        cid = component_id(key) if key and key in colors else None
        graph.add_node(MapNode(
            id=path,
            kind=NodeKind.FILE,
            path=path,
            parent_id=cid,
            color=colors.get(key) if key else None,
            payload=payload,
        ))
        if cid:
            graph.add_edge(MapEdge(source_id=cid, target_id=path, kind=EdgeKind.CONTAINS, weight=0.5, color=colors[key]))

    for spec in components:
        if spec.key not in colors:
            continue
        for ext in spec.external:
            for used in ext.used_by:
                if graph.get_node(used) is None:
                    continue
                graph.add_edge(MapEdge(
                    source_id=external_id(spec.key, ext.name),
                    target_id=used,
                    kind=EdgeKind.EXTERNAL_USES,
                    weight=0.3,
                    color=colors[spec.key],
                ))

    seen: set[tuple[str, str]] = set()
    for edge in aggregate_file_edges(store):
        if edge.kind_name != EdgeKind.IMPORTS.value:
            continue
        pair = (edge.source_id, edge.target_id)
        if pair in seen or graph.get_node(edge.source_id) is None or graph.get_node(edge.target_id) is None:
            continue
        seen.add(pair)
        src_key = owner.get(edge.source_id)
        graph.add_edge(MapEdge(
            source_id=edge.source_id,
            target_id=edge.target_id,
            kind=EdgeKind.IMPORTS,
            weight=1.5,
            color=colors.get(src_key) if src_key else None,
        ))

    logger.info(
        "Built component graph: %d nodes, %d edges, %d components",
        len(graph.nodes), len(graph.edges), len(colors),
    )
    return graph


# ---------------------------------------------------------------------------
# Files view
# ---------------------------------------------------------------------------

def directory_box(path: str, depth: int) -> tuple[float, float, float]:
    """Width, height and label font size of a directory box."""
    base = _by_depth(DIRECTORY_SIZES, depth)
    font = _by_depth(DIRECTORY_FONTS, depth)
    name = path.rsplit("/", 1)[-1]
    parent = path.rsplit("/", 1)[0] if "/" in path else ""
    text_width = max(len(name) * font * 0.6, len(parent) * font * 0.7 * 0.6) + 80
    width = max(base, text_width)
    return width, base * 0.3, font


def build_files_graph(store: GraphStore, include_relations: bool = True) -> MapGraph:
    """Directory tree with file leaves.

    Every ancestor directory of an indexed file becomes a node with its
    depth; directories link to their sub-directories (``dir-contains``) and
    to the files directly inside them (``contains``).
    """
    graph = MapGraph()
    smells = _smell_payloads(store)
    files = sorted(store.list_files(), key=lambda f: f.path)

    directories: dict[str, int] = {}
    for record in files:
        parent = posixpath.dirname(record.path)
        while parent:
            directories.setdefault(parent, parent.count("/"))
            parent = posixpath.dirname(parent)

    for path in sorted(directories):
        depth = directories[path]
        width, height, font = directory_box(path, depth)
        parent = posixpath.dirname(path)
        graph.add_node(MapNode(
            id=directory_id(path),
            kind=NodeKind.DIRECTORY,
            label=path.rsplit("/", 1)[-1],
            path=path,
            width=width,
            height=height,
            depth=depth,
            parent_id=directory_id(parent) if parent else None,
            color=KIND_COLORS["directory"],
            payload={"font_size": font},
        ))
        if parent:
            graph.add_edge(MapEdge(
                source_id=directory_id(parent), target_id=directory_id(path), kind=EdgeKind.DIR_CONTAINS
            ))

    for record in files:
        lines = estimate_lines(record.size)
        size = file_size_for_lines(lines)
        parent = posixpath.dirname(record.path)
        payload = {"lang": record.lang, "size": record.size, "lines": lines}
        if record.id in smells:
            payload["smell"] = smells[record.id]
        graph.add_node(MapNode(
            id=record.path,
            kind=NodeKind.FILE,
            path=record.path,
            width=size,
            height=size / 2,
            depth=parent.count("/") + 1 if parent else 0,
            parent_id=directory_id(parent) if parent else None,
            color=KIND_COLORS["file"],
            payload=payload,
        ))
        if parent:
            graph.add_edge(MapEdge(source_id=directory_id(parent), target_id=record.path, kind=EdgeKind.CONTAINS))

    if include_relations:
        for edge in aggregate_file_edges(store):
            if graph.get_node(edge.source_id) and graph.get_node(edge.target_id):
                graph.add_edge(edge)

    logger.info("Built files graph: %d directories, %d files", len(directories), len(files))
    return graph


# ---------------------------------------------------------------------------
# Dependency view
# ---------------------------------------------------------------------------

def build_dependency_graph(store: GraphStore, kinds: Optional[Iterable[str]] = None) -> MapGraph:
    """Files joined by cross-file relationships, optionally filtered by kind."""
    wanted = set(kinds) if kinds is not None else None
    graph = MapGraph()
    smells = _smell_payloads(store)
    for record in store.list_files():
        payload = {"lang": record.lang, "size": record.size}
        if record.id in smells:
            payload["smell"] = smells[record.id]
        graph.add_node(MapNode(
            id=record.path, kind=NodeKind.FILE, path=record.path,
            color=KIND_COLORS["file"], payload=payload,
        ))
    for edge in aggregate_file_edges(store):
        if wanted is not None and edge.kind_name not in wanted:
            continue
        if graph.get_node(edge.source_id) and graph.get_node(edge.target_id):
            graph.add_edge(edge)
    return graph
