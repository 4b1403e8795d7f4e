"""YAML documents for codemap.

Three kinds of document are read and written here:

1. Graph documents: a flat list of nodes and edges:

       title: My project
       nodes:
         - id: api
           kind: component
         - id: src/api/routes.py
           kind: file
       edges:
         - source: api
           target: src/api/routes.py
           kind: contains

2. Component configuration: logical components and the files they own:

       project-spec:
         components:
           - api:
               name: API layer
               description: HTTP handlers
               files: [src/api/**]
               external:
                 - name: Postgres
                   type: database
                   usedBy: [src/api/db.py]

3. Layout files: pinned positions keyed by node path:

       src/api: {x: 120.0, y: 40.0}
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import GraphFormatError, LayoutFileError
from .models import MapEdge, MapGraph, MapNode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Graph documents
# ---------------------------------------------------------------------------

def parse_yaml(yaml_str: str) -> MapGraph:
    """Parse a YAML graph document into a MapGraph."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise GraphFormatError(f"Invalid YAML: {e}") from e
    if not data:
        raise GraphFormatError("Empty YAML input")
    if not isinstance(data, dict):
        raise GraphFormatError("Graph document must be a mapping with 'nodes' and 'edges'")

    # Allow the graph to be wrapped in a top-level "graph" key
    if "graph" in data and isinstance(data["graph"], dict):
        data = data["graph"]

    nodes = [_parse_node(n) for n in data.get("nodes") or []]
    edges = [_parse_edge(e) for e in data.get("edges") or []]
    return MapGraph(nodes=nodes, edges=edges)


def parse_file(path: str | Path) -> MapGraph:
    """Parse a YAML graph file into a MapGraph."""
    content = Path(path).read_text()
    return parse_yaml(content)


def _parse_node(data: Any) -> MapNode:
    if not isinstance(data, dict) or "id" not in data:
        raise GraphFormatError(f"Node entries need an 'id': {data!r}")
    fields = dict(data)
    fields["id"] = str(fields["id"])
    if "parent" in fields and "parent_id" not in fields:
        fields["parent_id"] = fields.pop("parent")
    try:
        return MapNode(**fields)
    except ValidationError as e:
        raise GraphFormatError(f"Invalid node '{fields['id']}': {e}") from e


def _parse_edge(data: Any) -> MapEdge:
    if not isinstance(data, dict):
        raise GraphFormatError(f"Edge entries must be mappings: {data!r}")
    source = data.get("source", data.get("from"))
    target = data.get("target", data.get("to"))
    if source is None or target is None:
        raise GraphFormatError(f"Edge needs 'source' and 'target': {data!r}")
    try:
        return MapEdge(
            source_id=str(source),
            target_id=str(target),
            kind=data.get("kind", "imports"),
            weight=data.get("weight", 1.0),
            color=data.get("color"),
        )
    except ValidationError as e:
        raise GraphFormatError(f"Invalid edge {source} -> {target}: {e}") from e


def graph_to_yaml(graph: MapGraph, title: Optional[str] = None) -> str:
    """Serialize a MapGraph back to a YAML graph document."""
    data: dict[str, Any] = {}
    if title:
        data["title"] = title
    data["nodes"] = []
    for node in graph.nodes:
        nd: dict[str, Any] = {"id": node.id, "kind": node.kind.value}
        if node.label:
            nd["label"] = node.label
        if node.path:
            nd["path"] = node.path
        nd["x"] = round(node.x, 2)
        nd["y"] = round(node.y, 2)
        if node.fx is not None and node.fy is not None:
            nd["fx"] = round(node.fx, 2)
            nd["fy"] = round(node.fy, 2)
        nd["width"] = node.width
        nd["height"] = node.height
        if node.depth:
            nd["depth"] = node.depth
        if node.parent_id:
            nd["parent_id"] = node.parent_id
        if node.color:
            nd["color"] = node.color
        if node.overflow:
            nd["overflow"] = True
        if node.payload:
            nd["payload"] = node.payload
        data["nodes"].append(nd)

    data["edges"] = [
        {"source": e.source_id, "target": e.target_id, "kind": e.kind_name, "weight": e.weight}
        for e in graph.edges
    ]
    return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


# ---------------------------------------------------------------------------
# Component configuration
# ---------------------------------------------------------------------------

class ExternalSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str = "service"
    description: str = ""
    used_by: list[str] = Field(default_factory=list, alias="usedBy")


class ComponentSpec(BaseModel):
    key: str
    name: str
    description: str = ""
    files: list[str] = Field(default_factory=list)
    external: list[ExternalSpec] = Field(default_factory=list)

    def owns(self, path: str) -> bool:
        return any(match_file_pattern(path, p) for p in self.files)


def parse_component_config(yaml_str: str) -> list[ComponentSpec]:
    """Parse a component configuration document."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise GraphFormatError(f"Invalid YAML: {e}") from e
    if not isinstance(data, dict) or "project-spec" not in data:
        raise GraphFormatError("Invalid component config: missing project-spec")

    items = (data["project-spec"] or {}).get("components")
    if not isinstance(items, list):
        raise GraphFormatError("Invalid component config: components must be a list")

    components: list[ComponentSpec] = []
    for item in items:
        if not isinstance(item, dict) or len(item) != 1:
            raise GraphFormatError(f"Each component must be a single-key mapping: {item!r}")
        key, body = next(iter(item.items()))
        body = body or {}
        try:
            components.append(ComponentSpec(
                key=str(key),
                name=body.get("name", str(key)),
                description=body.get("description", ""),
                files=[str(f) for f in body.get("files") or []],
                external=[ExternalSpec(**ext) for ext in body.get("external") or []],
            ))
        except (ValidationError, TypeError) as e:
            raise GraphFormatError(f"Invalid component '{key}': {e}") from e
    return components


def load_component_config(path: str | Path) -> list[ComponentSpec]:
    return parse_component_config(Path(path).read_text())


def _pattern_to_regex(pattern: str) -> re.Pattern:
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_file_pattern(path: str, pattern: str) -> bool:
    """Exact match, glob (``**`` any depth, ``*`` one segment) or directory prefix."""
    path = path.replace("\\", "/")
    pattern = pattern.replace("\\", "/")
    if path == pattern:
        return True
    if "*" in pattern:
        return bool(_pattern_to_regex(pattern).match(path))
    return path.startswith(pattern)


def component_for_file(path: str, components: list[ComponentSpec]) -> Optional[ComponentSpec]:
    """First component (in config order) owning ``path``."""
    for component in components:
        if component.owns(path):
            return component
    return None


# ---------------------------------------------------------------------------
# Layout files
# ---------------------------------------------------------------------------

def parse_layout(yaml_str: str) -> dict[str, dict[str, float]]:
    try:
        data = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        raise LayoutFileError(f"Invalid layout YAML: {e}") from e
    if not isinstance(data, dict):
        raise LayoutFileError("Layout file must map paths to {x, y}")

    layout: dict[str, dict[str, float]] = {}
    for key, value in data.items():
        try:
            layout[str(key)] = {"x": float(value["x"]), "y": float(value["y"])}
        except (TypeError, KeyError, ValueError):
            logger.warning("Skipping malformed layout entry %r", key)
    return layout


def load_layout(path: str | Path) -> dict[str, dict[str, float]]:
    """Read a layout file; a missing file is an empty layout."""
    layout_path = Path(path)
    if not layout_path.exists():
        return {}
    try:
        content = layout_path.read_text()
    except OSError as e:
        raise LayoutFileError(f"Cannot read layout {layout_path}: {e}") from e
    return parse_layout(content)


def save_layout(path: str | Path, layout: dict[str, dict[str, float]]) -> Path:
    layout_path = Path(path)
    data = {k: {"x": round(v["x"], 2), "y": round(v["y"], 2)} for k, v in sorted(layout.items())}
    try:
        layout_path.parent.mkdir(parents=True, exist_ok=True)
        layout_path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    except OSError as e:
        raise LayoutFileError(f"Cannot write layout {layout_path}: {e}") from e
    return layout_path
