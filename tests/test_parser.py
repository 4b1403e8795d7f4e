"""Tests for the YAML graph, component and layout documents."""

import pytest

from codemap.exceptions import GraphFormatError, LayoutFileError
from codemap.models import EdgeKind, NodeKind
from codemap.parser import (
    component_for_file,
    graph_to_yaml,
    load_layout,
    match_file_pattern,
    parse_component_config,
    parse_layout,
    parse_yaml,
    save_layout,
)

GRAPH_YAML = """
title: Demo
nodes:
  - id: api
    kind: component
  - id: src/api/routes.py
    parent: api
  - id: Postgres
    kind: external
edges:
  - source: api
    target: src/api/routes.py
    kind: contains
  - from: src/api/routes.py
    to: Postgres
    kind: talks-to
    weight: 2
"""


class TestGraphDocuments:
    def test_parse(self):
        graph = parse_yaml(GRAPH_YAML)
        assert [n.id for n in graph.nodes] == ["api", "src/api/routes.py", "Postgres"]
        assert graph.get_node("api").kind == NodeKind.COMPONENT
        assert graph.get_node("src/api/routes.py").parent_id == "api"
        assert graph.edges[0].kind == EdgeKind.CONTAINS
        assert graph.edges[1].kind_name == "talks-to"
        assert graph.edges[1].weight == 2

    def test_wrapped_in_graph_key(self):
        graph = parse_yaml("graph:\n  nodes:\n    - id: a\n")
        assert graph.get_node("a") is not None

    def test_serialize_keeps_pins_and_parents(self):
        graph = parse_yaml(GRAPH_YAML)
        graph.get_node("api").pin(10, 20)
        text = graph_to_yaml(graph, title="Demo")
        again = parse_yaml(text)
        api = again.get_node("api")
        assert (api.fx, api.fy) == (10, 20)
        assert again.get_node("src/api/routes.py").parent_id == "api"
        assert [e.kind_name for e in again.edges] == ["contains", "talks-to"]

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "nodes: [",
            "- just\n- a list\n",
            "nodes:\n  - kind: file\n",
            "nodes:\n  - id: a\nedges:\n  - source: a\n",
            "nodes:\n  - id: a\n    kind: planet\n",
            "edges:\n  - source: a\n    target: b\n    weight: -1\n",
        ],
    )
    def test_malformed_documents(self, text):
        with pytest.raises(GraphFormatError):
            parse_yaml(text)


class TestComponentConfig:
    def test_parse(self, components):
        assert [c.key for c in components] == ["api", "core"]
        api = components[0]
        assert api.name == "API Layer"
        assert api.external[0].name == "Postgres"
        assert api.external[0].used_by == ["src/api/db.py"]
        assert components[1].description == ""

    @pytest.mark.parametrize(
        "text",
        [
            "components: []",
            "project-spec:\n  components: {}\n",
            "project-spec:\n  components:\n    - a: {}\n      b: {}\n",
            "project-spec:\n  components:\n    - a:\n        external:\n          - type: db\n",
        ],
    )
    def test_invalid(self, text):
        with pytest.raises(GraphFormatError):
            parse_component_config(text)

    def test_key_used_as_name(self):
        (spec,) = parse_component_config("project-spec:\n  components:\n    - worker:\n")
        assert spec.name == "worker"
        assert spec.files == []


class TestFilePatterns:
    @pytest.mark.parametrize(
        "path,pattern,expected",
        [
            ("src/api/routes.py", "src/api/routes.py", True),
            ("src/api/v1/routes.py", "src/api/**", True),
            ("src/a.py", "src/*.py", True),
            ("src/sub/a.py", "src/*.py", False),
            ("src/core/x.py", "src/core/", True),
            ("src/core/x.py", "src/core", True),
            ("lib/core/x.py", "src/core/", False),
            ("src\\win\\a.py", "src/win/**", True),
            ("src/a+b.py", "src/a+b.py", True),
        ],
    )
    def test_match(self, path, pattern, expected):
        assert match_file_pattern(path, pattern) is expected

    def test_first_component_wins(self):
        specs = parse_component_config(
            "project-spec:\n  components:\n"
            "    - first:\n        files: [src/]\n"
            "    - second:\n        files: [src/core/]\n"
        )
        assert component_for_file("src/core/a.py", specs).key == "first"
        assert component_for_file("docs/a.md", specs) is None


class TestLayoutFiles:
    def test_round_trip_on_disk(self, tmp_path):
        path = save_layout(tmp_path / "nested" / "layout.yaml", {"src/api": {"x": 1.234, "y": 5}})
        assert path.exists()
        assert load_layout(path) == {"src/api": {"x": 1.23, "y": 5.0}}

    def test_missing_file_is_empty(self, tmp_path):
        assert load_layout(tmp_path / "absent.yaml") == {}

    def test_malformed_entries_skipped(self):
        layout = parse_layout("good: {x: 1, y: 2}\nbad: {x: 1}\nworse: 3\n")
        assert layout == {"good": {"x": 1.0, "y": 2.0}}

    def test_invalid_layouts(self):
        with pytest.raises(LayoutFileError):
            parse_layout("a: [")
        with pytest.raises(LayoutFileError):
            parse_layout("- 1\n- 2\n")

    def test_unwritable_target(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(LayoutFileError):
            save_layout(blocker / "layout.yaml", {})
