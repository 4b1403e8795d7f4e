"""Tests for building map graphs from indexer records."""

import pytest

from codemap.builder import (
    aggregate_file_edges,
    build_component_graph,
    build_dependency_graph,
    build_files_graph,
    directory_box,
    estimate_lines,
    file_size_for_lines,
)
from codemap.models import NodeKind
from codemap.themes import COMPONENT_PALETTE, NEW_FILES_COLOR


def _edges(graph, kind):
    return {(e.source_id, e.target_id) for e in graph.edges if e.kind_name == kind}


class TestAggregation:
    def test_symbol_edges_collapse_to_files(self, store):
        edges = {(e.source_id, e.target_id, e.kind_name): e.weight for e in aggregate_file_edges(store)}
        assert edges == {
            ("src/api/routes.py", "src/api/db.py", "imports"): 2.0,
            ("src/api/routes.py", "src/core/engine.py", "calls"): 2.0,
            ("src/core/engine.py", "src/core/util.py", "imports"): 1.0,
        }


class TestComponentGraph:
    def test_nodes(self, component_graph):
        ids = {n.id for n in component_graph.nodes}
        assert ids == {
            "component:api",
            "component:core",
            "external:api:Postgres",
            "src/api/routes.py",
            "src/api/db.py",
            "src/core/engine.py",
            "src/core/util.py",
            "src/core/planned.py",
            "scripts/deploy.sh",
        }

    def test_ownership_and_colors(self, component_graph):
        api = component_graph.get_node("component:api")
        assert api.path == "api"
        assert api.color in COMPONENT_PALETTE
        assert api.payload["file_count"] == 2
        db = component_graph.get_node("src/api/db.py")
        assert db.parent_id == "component:api"
        assert db.color == api.color
        loose = component_graph.get_node("scripts/deploy.sh")
        assert loose.parent_id is None
        assert loose.color is None

    def test_synthetic_file_from_config(self, component_graph):
        planned = component_graph.get_node("src/core/planned.py")
        assert planned.payload["synthetic"] is True
        assert planned.parent_id == "component:core"

    def test_edges(self, component_graph):
        assert _edges(component_graph, "uses") == {("component:api", "external:api:Postgres")}
        assert ("component:core", "src/core/planned.py") in _edges(component_graph, "contains")
        assert _edges(component_graph, "external-uses") == {("external:api:Postgres", "src/api/db.py")}
        assert _edges(component_graph, "imports") == {
            ("src/api/routes.py", "src/api/db.py"),
            ("src/core/engine.py", "src/core/util.py"),
        }
        assert _edges(component_graph, "calls") == set()

    def test_smell_payload(self, component_graph):
        engine = component_graph.get_node("src/core/engine.py")
        assert engine.payload["smell"]["score"] == pytest.approx(0.8)
        assert "file_id" not in engine.payload["smell"]

    def test_new_files_overflow_component(self, store, components):
        graph = build_component_graph(store, components, new_file_paths=["src/core/util.py"])
        overflow = graph.get_node("component:__new_files__")
        assert overflow.overflow
        assert overflow.color == NEW_FILES_COLOR
        assert graph.get_node("src/core/util.py").parent_id == overflow.id

    def test_component_without_files_or_externals_is_skipped(self, store):
        from codemap.parser import ComponentSpec

        graph = build_component_graph(store, [ComponentSpec(key="ghost", name="Ghost", files=["nowhere/**"])])
        assert graph.get_node("component:ghost") is None
        assert all(n.kind == NodeKind.FILE for n in graph.nodes)


class TestFilesGraph:
    def test_directory_tree(self, store):
        graph = build_files_graph(store)
        dirs = {n.id: n for n in graph.nodes_of_kind(NodeKind.DIRECTORY)}
        assert set(dirs) == {"dir:src", "dir:src/api", "dir:src/core", "dir:scripts"}
        assert dirs["dir:src"].depth == 0
        assert dirs["dir:src/api"].depth == 1
        assert dirs["dir:src/api"].parent_id == "dir:src"
        assert _edges(graph, "dir-contains") == {("dir:src", "dir:src/api"), ("dir:src", "dir:src/core")}
        assert ("dir:scripts", "scripts/deploy.sh") in _edges(graph, "contains")

    def test_file_sizes(self, store):
        graph = build_files_graph(store)
        routes = graph.get_node("src/api/routes.py")
        assert routes.payload["lines"] == 80
        assert routes.width == pytest.approx(file_size_for_lines(80))
        assert routes.height == pytest.approx(routes.width / 2)
        assert routes.depth == 2
        assert routes.parent_id == "dir:src/api"

    def test_relations_optional(self, store):
        assert _edges(build_files_graph(store, include_relations=False), "imports") == set()
        assert ("src/api/routes.py", "src/api/db.py") in _edges(build_files_graph(store), "imports")


def test_dependency_graph_kind_filter(store):
    graph = build_dependency_graph(store, kinds=["imports"])
    assert len(graph.nodes) == 5
    assert {e.kind_name for e in graph.edges} == {"imports"}
    assert len(build_dependency_graph(store).edges) == 3


def test_size_helpers():
    assert estimate_lines(10) == 1
    assert estimate_lines(5000) == 100
    assert file_size_for_lines(1) == 150
    assert file_size_for_lines(3000) == 350
    assert file_size_for_lines(1500) == pytest.approx(150 + 1499 / 2999 * 200)
    width, height, font = directory_box("src", 0)
    assert (width, height, font) == pytest.approx((600, 180, 72))
    wide, _, _ = directory_box("a/very_long_directory_name_here", 3)
    assert wide > 240
