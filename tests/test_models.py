"""Tests for the graph models."""

from __future__ import annotations

import math

import pytest

from codemap.models import EdgeKind, MapEdge, MapGraph, MapNode, NodeKind


class TestMapNode:
    def test_default_size_by_kind(self):
        assert (MapNode(id="f").width, MapNode(id="f").height) == (100.0, 30.0)
        component = MapNode(id="c", kind=NodeKind.COMPONENT)
        assert (component.width, component.height) == (300.0, 200.0)
        assert MapNode(id="x", kind="external", width=90).width == 90

    def test_get_label_fallbacks(self):
        assert MapNode(id="n", label="Nice", path="src/a.py").get_label() == "Nice"
        assert MapNode(id="n", path="src/pkg/a.py").get_label() == "a.py"
        assert MapNode(id="n", path="src/pkg/").get_label() == "pkg"
        assert MapNode(id="n").get_label() == "n"

    def test_pin_and_unpin(self):
        node = MapNode(id="n", x=5, y=6, vx=3, vy=4)
        node.pin()
        assert node.is_pinned
        assert (node.fx, node.fy) == (5, 6)
        assert (node.vx, node.vy) == (0, 0)

        node.pin(10, 20)
        assert (node.x, node.y) == (10, 20)

        node.unpin()
        assert not node.is_pinned
        assert (node.x, node.y) == (10, 20)

    def test_box_is_centred(self):
        node = MapNode(id="n", x=100, y=50, width=40, height=20)
        assert node.box() == (80, 40, 120, 60)
        assert node.radius == pytest.approx(math.hypot(40, 20) / 2)

    def test_container_kinds(self):
        assert MapNode(id="c", kind="component").is_container
        assert MapNode(id="d", kind="directory").is_container
        assert not MapNode(id="f", kind="file").is_container


class TestMapEdge:
    def test_known_kind_normalised(self):
        edge = MapEdge(source_id="a", target_id="b", kind="external-uses")
        assert edge.kind is EdgeKind.EXTERNAL_USES
        assert edge.kind_name == "external-uses"

    def test_unknown_kind_kept(self):
        edge = MapEdge(source_id="a", target_id="b", kind="annotates")
        assert edge.kind == "annotates"
        assert edge.kind_name == "annotates"

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            MapEdge(source_id="a", target_id="b", weight=-1)


class TestMapGraph:
    def test_get_node_miss_is_none(self, chain_graph):
        assert chain_graph.get_node("a").id == "a"
        assert chain_graph.get_node("zzz") is None

    def test_dangling_edges_skipped(self, chain_graph):
        chain_graph.add_edge(MapEdge(source_id="a", target_id="ghost"))
        resolved = [(e.source_id, e.target_id) for e, _s, _t in chain_graph.resolved_edges()]
        assert resolved == [("a", "b"), ("b", "c")]
        assert len(chain_graph.edges) == 3

    def test_visible_edges(self, chain_graph):
        visible = chain_graph.visible_edges({"a", "b"})
        assert [(e.source_id, e.target_id) for e in visible] == [("a", "b")]

    def test_duplicate_ids_keep_first(self):
        graph = MapGraph(nodes=[MapNode(id="a", x=1), MapNode(id="a", x=2)])
        assert graph.get_node("a").x == 1

    def test_children_and_descendants(self):
        graph = MapGraph(
            nodes=[
                MapNode(id="dir:src", kind="directory"),
                MapNode(id="dir:src/api", kind="directory"),
                MapNode(id="src/api/a.py"),
                MapNode(id="src/b.py", parent_id="dir:src"),
            ],
            edges=[
                MapEdge(source_id="dir:src", target_id="dir:src/api", kind="dir-contains"),
                MapEdge(source_id="dir:src/api", target_id="src/api/a.py", kind="contains"),
            ],
        )
        assert [n.id for n in graph.children_of("dir:src/api")] == ["src/api/a.py"]
        assert graph.children_of("dir:src") == []
        descendants = {n.id for n in graph.descendants_of("dir:src")}
        assert descendants == {"dir:src/api", "src/api/a.py", "src/b.py"}

    def test_descendants_survive_cycles(self):
        graph = MapGraph(
            nodes=[MapNode(id="a", kind="directory"), MapNode(id="b", kind="directory")],
            edges=[
                MapEdge(source_id="a", target_id="b", kind="contains"),
                MapEdge(source_id="b", target_id="a", kind="contains"),
            ],
        )
        assert [n.id for n in graph.descendants_of("a")] == ["b"]

    def test_bounds(self):
        graph = MapGraph(nodes=[
            MapNode(id="a", x=0, y=0, width=10, height=10),
            MapNode(id="b", x=100, y=50, width=20, height=20),
        ])
        assert graph.bounds() == (-5, -5, 110, 60)
        assert MapGraph().bounds() is None

    def test_copy_positions_from(self):
        old = MapGraph(nodes=[MapNode(id="a", x=10, y=20, fx=10, fy=20), MapNode(id="gone", x=5)])
        new = MapGraph(nodes=[MapNode(id="a"), MapNode(id="fresh")])
        assert new.copy_positions_from(old) == 1
        assert (new.get_node("a").x, new.get_node("a").fy) == (10, 20)
        assert new.get_node("fresh").x == 0

    def test_nodes_of_kind(self, component_graph):
        ids = {n.id for n in component_graph.nodes_of_kind(NodeKind.COMPONENT)}
        assert ids == {"component:api", "component:core"}
