"""Tests for the viewport and semantic zoom."""

from __future__ import annotations

import random

import pytest

from codemap.config import ViewportConfig
from codemap.models import MapEdge, MapGraph, MapNode
from codemap.packing import pack_components
from codemap.viewport import (
    DETAIL_COLLAPSED,
    DETAIL_FULL,
    Transform,
    TransformAnimation,
    ViewportController,
    ease_out_cubic,
    fit_label,
)


@pytest.fixture
def viewport():
    return ViewportController(1200, 800)


@pytest.fixture
def packed(component_graph):
    pack_components(component_graph)
    return component_graph


class TestTransform:
    def test_inverse_consistency(self):
        rng = random.Random(1234)
        for _ in range(1000):
            t = Transform(rng.uniform(0.1, 10), rng.uniform(-5000, 5000), rng.uniform(-5000, 5000))
            px, py = rng.uniform(-2000, 2000), rng.uniform(-2000, 2000)
            gx, gy = t.invert(px, py)
            assert t.apply(gx, gy) == pytest.approx((px, py), abs=1e-6)

    def test_controller_round_trip(self, viewport):
        viewport.set_transform(Transform(2.5, 30, -40))
        gx, gy = viewport.screen_to_graph(100, 200)
        assert viewport.graph_to_screen(gx, gy) == pytest.approx((100, 200))

    def test_transform_property_is_a_copy(self, viewport):
        viewport.transform.k = 5
        assert viewport.transform.k == 1


class TestZoom:
    def test_zoom_keeps_anchor_fixed(self, viewport):
        before = viewport.screen_to_graph(300, 200)
        viewport.zoom_by(2.0, 300, 200)
        assert viewport.transform.k == 2.0
        assert viewport.screen_to_graph(300, 200) == pytest.approx(before)

    def test_scale_clamped(self, viewport):
        viewport.zoom_by(1000)
        assert viewport.transform.k == 10
        viewport.zoom_by(1e-6)
        assert viewport.transform.k == pytest.approx(0.1)

    def test_wheel_direction_and_speed(self, viewport):
        viewport.wheel(0, 0, delta_y=-1)
        assert viewport.transform.k == pytest.approx(1.03)
        viewport.wheel(0, 0, delta_y=1, shift=True)
        assert viewport.transform.k == pytest.approx(1.03 * 0.91)

    def test_change_listeners(self, viewport):
        seen = []
        viewport.on_change(lambda t: seen.append(t.k))
        viewport.zoom_by(2)
        viewport.set_transform(Transform(3, 0, 0))
        assert seen == [2, 3]

    def test_pan(self, viewport):
        viewport.pan_start(100, 100)
        assert viewport.panning
        viewport.pan_move(150, 80)
        viewport.pan_end()
        assert not viewport.panning
        assert (viewport.transform.x, viewport.transform.y) == (50, -20)
        assert viewport.pan_move(0, 0) is None


class TestSemanticZoom:
    def test_threshold_crossing_collapses_containers(self, viewport, packed):
        viewport.set_transform(Transform(0.5, 0, 0))
        detailed = viewport.render_state(packed)
        assert detailed.detail == DETAIL_FULL
        assert detailed.edges_visible
        for node in packed.nodes:
            state = detailed.nodes[node.id]
            assert state.visible
            if node.is_container:
                assert state.header_visible and not state.filled

        viewport.set_transform(Transform(0.2, 0, 0))
        collapsed = viewport.render_state(packed)
        assert collapsed.detail == DETAIL_COLLAPSED
        assert not collapsed.edges_visible
        assert collapsed.visible_edges(packed) == []
        for node in packed.nodes:
            state = collapsed.nodes[node.id]
            if node.is_container:
                assert state.filled and not state.header_visible
                assert state.opacity == pytest.approx(0.9)
                assert state.fill_color == node.color
                assert state.label is not None
            else:
                assert not state.visible and not state.pointer_events

    def test_flat_graph_never_collapses(self, viewport, chain_graph):
        viewport.set_transform(Transform(0.1, 0, 0))
        scene = viewport.render_state(chain_graph)
        assert scene.detail == DETAIL_COLLAPSED
        assert scene.visible_ids() == {"a", "b", "c", "d"}
        assert len(scene.visible_edges(chain_graph)) == 2


class TestFitLabel:
    def test_short_label_uses_max_font(self):
        label = fit_label("Auth", 600, 400)
        assert label.lines == ["Auth"]
        assert label.font_size == pytest.approx(72)
        assert label.line_height == pytest.approx(72 * 1.2)

    def test_long_label_splits_in_two(self):
        label = fit_label("Authentication Service", 300, 200)
        assert label.lines == ["Authentication", "Service"]
        assert label.font_size == pytest.approx(260 / (14 * 0.6), rel=1e-3)

    def test_font_capped_by_height(self):
        label = fit_label("A", 1000, 100)
        assert label.font_size == pytest.approx(60 / 3)

    def test_tiny_box_falls_back_to_min_font(self):
        label = fit_label("Something long", 30, 30, ViewportConfig())
        assert label.font_size == 8


class TestHitTesting:
    def test_leaf_wins_over_container(self, viewport, packed):
        file_node = packed.get_node("src/api/routes.py")
        px, py = viewport.graph_to_screen(file_node.x, file_node.y)
        assert viewport.hit_test(packed, px, py).id == "src/api/routes.py"

    def test_container_hit_on_header(self, viewport, packed):
        component = packed.get_node("component:api")
        left, top, _right, _bottom = component.box()
        assert viewport.hit_test(packed, left + 5, top + 5).id == "component:api"

    def test_hidden_children_not_hit(self, viewport, packed):
        viewport.set_transform(Transform(0.2, 0, 0))
        file_node = packed.get_node("src/api/routes.py")
        px, py = viewport.graph_to_screen(file_node.x, file_node.y)
        assert viewport.hit_test(packed, px, py).id == "component:api"

    def test_miss(self, viewport, packed):
        assert viewport.hit_test(packed, -5000, -5000) is None

    def test_centered_node(self, viewport, packed):
        component = packed.get_node("component:core")
        viewport.focus_on(component, animate=False)
        assert viewport.centered_node(packed, ["component"]).id == "component:core"
        assert viewport.centered_node(packed, ["external"]) is None


class TestFitAndAnimation:
    def test_fit_transform_centres_bounds(self, viewport):
        t = viewport.fit_transform((0, 0, 1200, 400))
        assert t.k == pytest.approx(0.8)
        assert t.apply(600, 200) == pytest.approx((600, 400))

    def test_reset_view_immediate(self, viewport, packed):
        viewport.reset_view(packed, animate=False)
        min_x, min_y, max_x, max_y = packed.bounds()
        sx1, sy1 = viewport.graph_to_screen(min_x, min_y)
        sx2, sy2 = viewport.graph_to_screen(max_x, max_y)
        assert 0 <= sx1 and sx2 <= 1200 and 0 <= sy1 and sy2 <= 800
        assert viewport.animation is None

    def test_reset_view_empty_graph(self, viewport):
        assert viewport.reset_view(MapGraph()) is None

    def test_animation_eases_to_target(self, viewport):
        node = MapNode(id="n", x=1000, y=1000)
        animation = viewport.focus_on(node, animate=True)
        assert animation is not None and animation.steps == 30
        assert viewport.advance(375)
        halfway = viewport.transform
        assert 0 < -halfway.x < 400
        while viewport.advance(25):
            pass
        assert (viewport.transform.x, viewport.transform.y) == pytest.approx((-400, -600))
        assert viewport.animation is None

    def test_ease_out_cubic(self):
        assert ease_out_cubic(0) == 0
        assert ease_out_cubic(1) == 1
        assert ease_out_cubic(0.5) == pytest.approx(0.875)

    def test_animation_steps_are_discrete(self):
        animation = TransformAnimation(Transform(1, 0, 0), Transform(2, 0, 0), duration_ms=300, steps=3)
        assert animation.step(50).k == 1
        assert animation.step(50).k == pytest.approx(1 + ease_out_cubic(1 / 3))
        assert animation.step(1000).k == 2
        assert animation.done

    def test_resize_rejects_nonpositive(self, viewport):
        viewport.resize(0, 100)
        assert (viewport.width, viewport.height) == (1200, 800)
        viewport.resize(640, 480)
        assert (viewport.width, viewport.height) == (640, 480)
