"""Tests for the simulation loop and tick sources."""

from __future__ import annotations

import asyncio
import math

import pytest

from codemap.config import ForceConfig, SimulationConfig
from codemap.forces import CenterForce, CollisionForce, LinkForce, ManyBodyForce
from codemap.models import MapEdge, MapNode
from codemap.simulation import AsyncioTickSource, ManualTickSource, Simulation, create_simulation


class TestAlphaSchedule:
    def test_one_tick_decays_alpha(self):
        sim = Simulation([MapNode(id="a")])
        sim.tick()
        assert sim.alpha() == pytest.approx(0.98)
        assert sim.ticks == 1

    def test_alpha_target_holds_temperature(self):
        sim = Simulation([MapNode(id="a")]).alpha(0.3).alpha_target(0.3)
        sim.tick(100)
        assert sim.alpha() == pytest.approx(0.3)

    def test_run_until_settled(self):
        sim = Simulation([MapNode(id="a")])
        ended = []
        sim.on("end", ended.append)
        taken = sim.run_until_settled()
        assert sim.alpha() < sim.alpha_min
        # log(0.001) / log(0.98) ~ 342
        assert 330 < taken < 350
        assert ended == [sim]

    def test_run_until_settled_bounded_when_warm(self):
        sim = Simulation([MapNode(id="a")]).alpha_target(0.5)
        assert sim.run_until_settled(max_ticks=25) == 25
        assert sim.alpha() > sim.alpha_min


class TestPinning:
    def test_pinned_nodes_never_move(self):
        pinned = MapNode(id="p", x=10, y=20, fx=10, fy=20)
        others = [MapNode(id=f"n{i}", x=i * 3.0, y=-i * 2.0) for i in range(6)]
        nodes = [pinned] + others
        edges = [MapEdge(source_id="p", target_id=n.id) for n in others]
        sim = Simulation(nodes)
        sim.force("link", LinkForce(edges, distance=40))
        sim.force("charge", ManyBodyForce(strength=-300))
        sim.force("center", CenterForce(500, 500))
        sim.force("collision", CollisionForce(radius=25))
        for _ in range(200):
            sim.tick()
            assert (pinned.x, pinned.y) == (10, 20)
            assert (pinned.vx, pinned.vy) == (0, 0)

    def test_pin_snaps_position(self):
        node = MapNode(id="n", x=0, y=0)
        node.fx, node.fy = 30, 40
        Simulation([node]).tick()
        assert (node.x, node.y) == (30, 40)

    def test_single_axis_pin(self):
        node = MapNode(id="n", x=0, y=0, fx=5)
        sim = Simulation([node])
        sim.force("center", CenterForce(100, 100))
        sim.tick(10)
        assert node.x == 5
        assert node.y > 0


class TestNanGuard:
    def test_non_finite_position_reset_to_fallback(self, caplog):
        node = MapNode(id="n", x=float("nan"), y=float("inf"))
        sim = Simulation([node], SimulationConfig(fallback_x=400, fallback_y=300))
        with caplog.at_level("WARNING", logger="codemap.simulation"):
            sim.tick()
        assert (node.x, node.y) == (400, 300)
        assert sim.nan_resets >= 2
        assert any("non-finite" in r.getMessage() for r in caplog.records)

    def test_non_finite_velocity_zeroed(self):
        node = MapNode(id="n", x=1, y=1, vx=float("nan"))
        sim = Simulation([node])
        sim.tick()
        assert node.vx == 0
        assert math.isfinite(node.x)


class TestRegistry:
    def test_force_get_set_remove(self):
        sim = create_simulation([MapNode(id="a")])
        center = CenterForce()
        assert sim.force("center", center) is sim
        assert sim.force("center") is center
        assert "center" in sim.forces
        sim.force("center", None)
        assert sim.force("center") is None

    def test_nodes_reinitialises_forces(self):
        a, b = MapNode(id="a"), MapNode(id="b", x=10)
        link = LinkForce([MapEdge(source_id="a", target_id="b")])
        sim = Simulation([a])
        sim.force("link", link)
        assert link._links == []
        sim.nodes([a, b])
        assert len(link._links) == 1

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            Simulation().on("drag", lambda s: None)

    def test_failing_observer_does_not_stop_ticks(self):
        sim = Simulation([MapNode(id="a")])

        def boom(_sim):
            raise RuntimeError("observer bug")

        sim.on("tick", boom)
        sim.tick(3)
        assert sim.ticks == 3


class TestTimerLoop:
    def test_restart_never_leaks_handles(self):
        ticks = ManualTickSource()
        sim = Simulation([MapNode(id="a")], tick_source=ticks)
        sim.restart()
        sim.restart()
        sim.restart(0.5)
        assert ticks.pending == 1
        assert sim.running

    def test_stop_is_idempotent(self):
        ticks = ManualTickSource()
        sim = Simulation([MapNode(id="a")], tick_source=ticks)
        sim.restart()
        sim.stop()
        sim.stop()
        assert not sim.running
        assert ticks.pending == 0
        assert ticks.advance(1000) == 0

    def test_advance_fires_due_ticks(self):
        ticks = ManualTickSource()
        sim = Simulation([MapNode(id="a")], tick_source=ticks)
        sim.restart()
        ticks.advance(16)
        assert sim.ticks == 1
        ticks.advance(48)
        assert sim.ticks == 4

    def test_observer_can_stop_the_loop(self):
        ticks = ManualTickSource()
        sim = Simulation([MapNode(id="a")], tick_source=ticks)
        sim.on("tick", lambda s: s.ticks >= 5 and s.stop())
        sim.restart()
        ticks.run_all()
        assert sim.ticks == 5
        assert not sim.running
        assert ticks.pending == 0

    def test_loop_runs_to_end(self):
        ticks = ManualTickSource()
        sim = Simulation([MapNode(id="a")], tick_source=ticks)
        events = []
        sim.on("tick", lambda s: events.append("tick"))
        sim.on("end", lambda s: events.append("end"))
        sim.restart()
        ticks.run_all()
        assert not sim.running
        assert sim.alpha() < sim.alpha_min
        assert events.count("end") == 1
        assert events[-1] == "end"

    def test_three_node_imports_scenario(self):
        a = MapNode(id="a", x=-130, y=0)
        b = MapNode(id="b", x=130, y=0)
        c = MapNode(id="c", x=0, y=300)
        ticks = ManualTickSource()
        sim = Simulation([a, b, c], tick_source=ticks)
        sim.force("link", LinkForce.from_config(
            [MapEdge(source_id="a", target_id="b", kind="imports", weight=1)], ForceConfig()
        ))
        sim.force("center", CenterForce(0, 0, strength=0.05))
        sim.restart()
        ticks.run_all()

        assert sim.alpha() < sim.alpha_min
        assert math.hypot(a.x - b.x, a.y - b.y) == pytest.approx(250, rel=0.01)
        # The centroid (0, 100) is pulled onto the centre; C only shares that shift
        assert c.x == pytest.approx(0, abs=1)
        assert c.y == pytest.approx(200, abs=2)


class TestAsyncioTickSource:
    def test_runs_on_event_loop(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            done = loop.create_future()
            sim = Simulation([MapNode(id="a")], SimulationConfig(interval_ms=0), AsyncioTickSource(loop))
            sim.on("end", lambda s: done.set_result(s.ticks))
            sim.restart()
            return await asyncio.wait_for(done, timeout=10)

        assert asyncio.run(scenario()) > 300

    def test_cancel(self):
        async def scenario():
            sim = Simulation([MapNode(id="a")], tick_source=AsyncioTickSource())
            sim.restart()
            sim.stop()
            await asyncio.sleep(0.05)
            return sim.ticks

        assert asyncio.run(scenario()) == 0
