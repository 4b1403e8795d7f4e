"""
Iterative force simulation for codemap.

The simulation owns a node list, a registry of named forces and an alpha
(temperature) schedule.  Each tick:

    1. alpha += (alpha_target - alpha) * alpha_decay
    2. every force adds velocity deltas, scaled by alpha where it chooses to
    3. every free axis is damped (v *= velocity_decay) and integrated
       (position += v); a pinned axis snaps to fx/fy with zero velocity
    4. NaN/inf velocities reset to 0 and NaN/inf positions reset to the
       fallback point, counted in ``nan_resets``

Time comes from a ``TickSource``.  The simulation never touches a real clock
itself: the server drives it with ``AsyncioTickSource`` and tests drive it
with ``ManualTickSource`` or by calling ``tick()`` in a loop.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from .config import SimulationConfig
from .forces import Force
from .models import MapNode

logger = logging.getLogger(__name__)

_MISSING = object()

# Stands in for the timer handle while a scheduled step is running
_IN_STEP = object()

EVENTS = ("tick", "end")


# ---------------------------------------------------------------------------
# Tick sources
# ---------------------------------------------------------------------------

class TickSource(ABC):
    """Schedules one-shot callbacks; the simulation re-arms after each tick."""

    @abstractmethod
    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> Any:
        ...

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        ...


class ManualTickSource(TickSource):
    """A tick source driven by hand, for tests and frame-driven hosts."""

    def __init__(self) -> None:
        self.now_ms = 0.0
        self._queue: list[tuple[float, int, Callable[[], None]]] = []
        self._cancelled: set[int] = set()
        self._ids = itertools.count()

    @property
    def pending(self) -> int:
        return sum(1 for _, hid, _ in self._queue if hid not in self._cancelled)

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> int:
        handle = next(self._ids)
        heapq.heappush(self._queue, (self.now_ms + max(0.0, delay_ms), handle, callback))
        return handle

    def cancel(self, handle: Any) -> None:
        if handle is not None:
            self._cancelled.add(handle)

    def advance(self, ms: float) -> int:
        """Move time forward by ``ms`` and fire every callback that fell due.

        Returns the number of callbacks fired.
        """
        deadline = self.now_ms + ms
        fired = 0
        while self._queue and self._queue[0][0] <= deadline:
            due, handle, callback = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            self.now_ms = max(self.now_ms, due)
            callback()
            fired += 1
        self.now_ms = deadline
        return fired

    def run_all(self, max_calls: int = 100_000) -> int:
        """Fire callbacks in due order until nothing is pending."""
        fired = 0
        while self._queue and fired < max_calls:
            due, handle, callback = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            self.now_ms = max(self.now_ms, due)
            callback()
            fired += 1
        return fired


class AsyncioTickSource(TickSource):
    """Schedules ticks on an asyncio event loop with ``call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay_ms) / 1000.0, callback)

    def cancel(self, handle: Any) -> None:
        if handle is not None:
            handle.cancel()


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class Simulation:
    """Force simulation over a list of ``MapNode``.

    Getter/setter methods (``alpha()``, ``alpha(0.5)``) follow the usual
    force-layout API so callers can chain configuration.
    """

    def __init__(
        self,
        nodes: Iterable[MapNode] = (),
        config: Optional[SimulationConfig] = None,
        tick_source: Optional[TickSource] = None,
    ):
        cfg = config or SimulationConfig()
        self.config = cfg
        self.alpha_min = cfg.alpha_min
        self.alpha_decay = cfg.alpha_decay
        self.velocity_decay = cfg.velocity_decay
        self.interval_ms = cfg.interval_ms
        self.fallback = (cfg.fallback_x, cfg.fallback_y)
        self.tick_source = tick_source or ManualTickSource()

        self._nodes: list[MapNode] = list(nodes)
        self._forces: dict[str, Force] = {}
        self._listeners: dict[str, list[Callable[["Simulation"], None]]] = {e: [] for e in EVENTS}
        self._alpha = 1.0
        self._alpha_target = cfg.alpha_target
        self._handle: Any = None
        self.ticks = 0
        self.nan_resets = 0

    # --- configuration -----------------------------------------------------

    def nodes(self, nodes: Optional[Iterable[MapNode]] = None):
        """Get the node list, or replace it and re-initialize every force."""
        if nodes is None:
            return self._nodes
        self._nodes = list(nodes)
        for force in self._forces.values():
            force.initialize(self._nodes)
        return self

    def force(self, name: str, force: Any = _MISSING):
        """Get, register or remove (``None``) a named force."""
        if force is _MISSING:
            return self._forces.get(name)
        if force is None:
            self._forces.pop(name, None)
            return self
        force.initialize(self._nodes)
        self._forces[name] = force
        return self

    @property
    def forces(self) -> dict[str, Force]:
        return dict(self._forces)

    def alpha(self, value: Optional[float] = None):
        if value is None:
            return self._alpha
        self._alpha = float(value)
        return self

    def alpha_target(self, value: Optional[float] = None):
        if value is None:
            return self._alpha_target
        self._alpha_target = float(value)
        return self

    def on(self, event: str, callback: Optional[Callable[["Simulation"], None]]):
        """Register a ``tick`` or ``end`` observer; ``None`` clears the event."""
        if event not in self._listeners:
            raise ValueError(f"Unknown simulation event '{event}'. Valid events: {', '.join(EVENTS)}")
        if callback is None:
            self._listeners[event] = []
        else:
            self._listeners[event].append(callback)
        return self

    # --- stepping ----------------------------------------------------------

    def tick(self, iterations: int = 1) -> "Simulation":
        """Advance the simulation by ``iterations`` steps and notify ``tick`` observers."""
        for _ in range(iterations):
            self._alpha += (self._alpha_target - self._alpha) * self.alpha_decay
            for force in self._forces.values():
                force.apply(self._nodes, self._alpha)
            self._integrate()
            self.ticks += 1
        self._emit("tick")
        return self

    def _integrate(self) -> None:
        decay = self.velocity_decay
        fallback_x, fallback_y = self.fallback
        for node in self._nodes:
            if node.fx is None:
                node.vx *= decay
                if not math.isfinite(node.vx):
                    node.vx = 0.0
                    self._record_nan(node, "vx")
                node.x += node.vx
            else:
                node.x = node.fx
                node.vx = 0.0
            if node.fy is None:
                node.vy *= decay
                if not math.isfinite(node.vy):
                    node.vy = 0.0
                    self._record_nan(node, "vy")
                node.y += node.vy
            else:
                node.y = node.fy
                node.vy = 0.0

            if not math.isfinite(node.x):
                node.x = fallback_x
                node.vx = 0.0
                self._record_nan(node, "x")
            if not math.isfinite(node.y):
                node.y = fallback_y
                node.vy = 0.0
                self._record_nan(node, "y")

    def _record_nan(self, node: MapNode, field: str) -> None:
        self.nan_resets += 1
        logger.warning(
            "Reset non-finite %s on node %s (%d resets so far)", field, node.id, self.nan_resets
        )

    def _emit(self, event: str) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(self)
            except Exception:
                logger.exception("Simulation %s observer failed", event)

    # --- timer loop --------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._handle is not None

    def restart(self, alpha: float = 1.0) -> "Simulation":
        """Set alpha and (re)start the timer loop, cancelling any previous handle."""
        self._alpha = float(alpha)
        self._cancel_pending()
        self._handle = self.tick_source.schedule(self.interval_ms, self._step)
        return self

    def stop(self) -> "Simulation":
        """Stop the timer loop.  Safe to call any number of times, also from an observer."""
        self._cancel_pending()
        self._handle = None
        return self

    def _cancel_pending(self) -> None:
        if self._handle is not None and self._handle is not _IN_STEP:
            self.tick_source.cancel(self._handle)

    def _step(self) -> None:
        self._handle = _IN_STEP
        self.tick()
        if self._handle is not _IN_STEP:
            # an observer stopped or restarted the loop
            return
        self._handle = None
        if self._alpha < self.alpha_min:
            logger.debug("Simulation settled after %d ticks", self.ticks)
            self._emit("end")
            return
        self._handle = self.tick_source.schedule(self.interval_ms, self._step)

    def run_until_settled(self, max_ticks: Optional[int] = None) -> int:
        """Tick synchronously until alpha drops below ``alpha_min``.

        Stops any running timer first.  Returns the number of ticks taken;
        ``max_ticks`` bounds the loop when ``alpha_target`` keeps it warm.
        """
        self.stop()
        limit = self.config.max_ticks if max_ticks is None else max_ticks
        taken = 0
        while self._alpha >= self.alpha_min and taken < limit:
            self.tick()
            taken += 1
        if self._alpha < self.alpha_min:
            self._emit("end")
        else:
            logger.info("Simulation still warm after %d ticks (alpha=%.4f)", taken, self._alpha)
        return taken


def create_simulation(
    nodes: Iterable[MapNode] = (),
    config: Optional[SimulationConfig] = None,
    tick_source: Optional[TickSource] = None,
) -> Simulation:
    """Create a simulation over ``nodes`` with no forces registered."""
    return Simulation(nodes, config=config, tick_source=tick_source)
