"""Shared test fixtures for codemap."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from codemap.builder import build_component_graph
from codemap.interfaces import (
    BranchChange,
    ChangeRecord,
    EdgeRecord,
    FileRecord,
    FileSmell,
    InMemoryStore,
    SymbolRecord,
)
from codemap.models import MapEdge, MapGraph, MapNode
from codemap.parser import parse_component_config

COMPONENT_CONFIG = """
project-spec:
  components:
    - api:
        name: API Layer
        description: HTTP handlers
        files:
          - src/api/**
        external:
          - name: Postgres
            type: database
            usedBy:
              - src/api/db.py
    - core:
        name: Core
        files:
          - src/core/
          - src/core/planned.py
"""


class RecordingHost:
    """A HostShell that remembers everything it was asked to do."""

    def __init__(self, layout: Optional[dict] = None):
        self.messages: list[dict[str, Any]] = []
        self.opened: list[str] = []
        self.revealed: list[str] = []
        self.clipboard: list[str] = []
        self.saved: list[dict] = []
        self._layout = dict(layout or {})

    def post_message(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def open_file(self, path: str) -> None:
        self.opened.append(path)

    def reveal_file(self, path: str) -> None:
        self.revealed.append(path)

    def copy_to_clipboard(self, text: str) -> None:
        self.clipboard.append(text)

    def read_layout(self) -> dict:
        return dict(self._layout)

    def write_layout(self, layout: dict) -> None:
        self.saved.append(dict(layout))

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == message_type]


class FakeTracker:
    """A ChangeTracker with canned answers."""

    def __init__(self, session_id=None, changes=(), branch=()):
        self.session_id = session_id
        self.changes = list(changes)
        self.branch = list(branch)

    def create_session_from_git_changes(self):
        return self.session_id

    def get_changes_by_session(self, session_id):
        return self.changes if session_id == self.session_id else []

    def get_current_branch_changes(self):
        return self.branch


@pytest.fixture
def host() -> RecordingHost:
    return RecordingHost()


@pytest.fixture
def store() -> InMemoryStore:
    """Five files in three directories, with symbol-level edges and smells."""
    files = [
        FileRecord(id=1, path="src/api/routes.py", lang="python", size=4000),
        FileRecord(id=2, path="src/api/db.py", lang="python", size=1500),
        FileRecord(id=3, path="src/core/engine.py", lang="python", size=12000),
        FileRecord(id=4, path="src/core/util.py", lang="python", size=600),
        FileRecord(id=5, path="scripts/deploy.sh", lang="shell", size=300),
    ]
    symbols = [
        SymbolRecord(id=10, path="src/api/routes.py", kind="function", name="index"),
        SymbolRecord(id=11, path="src/api/routes.py", kind="function", name="detail"),
        SymbolRecord(id=20, path="src/api/db.py", kind="function", name="connect"),
        SymbolRecord(id=30, path="src/core/engine.py", kind="class", name="Engine"),
        SymbolRecord(id=40, path="src/core/util.py", kind="function", name="slug"),
    ]
    edges = [
        EdgeRecord(src=10, dst=20, kind="imports"),
        EdgeRecord(src=11, dst=20, kind="imports"),
        EdgeRecord(src=10, dst=30, kind="calls", weight=2.0),
        EdgeRecord(src=30, dst=40, kind="imports"),
        EdgeRecord(src=10, dst=11, kind="calls"),
    ]
    smells = [FileSmell(file_id=3, score=0.8, line_count=240, function_count=12)]
    return InMemoryStore(files=files, nodes=symbols, edges=edges, smells=smells)


@pytest.fixture
def components():
    return parse_component_config(COMPONENT_CONFIG)


@pytest.fixture
def component_graph(store, components) -> MapGraph:
    return build_component_graph(store, components)


@pytest.fixture
def chain_graph() -> MapGraph:
    """a -> b -> c, plus an unconnected d."""
    return MapGraph(
        nodes=[MapNode(id=n, path=f"src/{n}.py") for n in ("a", "b", "c", "d")],
        edges=[
            MapEdge(source_id="a", target_id="b"),
            MapEdge(source_id="b", target_id="c"),
        ],
    )


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker(
        session_id=7,
        changes=[ChangeRecord(file_id=2, summary_text="connection pool", hunks_json="[]")],
        branch=[BranchChange(file_path="src/core/util.py", diff_text="+x")],
    )
