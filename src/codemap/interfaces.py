"""
Collaborators the layout engine talks to but does not implement.

    GraphStore: the source indexer's store of files, symbols, edges and smells
    ChangeTracker: git/session change detection
    HostShell: whatever hosts the panel; receives messages and opens files

They are ``typing.Protocol`` classes so any object with the right methods
will do.  The record models mirror the rows the indexer produces.
``InMemoryStore`` is a plain in-memory ``GraphStore`` for the server and
for tests.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class FileRecord(BaseModel):
    id: int
    path: str
    lang: str = ""
    size: int = 0


class SymbolRecord(BaseModel):
    """A symbol-level node from the indexer (function, class, module ...)."""
    id: int
    path: str
    kind: str
    name: str
    range_start: int = 0
    range_end: int = 0


class EdgeRecord(BaseModel):
    src: int
    dst: int
    kind: str
    weight: float = 1.0


class FileSmell(BaseModel):
    file_id: int
    score: float = 0.0
    line_count: int = 0
    function_count: int = 0
    avg_function_length: float = 0.0
    max_function_length: int = 0
    max_nesting_depth: int = 0
    import_count: int = 0


class ChangeRecord(BaseModel):
    file_id: int
    summary_text: str = ""
    hunks_json: str = "[]"


class BranchChange(BaseModel):
    file_path: str
    diff_text: str = ""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class GraphStore(Protocol):
    def list_files(self) -> list[FileRecord]: ...

    def list_nodes(self) -> list[SymbolRecord]: ...

    def list_edges(self) -> list[EdgeRecord]: ...

    def get_node_by_id(self, node_id: int) -> Optional[SymbolRecord]: ...

    def list_file_smells(self) -> list[FileSmell]: ...


@runtime_checkable
class ChangeTracker(Protocol):
    def create_session_from_git_changes(self) -> Optional[int]: ...

    def get_changes_by_session(self, session_id: int) -> list[ChangeRecord]: ...

    def get_current_branch_changes(self) -> list[BranchChange]: ...


@runtime_checkable
class HostShell(Protocol):
    def post_message(self, message: dict[str, Any]) -> None: ...

    def open_file(self, path: str) -> None: ...

    def reveal_file(self, path: str) -> None: ...

    def copy_to_clipboard(self, text: str) -> None: ...

    def read_layout(self) -> dict[str, dict[str, float]]: ...

    def write_layout(self, layout: dict[str, dict[str, float]]) -> None: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryStore(BaseModel):
    """A ``GraphStore`` backed by plain lists."""
    files: list[FileRecord] = Field(default_factory=list)
    nodes: list[SymbolRecord] = Field(default_factory=list)
    edges: list[EdgeRecord] = Field(default_factory=list)
    smells: list[FileSmell] = Field(default_factory=list)

    def list_files(self) -> list[FileRecord]:
        return list(self.files)

    def list_nodes(self) -> list[SymbolRecord]:
        return list(self.nodes)

    def list_edges(self) -> list[EdgeRecord]:
        return list(self.edges)

    def get_node_by_id(self, node_id: int) -> Optional[SymbolRecord]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def list_file_smells(self) -> list[FileSmell]:
        return list(self.smells)
