"""Payloads the engine posts to the host shell.

Every message serialises to ``{"type": ..., ...}`` with camelCase keys via
``to_message()``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

EMPTY_STATE_MESSAGE = "No dependency data available. Make sure the project is indexed."

NodeAction = Literal["open", "reveal", "copy-path", "select"]
NODE_EVENT_TYPES = {
    "select": "node:selected",
    "open": "node:open",
    "reveal": "node:reveal",
    "copy-path": "node:copy-path",
}


class HostMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class NodePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    kind: str
    label: str
    path: Optional[str] = None
    x: float
    y: float
    width: float
    height: float
    pinned: bool = False
    color: Optional[str] = None
    changed: bool = False
    parent_id: Optional[str] = None


class EdgePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source: str
    target: str
    kind: str
    weight: float = 1.0
    points: Optional[list[tuple[float, float]]] = None


class GraphUpdate(HostMessage):
    type: str = "graph:update"
    nodes: list[NodePayload] = Field(default_factory=list)
    edges: list[EdgePayload] = Field(default_factory=list)
    empty_message: Optional[str] = None


class OverlaySession(HostMessage):
    type: str = "overlay:session"
    session_id: Optional[int] = None
    changes: list[dict[str, Any]] = Field(default_factory=list)


class OverlayClear(HostMessage):
    type: str = "overlay:clear"


class FilesChanged(HostMessage):
    type: str = "files:changed"
    paths: list[str] = Field(default_factory=list)


class PathResult(HostMessage):
    type: str = "path:result"
    source: str
    target: str
    path: list[str] = Field(default_factory=list)


class NodeEvent(HostMessage):
    """A node was selected or acted on; ``type`` follows ``action``."""

    type: str = ""
    action: NodeAction = "select"
    node_id: str
    path: Optional[str] = None

    @model_validator(mode="after")
    def _type_from_action(self) -> "NodeEvent":
        if not self.type:
            self.type = NODE_EVENT_TYPES[self.action]
        return self


class LayoutSave(HostMessage):
    type: str = "layout:save"
    layout: dict[str, dict[str, float]] = Field(default_factory=dict)
