"""Messages sent by kanata's TCP server.

kanata serializes its server messages as externally tagged JSON objects,
one per line::

    {"LayerChange":{"new":"nav"}}
    {"ConfigFileReload":{"new":"/home/me/.config/kanata/kanata.kbd"}}

Replies to client requests use an internally tagged ``status`` shape
instead (``{"status":"Ok"}``).  Every shape is modelled so that it can be
recognized and ignored; only :class:`LayerChange` drives transitions.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class ServerMessage(BaseModel):
    """Base for all decoded server records."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    TAG: ClassVar[str] = ""


class LayerChange(ServerMessage):
    """The active layer changed."""

    TAG: ClassVar[str] = "LayerChange"

    new: str = Field(..., description="Name of the newly active layer, verbatim")


class LayerNames(ServerMessage):
    TAG: ClassVar[str] = "LayerNames"

    names: list[str] = Field(default_factory=list)


class CurrentLayerInfo(ServerMessage):
    TAG: ClassVar[str] = "CurrentLayerInfo"

    name: str
    cfg_text: str = ""


class ConfigFileReload(ServerMessage):
    TAG: ClassVar[str] = "ConfigFileReload"

    new: str


class CurrentLayerName(ServerMessage):
    TAG: ClassVar[str] = "CurrentLayerName"

    name: str


class MessagePush(ServerMessage):
    TAG: ClassVar[str] = "MessagePush"

    message: Any = None


class ServerErrorMessage(ServerMessage):
    """An ``Error`` record pushed by the server."""

    TAG: ClassVar[str] = "Error"

    msg: str = ""


class ServerResponse(ServerMessage):
    """Status reply to a client request (``{"status": "Ok"}``)."""

    TAG: ClassVar[str] = "status"

    status: str
    msg: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "Ok"


TAGGED_MESSAGES: dict[str, type[ServerMessage]] = {
    cls.TAG: cls
    for cls in (
        LayerChange,
        LayerNames,
        CurrentLayerInfo,
        ConfigFileReload,
        CurrentLayerName,
        MessagePush,
        ServerErrorMessage,
    )
}
