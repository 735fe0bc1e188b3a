"""Typed models for kanata server messages."""

from kanata_observer.models.messages import (
    TAGGED_MESSAGES,
    ConfigFileReload,
    CurrentLayerInfo,
    CurrentLayerName,
    LayerChange,
    LayerNames,
    MessagePush,
    ServerErrorMessage,
    ServerMessage,
    ServerResponse,
)

__all__ = [
    "TAGGED_MESSAGES",
    "ConfigFileReload",
    "CurrentLayerInfo",
    "CurrentLayerName",
    "LayerChange",
    "LayerNames",
    "MessagePush",
    "ServerErrorMessage",
    "ServerMessage",
    "ServerResponse",
]
