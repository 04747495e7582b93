"""Typed command/event messages exchanged between a host and the controller."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class CommandType(str, Enum):
    INIT = "INIT"
    START = "START"
    STOP = "STOP"
    STEP = "STEP"
    RESET = "RESET"
    UPDATE_CONFIG = "UPDATE_CONFIG"
    REQUEST_GENOME = "REQUEST_GENOME"
    STATE = "STATE"
    SHUTDOWN = "SHUTDOWN"


class EventType(str, Enum):
    INITED = "INITED"
    RESET = "RESET"
    CONFIG_UPDATED = "CONFIG_UPDATED"
    GENERATION_COMPLETE = "GENERATION_COMPLETE"
    PROGRESS = "PROGRESS"
    GENOME_DETAILS = "GENOME_DETAILS"
    STATUS = "STATUS"
    STATE = "STATE"
    ERROR = "ERROR"


class ControllerState(str, Enum):
    IDLE = "IDLE"
    READY = "READY"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


@dataclass(frozen=True)
class Command:
    type: CommandType
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "Command":
        """Parse ``{"type": ..., "payload": ...}``; the type is case-insensitive."""
        raw_type = str(message.get("type", "")).strip().upper()
        try:
            command_type = CommandType(raw_type)
        except ValueError:
            raise ValueError(f"Unknown command type: {message.get('type')!r}") from None

        payload = message.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            if command_type is CommandType.REQUEST_GENOME:
                payload = {"id": payload}
            else:
                raise ValueError(f"{raw_type} payload must be an object, got {type(payload).__name__}")
        return cls(type=command_type, payload=copy.deepcopy(dict(payload)))


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type.value, **copy.deepcopy(self.payload)}
