# src/wmrecorder/monitor/events.py
"""Raw source events and the canonical TimeEntry record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class WindowChange(str, Enum):
    """Change reasons the window manager attaches to a window event."""

    NEW = "new"
    CLOSE = "close"
    FOCUS = "focus"
    TITLE = "title"
    FULLSCREEN_MODE = "fullscreen_mode"
    MOVE = "move"
    FLOATING = "floating"
    URGENT = "urgent"
    MARK = "mark"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value) -> "WindowChange":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class WindowEventKind(str, Enum):
    """What the user did, as stored in the event_source column."""

    OPEN = "open"
    CLOSE = "close"
    # fullscreen, floating and layout moves all collapse here
    MOVE = "move"
    FOCUS = "focus"
    TITLE_CHANGE = "title_change"
    OTHER = "other"


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class RawEvent:
    """A window change notification, as the source reported it."""

    change_kind: Union[WindowChange, str]
    window_rect: Rect
    window_name: Optional[str] = None
    window_class_properties: Optional[Mapping[str, str]] = None


@dataclass(frozen=True)
class OtherEvent:
    """Any source event that is not a window change. Never recorded."""

    category: str


SourceEvent = Union[RawEvent, OtherEvent]


class TimeEntry(BaseModel):
    """Record what a user is doing at an instant in time."""

    model_config = ConfigDict(frozen=True)

    # when the recorder observed the event, not when the source emitted it
    event_time: datetime
    event_source: WindowEventKind
    # screen area the window occupies; degenerate geometry is kept verbatim
    window_area: int
    # often carries the visited website or the terminal's working directory
    window_name: str = ""
    # usually the program name, handy for grouping actions
    window_class: str = ""

    @field_validator("event_time")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("event_time must be timezone-aware")
        return value
