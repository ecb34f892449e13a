# src/wmrecorder/monitor/normalizer.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, Union

from wmrecorder.monitor.events import RawEvent, TimeEntry, WindowChange, WindowEventKind

CLASS_PROPERTY = "class"

CHANGE_KIND_MAP: Dict[WindowChange, WindowEventKind] = {
    WindowChange.NEW: WindowEventKind.OPEN,
    WindowChange.CLOSE: WindowEventKind.CLOSE,
    WindowChange.FOCUS: WindowEventKind.FOCUS,
    WindowChange.TITLE: WindowEventKind.TITLE_CHANGE,
    WindowChange.FULLSCREEN_MODE: WindowEventKind.MOVE,
    WindowChange.MOVE: WindowEventKind.MOVE,
    WindowChange.FLOATING: WindowEventKind.MOVE,
    WindowChange.URGENT: WindowEventKind.OTHER,
    WindowChange.MARK: WindowEventKind.OTHER,
    WindowChange.UNKNOWN: WindowEventKind.OTHER,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def storable_text(value) -> str:
    """Text safe to encode as UTF-8; lone surrogates become U+FFFD."""
    if not value:
        return ""
    return str(value).encode("utf-8", "surrogatepass").decode("utf-8", "replace")


def classify(change_kind: Union[WindowChange, str]) -> WindowEventKind:
    """Project a source change reason onto the canonical kind. Never fails."""
    return CHANGE_KIND_MAP.get(WindowChange.from_wire(change_kind), WindowEventKind.OTHER)


def normalize(raw: RawEvent, clock: Callable[[], datetime] = utcnow) -> TimeEntry:
    """
    Build the canonical TimeEntry for a window change event.

    Only window changes are accepted here; callers filter every other
    category before calling. Missing name or class become empty strings and
    the area is width * height with no validation. Text is made UTF-8 safe so
    every entry can be stored.
    """
    properties = raw.window_class_properties or {}
    rect = raw.window_rect

    return TimeEntry(
        event_time=clock(),
        event_source=classify(raw.change_kind),
        window_area=rect.width * rect.height,
        window_name=storable_text(raw.window_name),
        window_class=storable_text(properties.get(CLASS_PROPERTY)),
    )
