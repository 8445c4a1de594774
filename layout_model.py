"""
layout_model.py  –  Value types and the on-disk layout document
================================================================

One document per monitor configuration:

    {
      "identifier": "config-1a2b3c4d5e6f7a8b",
      "displays":   [{identifier, name, resolution: [w, h], position: [x, y]}],
      "windows":    [{applicationBundleIdentifier, applicationName,
                      windowTitle, displayIdentifier, frame: [[x, y], [w, h]],
                      lastSeenAt?, isMinimized?, windowIdentifier?}],
      "capturedAt": "2026-10-18T09:30:00+00:00"
    }

Older documents may lack lastSeenAt / isMinimized / windowIdentifier; those
decode to now / False / None.  Anything else missing is a DecodeError.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple


class DecodeError(ValueError):
    """A stored layout document exists but cannot be understood."""


# ══════════════════════════════════════════════════════════════════════════
#  Tiny helpers
# ══════════════════════════════════════════════════════════════════════════
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(raw: Any) -> datetime:
    """ISO-8601 strings or epoch seconds; naive values are taken as UTC."""
    if isinstance(raw, bool):
        raise DecodeError(f"Invalid timestamp {raw!r}")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    if isinstance(raw, str):
        try:
            value = datetime.fromisoformat(raw.strip())
        except ValueError as exc:
            raise DecodeError(f"Invalid timestamp {raw!r}") from exc
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    raise DecodeError(f"Invalid timestamp {raw!r}")


def _pair(raw: Any, what: str) -> Tuple[float, float]:
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise DecodeError(f"{what} must be a two-element list, got {raw!r}")
    out = []
    for v in raw:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise DecodeError(f"{what} must hold numbers, got {raw!r}")
        out.append(v)
    return out[0], out[1]


def _require(data: Dict, key: str, kind: type, what: str) -> Any:
    if key not in data:
        raise DecodeError(f"{what} is missing {key!r}")
    value = data[key]
    if not isinstance(value, kind):
        raise DecodeError(f"{what}.{key} has unexpected type {type(value).__name__}")
    return value


# ══════════════════════════════════════════════════════════════════════════
#  Geometry
# ══════════════════════════════════════════════════════════════════════════
class Frame(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    @property
    def area(self) -> float:
        return max(self.width, 0) * max(self.height, 0)

    def contains(self, point: Tuple[float, float]) -> bool:
        px, py = point
        return (self.x <= px < self.x + self.width
                and self.y <= py < self.y + self.height)

    def distance_to(self, other: "Frame") -> float:
        """Euclidean distance between the two frame centres."""
        (ax, ay), (bx, by) = self.center, other.center
        return math.hypot(ax - bx, ay - by)

    def to_json(self) -> List[List[float]]:
        return [[self.x, self.y], [self.width, self.height]]

    @classmethod
    def from_json(cls, raw: Any) -> "Frame":
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise DecodeError(f"frame must be [[x, y], [w, h]], got {raw!r}")
        x, y = _pair(raw[0], "frame origin")
        w, h = _pair(raw[1], "frame size")
        return cls(x, y, w, h)


# ══════════════════════════════════════════════════════════════════════════
#  Documents
# ══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class DisplayInfo:
    identifier: str
    name: str
    resolution: Tuple[float, float]
    position: Tuple[float, float]

    @property
    def bounds(self) -> Frame:
        return Frame(self.position[0], self.position[1],
                     self.resolution[0], self.resolution[1])

    def to_dict(self) -> Dict:
        return {
            "identifier": self.identifier,
            "name":       self.name,
            "resolution": list(self.resolution),
            "position":   list(self.position),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DisplayInfo":
        if not isinstance(data, dict):
            raise DecodeError(f"display entry must be an object, got {data!r}")
        return cls(
            identifier=_require(data, "identifier", str, "display"),
            name=_require(data, "name", str, "display"),
            resolution=_pair(data.get("resolution"), "display resolution"),
            position=_pair(data.get("position"), "display position"),
        )


@dataclass(frozen=True)
class WindowSnapshot:
    application_bundle_identifier: str
    application_name: str
    window_title: str
    display_identifier: str
    frame: Frame
    last_seen_at: datetime = field(default_factory=utcnow)
    is_minimized: bool = False
    window_identifier: Optional[int] = None

    def to_dict(self) -> Dict:
        out: Dict[str, Any] = {
            "applicationBundleIdentifier": self.application_bundle_identifier,
            "applicationName":             self.application_name,
            "windowTitle":                 self.window_title,
            "displayIdentifier":           self.display_identifier,
            "frame":                       self.frame.to_json(),
            "lastSeenAt":                  format_timestamp(self.last_seen_at),
            "isMinimized":                 self.is_minimized,
        }
        if self.window_identifier is not None:
            out["windowIdentifier"] = self.window_identifier
        return out

    @classmethod
    def from_dict(cls, data: Any, now: Optional[datetime] = None) -> "WindowSnapshot":
        if not isinstance(data, dict):
            raise DecodeError(f"window entry must be an object, got {data!r}")

        raw_seen = data.get("lastSeenAt")
        last_seen = parse_timestamp(raw_seen) if raw_seen is not None else (now or utcnow())

        raw_min = data.get("isMinimized")
        if raw_min is not None and not isinstance(raw_min, bool):
            raise DecodeError(f"isMinimized must be a boolean, got {raw_min!r}")

        raw_id = data.get("windowIdentifier")
        if raw_id is not None and (isinstance(raw_id, bool) or not isinstance(raw_id, int)):
            raise DecodeError(f"windowIdentifier must be an integer, got {raw_id!r}")

        return cls(
            application_bundle_identifier=_require(
                data, "applicationBundleIdentifier", str, "window"),
            application_name=_require(data, "applicationName", str, "window"),
            window_title=_require(data, "windowTitle", str, "window"),
            display_identifier=_require(data, "displayIdentifier", str, "window"),
            frame=Frame.from_json(data.get("frame")),
            last_seen_at=last_seen,
            is_minimized=bool(raw_min),
            window_identifier=raw_id,
        )


@dataclass(frozen=True)
class DisplayConfiguration:
    identifier: str
    displays: Tuple[DisplayInfo, ...]
    windows: Tuple[WindowSnapshot, ...]
    captured_at: datetime

    def to_dict(self) -> Dict:
        return {
            "identifier": self.identifier,
            "displays":   [d.to_dict() for d in self.displays],
            "windows":    [w.to_dict() for w in self.windows],
            "capturedAt": format_timestamp(self.captured_at),
        }

    @classmethod
    def from_dict(cls, data: Any, now: Optional[datetime] = None) -> "DisplayConfiguration":
        if not isinstance(data, dict):
            raise DecodeError("layout document must be a JSON object")
        displays = _require(data, "displays", list, "configuration")
        windows  = _require(data, "windows", list, "configuration")
        if "capturedAt" not in data:
            raise DecodeError("configuration is missing 'capturedAt'")
        return cls(
            identifier=_require(data, "identifier", str, "configuration"),
            displays=tuple(DisplayInfo.from_dict(d) for d in displays),
            windows=tuple(WindowSnapshot.from_dict(w, now=now) for w in windows),
            captured_at=parse_timestamp(data["capturedAt"]),
        )


# ══════════════════════════════════════════════════════════════════════════
#  What the window source reports
# ══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ObservedWindow:
    """A live window as reported by a window source or actuator.

    ``handle`` is whatever the actuator needs to move the window again
    (an HWND on Windows, an opaque key for the in-memory desktop).
    """

    bundle_id: str
    app_name: str
    title: str
    frame: Frame
    is_minimized: bool = False
    window_id: Optional[int] = None
    handle: Any = None


def display_for_frame(frame: Frame, displays: Sequence[DisplayInfo]) -> str:
    """Identifier of the display holding the frame's centre."""
    centre = frame.center
    for display in displays:
        if display.bounds.contains(centre):
            return display.identifier
    return displays[0].identifier if displays else "unknown"


def snapshot_from_observed(window: ObservedWindow,
                           displays: Sequence[DisplayInfo],
                           seen_at: datetime) -> WindowSnapshot:
    return WindowSnapshot(
        application_bundle_identifier=window.bundle_id,
        application_name=window.app_name,
        window_title=window.title,
        display_identifier=display_for_frame(window.frame, displays),
        frame=window.frame,
        last_seen_at=seen_at,
        is_minimized=window.is_minimized,
        window_identifier=window.window_id,
    )
