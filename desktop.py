"""Collaborator interfaces the layout engine talks to, plus an in-memory desktop.

The engine never touches the OS directly.  It asks a WindowSource what is on
screen, a DisplaySource which monitors are attached, and a WindowActuator to
move things back.  win32_desktop implements these for Windows; MemoryDesktop
implements them over plain lists so the engine can be driven anywhere.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, List, NamedTuple, Optional, Protocol, Sequence

from layout_identity import configuration_identity
from layout_model import DisplayInfo, Frame, ObservedWindow


class FrameApplyResult(NamedTuple):
    position: bool
    size: bool

    @property
    def ok(self) -> bool:
        return self.position and self.size

    def describe(self) -> str:
        return (f"position: {'ok' if self.position else 'failed'}, "
                f"size: {'ok' if self.size else 'failed'}")


class WindowSource(Protocol):
    def enumerate_windows(self) -> List[ObservedWindow]: ...


class DisplaySource(Protocol):
    def get_displays(self) -> List[DisplayInfo]: ...

    def current_configuration_identifier(self) -> str: ...

    def display_count(self) -> int: ...


class WindowActuator(Protocol):
    def is_running(self, bundle_id: str) -> bool: ...

    def live_windows(self, bundle_id: str) -> List[ObservedWindow]: ...

    def apply_frame(self, handle: Any, frame: Frame) -> FrameApplyResult: ...

    def apply_minimized(self, handle: Any, minimized: bool) -> bool: ...


# ══════════════════════════════════════════════════════════════════════════
#  In-memory desktop
# ══════════════════════════════════════════════════════════════════════════
@dataclass
class MemoryWindow:
    bundle_id: str
    app_name: str
    title: str
    frame: Frame
    is_minimized: bool = False
    window_id: Optional[int] = None
    handle: int = 0


@dataclass
class MemoryDesktop:
    """A scriptable desktop: windows and displays are plain attributes.

    ``fail_position`` / ``fail_size`` / ``fail_minimize`` hold handles whose
    applies report failure.  ``applied`` records every call made
    by the actuator side, in order.
    """

    displays: List[DisplayInfo] = field(default_factory=list)
    windows: List[MemoryWindow] = field(default_factory=list)
    running: Optional[set] = None
    fail_position: set = field(default_factory=set)
    fail_size: set = field(default_factory=set)
    fail_minimize: set = field(default_factory=set)
    applied: List[tuple] = field(default_factory=list)
    _handles: Any = field(default_factory=lambda: itertools.count(1), repr=False)

    def add_window(self, bundle_id: str, title: str, frame: Sequence[float],
                   app_name: str = "", is_minimized: bool = False,
                   window_id: Optional[int] = None) -> MemoryWindow:
        window = MemoryWindow(
            bundle_id=bundle_id,
            app_name=app_name or bundle_id.rsplit(".", 1)[-1],
            title=title,
            frame=Frame(*frame),
            is_minimized=is_minimized,
            window_id=window_id,
            handle=next(self._handles),
        )
        self.windows.append(window)
        return window

    def window(self, handle: int) -> MemoryWindow:
        for w in self.windows:
            if w.handle == handle:
                return w
        raise KeyError(handle)

    def _observed(self, w: MemoryWindow) -> ObservedWindow:
        return ObservedWindow(
            bundle_id=w.bundle_id,
            app_name=w.app_name,
            title=w.title,
            frame=w.frame,
            is_minimized=w.is_minimized,
            window_id=w.window_id,
            handle=w.handle,
        )

    # ── WindowSource ──────────────────────────────────────────────────────
    def enumerate_windows(self) -> List[ObservedWindow]:
        return [self._observed(w) for w in self.windows
                if w.title.strip() and w.frame.area > 0]

    # ── DisplaySource ─────────────────────────────────────────────────────
    def get_displays(self) -> List[DisplayInfo]:
        return list(self.displays)

    def current_configuration_identifier(self) -> str:
        return configuration_identity(d.identifier for d in self.displays)

    def display_count(self) -> int:
        return len(self.displays)

    # ── WindowActuator ────────────────────────────────────────────────────
    def is_running(self, bundle_id: str) -> bool:
        if self.running is not None:
            return bundle_id in self.running
        return any(w.bundle_id == bundle_id for w in self.windows)

    def live_windows(self, bundle_id: str) -> List[ObservedWindow]:
        return [self._observed(w) for w in self.windows
                if w.bundle_id == bundle_id and w.frame.area > 0]

    def apply_frame(self, handle: int, frame: Frame) -> FrameApplyResult:
        self.applied.append(("frame", handle, frame))
        window = self.window(handle)
        position_ok = handle not in self.fail_position
        size_ok = handle not in self.fail_size
        x, y, w, h = window.frame
        if position_ok:
            x, y = frame.x, frame.y
        if size_ok:
            w, h = frame.width, frame.height
        window.frame = Frame(x, y, w, h)
        return FrameApplyResult(position_ok, size_ok)

    def apply_minimized(self, handle: int, minimized: bool) -> bool:
        self.applied.append(("minimized", handle, minimized))
        if handle in self.fail_minimize:
            return False
        self.window(handle).is_minimized = minimized
        return True
