"""
win32_desktop.py  –  Windows collaborators for the layout engine
=================================================================

Key behaviours
  · Application identity is the lower-cased process image name
    ("notepad.exe").
  · The stable window id hashes the HWND together with the owning process id
    and start time.  Windows hands HWNDs out again once a window is gone, so
    a bare HWND saved last week can name some other window today; tying it
    to the process instance stops a restarted app from inheriting old ids.
  · UWP hosts, the desktop layers and tool windows are never captured:
    they can't be moved meaningfully.
  · Frames come from GetWindowPlacement's normal rect, so minimised and
    maximised windows report where they will return to.  Aero-snapped
    windows report their live rect instead (snap bypasses normalPosition).
  · Monitor identity is parsed from the monitor's PnP device id
    (MONITOR\\DEL4093\\{class-guid}\\0003 → vendor DEL, model 4093,
    instance 0003) plus its resolution.
"""

import hashlib
from typing import Dict, List, Optional, Tuple

import psutil
import win32api
import win32con
import win32gui
import win32process

from desktop import FrameApplyResult
from layout_identity import configuration_identity, display_identity
from layout_model import DisplayInfo, Frame, ObservedWindow

# Processes that show visible top-level windows but can't be repositioned.
_BLOCKED_PROC = {
    "textinputhost.exe",          # Windows Input Experience
    "applicationframehost.exe",   # UWP shell host
    "shellhost.exe",
    "startmenuexperiencehost.exe",
    "searchhost.exe",
    "searchapp.exe",
    "lockapp.exe",
    "systemsettings.exe",
    "dwm.exe",
    "fontdrvhost.exe",
    "rtkuwp.exe",
}

_BLOCKED_CLASS = {
    "windows.ui.core.corewindow",
    "applicationframewindow",
    "progman",
    "workerw",
}

# Pixels of slack when checking that a placement actually took.
APPLY_TOLERANCE = 2


# ══════════════════════════════════════════════════════════════════════════
#  Tiny helpers
# ══════════════════════════════════════════════════════════════════════════
def _safe_text(hwnd: int) -> str:
    try:
        return win32gui.GetWindowText(hwnd) or ""
    except Exception:
        return ""


def _safe_class(hwnd: int) -> str:
    try:
        return win32gui.GetClassName(hwnd) or ""
    except Exception:
        return ""


def _get_pid(hwnd: int) -> int:
    try:
        _, pid = win32process.GetWindowThreadProcessId(hwnd)
        return int(pid or 0)
    except Exception:
        return 0


def _proc_name(pid: int) -> str:
    if not pid:
        return ""
    try:
        return psutil.Process(pid).name() or ""
    except (psutil.Error, OSError):
        return ""


def _proc_started(pid: int) -> float:
    if not pid:
        return 0.0
    try:
        return float(psutil.Process(pid).create_time())
    except (psutil.Error, OSError):
        return 0.0


def stable_window_id(hwnd: int, pid: int, started: float) -> int:
    """HWND scoped to one run of its process, as a positive 60-bit int."""
    key = f"{int(hwnd)}:{int(pid)}:{started:.3f}".encode("ascii")
    return int(hashlib.sha256(key).hexdigest()[:15], 16)


def _window_rect(hwnd: int) -> Tuple[int, int, int, int]:
    try:
        return tuple(win32gui.GetWindowRect(hwnd))
    except Exception:
        return (0, 0, 0, 0)


def _window_placement(hwnd: int) -> Tuple[int, Tuple[int, int, int, int]]:
    """(showCmd, normalPositionRect); the rect is the restored geometry."""
    try:
        pl = win32gui.GetWindowPlacement(hwnd)
        return int(pl[1]), tuple(pl[4])
    except Exception:
        return win32con.SW_SHOWNORMAL, (0, 0, 0, 0)


def _is_snapped(show_cmd: int, live_rect: tuple, normal_rect: tuple,
                threshold: int = 10) -> bool:
    if show_cmd != win32con.SW_SHOWNORMAL:
        return False
    if len(live_rect) < 4 or len(normal_rect) < 4:
        return False
    return not all(abs(live_rect[i] - normal_rect[i]) <= threshold
                   for i in range(4))


def _frame(rect) -> Frame:
    left, top, right, bottom = rect
    return Frame(left, top, right - left, bottom - top)


def bundle_id_for_process(name: str) -> str:
    return (name or "").strip().lower()


def app_name_for_process(name: str) -> str:
    base = (name or "").strip()
    return base[:-4] if base.lower().endswith(".exe") else base


def parse_monitor_device_id(device_id: str) -> Tuple[str, str, str]:
    """(vendor, model, instance) out of a PnP monitor id; blanks if unknown."""
    parts = [p for p in (device_id or "").split("\\") if p]
    if len(parts) < 2:
        return "", "", ""
    hw = parts[1]
    vendor, model = hw[:3], hw[3:]
    instance = parts[-1] if len(parts) > 2 else ""
    return vendor, model, instance


# ══════════════════════════════════════════════════════════════════════════
#  Window filter
# ══════════════════════════════════════════════════════════════════════════
def _is_candidate(hwnd: int, proc: str) -> bool:
    """True for top-level user-facing windows that can be placed."""
    if not win32gui.IsWindow(hwnd):         return False
    if win32gui.GetParent(hwnd):            return False
    if not win32gui.IsWindowVisible(hwnd):  return False

    cls = _safe_class(hwnd).strip().lower()
    if cls in _BLOCKED_CLASS:               return False
    if proc.lower() in _BLOCKED_PROC:       return False

    try:
        ex_style = win32gui.GetWindowLong(hwnd, win32con.GWL_EXSTYLE)
        owner    = win32gui.GetWindow(hwnd, win32con.GW_OWNER)
    except Exception:
        ex_style, owner = 0, 0

    if (ex_style & win32con.WS_EX_TOOLWINDOW) and not (ex_style & win32con.WS_EX_APPWINDOW):
        return False
    if owner and not (ex_style & win32con.WS_EX_APPWINDOW):
        return False
    return True


# ══════════════════════════════════════════════════════════════════════════
#  Desktop
# ══════════════════════════════════════════════════════════════════════════
class Win32Desktop:
    """WindowSource, DisplaySource and WindowActuator backed by pywin32."""

    # ── Windows ───────────────────────────────────────────────────────────
    def _observe(self, hwnd: int, pid: int, proc: str) -> Optional[ObservedWindow]:
        show_cmd, normal_rect = _window_placement(hwnd)
        live_rect = _window_rect(hwnd)
        rect = live_rect if _is_snapped(show_cmd, live_rect, normal_rect) else normal_rect
        frame = _frame(rect)
        if frame.area <= 0:
            return None
        return ObservedWindow(
            bundle_id=bundle_id_for_process(proc),
            app_name=app_name_for_process(proc),
            title=_safe_text(hwnd).strip(),
            frame=frame,
            is_minimized=show_cmd == win32con.SW_SHOWMINIMIZED,
            window_id=stable_window_id(hwnd, pid, _proc_started(pid)),
            handle=hwnd,
        )

    def _scan(self, bundle_id: Optional[str] = None,
              require_title: bool = True) -> List[ObservedWindow]:
        found: List[ObservedWindow] = []

        def _cb(hwnd, _):
            pid = _get_pid(hwnd)
            proc = _proc_name(pid)
            if bundle_id is not None and bundle_id_for_process(proc) != bundle_id:
                return True
            if not _is_candidate(hwnd, proc):
                return True
            observed = self._observe(hwnd, pid, proc)
            if observed is None:
                return True
            if require_title and not observed.title:
                return True
            found.append(observed)
            return True

        win32gui.EnumWindows(_cb, None)
        return found

    def enumerate_windows(self) -> List[ObservedWindow]:
        return self._scan()

    def live_windows(self, bundle_id: str) -> List[ObservedWindow]:
        return self._scan(bundle_id=bundle_id, require_title=False)

    def is_running(self, bundle_id: str) -> bool:
        for proc in psutil.process_iter(["name"]):
            if bundle_id_for_process(proc.info.get("name") or "") == bundle_id:
                return True
        return False

    # ── Displays ──────────────────────────────────────────────────────────
    def get_displays(self) -> List[DisplayInfo]:
        displays: List[DisplayInfo] = []
        for entry in win32api.EnumDisplayMonitors():
            info: Dict = win32api.GetMonitorInfo(entry[0])
            left, top, right, bottom = info.get("Monitor") or (0, 0, 0, 0)
            width, height = right - left, bottom - top
            device = str(info.get("Device") or "")
            name, device_id = device, ""
            try:
                dev = win32api.EnumDisplayDevices(device, 0)
                device_id = str(getattr(dev, "DeviceID", "") or "")
                name = str(getattr(dev, "DeviceString", "") or device)
            except Exception:
                pass
            vendor, model, serial = parse_monitor_device_id(device_id)
            if not vendor:
                # No PnP id: fall back to the adapter output name.
                vendor, model, serial = device, "", ""
            displays.append(DisplayInfo(
                identifier=display_identity(vendor, model, serial, width, height),
                name=name,
                resolution=(width, height),
                position=(left, top),
            ))
        return displays

    def current_configuration_identifier(self) -> str:
        return configuration_identity(d.identifier for d in self.get_displays())

    def display_count(self) -> int:
        return int(win32api.GetSystemMetrics(win32con.SM_CMONITORS))

    # ── Actuator ──────────────────────────────────────────────────────────
    def apply_frame(self, handle: int, frame: Frame) -> FrameApplyResult:
        left, top = int(frame.x), int(frame.y)
        right, bottom = left + int(frame.width), top + int(frame.height)
        try:
            cur = win32gui.GetWindowPlacement(handle)
            win32gui.SetWindowPlacement(
                handle, (cur[0], cur[1], cur[2], cur[3], (left, top, right, bottom))
            )
        except Exception:
            try:
                win32gui.MoveWindow(handle, left, top, right - left, bottom - top, True)
            except Exception:
                return FrameApplyResult(False, False)

        _, got = _window_placement(handle)
        position_ok = (abs(got[0] - left) <= APPLY_TOLERANCE
                       and abs(got[1] - top) <= APPLY_TOLERANCE)
        size_ok = (abs((got[2] - got[0]) - (right - left)) <= APPLY_TOLERANCE
                   and abs((got[3] - got[1]) - (bottom - top)) <= APPLY_TOLERANCE)
        return FrameApplyResult(position_ok, size_ok)

    def apply_minimized(self, handle: int, minimized: bool) -> bool:
        try:
            iconic = bool(win32gui.IsIconic(handle))
            if minimized and not iconic:
                win32gui.ShowWindow(handle, win32con.SW_SHOWMINNOACTIVE)
            elif not minimized and iconic:
                win32gui.ShowWindow(handle, win32con.SW_SHOWNOACTIVATE)
            return bool(win32gui.IsIconic(handle)) == minimized
        except Exception:
            return False
