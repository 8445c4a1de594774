"""
window_layout.py  –  Remember window positions per monitor setup
=================================================================

Every save captures the visible windows, merges them with what was stored
for the same set of monitors, and rewrites that configuration's document.
Restore loads the document for the monitors attached right now and moves
each running application's windows back.

Key behaviours
  · One document per monitor set; the key ignores enumeration order.
  · Windows on other virtual desktops survive in the document until they
    have not been seen for stale_threshold_days.
  · Scheduler ticks and monitor/desktop changes only post LayoutEvents; the
    thread running LayoutService.run() does all the saving and restoring.
  · Restore after a display change waits settle_delay seconds so the OS can
    finish reflowing windows first.

Settings live in config.json next to (not inside) the layouts directory.
"""

import argparse
import json
import math
import os
import sys
import threading
import time
from dataclasses import asdict, dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from layout_matching import WindowMatcher, merge_snapshots
from layout_model import (DecodeError, DisplayConfiguration, WindowSnapshot,
                          snapshot_from_observed, utcnow)
from layout_restore import RestoreCoordinator, RestoreResult
from layout_store import SnapshotStore, StorageIOError
from layout_triggers import (DisplayMonitor, EventChannel, EventKind, LayoutEvent,
                             PollingChangeSource, SnapshotScheduler, SpaceMonitor)

APP_DIR_NAME = "WindowRestore"
APP_DIR_NAME_XDG = "window-restore"

SAVE_INTERVAL_PRESETS = (15, 30, 60, 120, 300)
STALE_DAYS_PRESETS = (1, 3, 7, 14, 30)


# ══════════════════════════════════════════════════════════════════════════
#  Paths
# ══════════════════════════════════════════════════════════════════════════
def app_support_dir() -> Path:
    if sys.platform == "win32":
        base = os.environ.get("APPDATA") or os.path.expanduser("~")
        return Path(base) / APP_DIR_NAME
    base = os.environ.get("XDG_DATA_HOME") or os.path.join(os.path.expanduser("~"), ".local", "share")
    return Path(base) / APP_DIR_NAME_XDG


def default_config_path() -> Path:
    return app_support_dir() / "config.json"


def default_storage_dir() -> Path:
    return app_support_dir() / "layouts"


# ══════════════════════════════════════════════════════════════════════════
#  Settings
# ══════════════════════════════════════════════════════════════════════════
@dataclass
class LayoutSettings:
    save_interval: float = 30.0
    stale_threshold_days: int = 7
    restore_on_connect: bool = True
    restore_on_disconnect: bool = True
    restore_on_desktop_change: bool = False
    settle_delay: float = 1.0
    distance_threshold: float = 200.0
    display_poll_interval: float = 2.0
    storage_dir: str = ""

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(days=self.stale_threshold_days)

    @property
    def layouts_dir(self) -> Path:
        return Path(self.storage_dir) if self.storage_dir else default_storage_dir()

    def to_dict(self) -> Dict:
        return asdict(self)


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Value for a known key, or the default when it doesn't fit."""
    if isinstance(default, bool):
        return raw if isinstance(raw, bool) else default
    if isinstance(default, (int, float)):
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return default
        try:
            value = type(default)(raw)
        except (ValueError, OverflowError):
            return default
        if not math.isfinite(value):
            return default
        # settle_delay may be zero, every other number must be positive
        floor_ok = value >= 0 if name == "settle_delay" else value > 0
        return value if floor_ok else default
    if isinstance(default, str):
        return raw if isinstance(raw, str) else default
    return default


def load_settings(path: Optional[os.PathLike] = None) -> LayoutSettings:
    path = Path(path) if path else default_config_path()
    defaults = LayoutSettings()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return defaults
    except (OSError, ValueError) as exc:
        logger.warning(f"[config] ignoring unreadable {path}: {exc}")
        return defaults
    if not isinstance(data, dict):
        return defaults
    values = {}
    for fld in fields(LayoutSettings):
        default = getattr(defaults, fld.name)
        values[fld.name] = _coerce(fld.name, data[fld.name], default) if fld.name in data else default
    return LayoutSettings(**values)


def save_settings(settings: LayoutSettings, path: Optional[os.PathLike] = None) -> None:
    path = Path(path) if path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)


# ══════════════════════════════════════════════════════════════════════════
#  Service
# ══════════════════════════════════════════════════════════════════════════
class LayoutService:
    """captureAndSave / restore / clearAll plus the knobs around them.

    ``desktop`` supplies all three collaborators (window source, display
    source, actuator); ``clock`` and ``sleep`` are injectable for tests.
    """

    def __init__(self, desktop, settings: Optional[LayoutSettings] = None,
                 store: Optional[SnapshotStore] = None,
                 config_path: Optional[os.PathLike] = None,
                 clock: Callable = utcnow,
                 sleep: Callable[[float], Any] = time.sleep) -> None:
        self.desktop = desktop
        self.settings = settings or LayoutSettings()
        self.store = store or SnapshotStore(self.settings.layouts_dir)
        self.config_path = config_path
        self.clock = clock
        self.sleep = sleep
        self.paused = False
        self.scheduler: Optional[SnapshotScheduler] = None
        self._save_lock = threading.Lock()

    # ── Save ──────────────────────────────────────────────────────────────
    def capture_windows(self, now=None) -> List[WindowSnapshot]:
        now = now or self.clock()
        displays = self.desktop.get_displays()
        return [
            snapshot_from_observed(w, displays, now)
            for w in self.desktop.enumerate_windows()
            if w.title.strip() and w.frame.area > 0
        ]

    def capture_and_save(self) -> Optional[DisplayConfiguration]:
        with self._save_lock:
            logger.debug("[save] starting")
            now = self.clock()
            current = self.capture_windows(now)
            logger.debug(f"[save] enumerated {len(current)} windows")
            displays = self.desktop.get_displays()
            config_id = self.desktop.current_configuration_identifier()

            try:
                existing = self.store.load(config_id, now=now)
            except (StorageIOError, DecodeError) as exc:
                logger.warning(f"[save] existing {config_id} unusable, starting fresh: {exc}")
                existing = None

            windows = current
            if existing is not None:
                windows = merge_snapshots(current, existing.windows,
                                          self.settings.stale_threshold, now=now)
            logger.debug(f"[save] {config_id}: merged to {len(windows)} windows")

            config = DisplayConfiguration(
                identifier=config_id,
                displays=tuple(displays),
                windows=tuple(windows),
                captured_at=now,
            )
            try:
                self.store.save(config)
            except StorageIOError as exc:
                logger.error(f"[save] failed: {exc}")
                return None
            logger.info(f"[save] {len(windows)} windows -> {config_id}")
            return config

    # ── Restore ───────────────────────────────────────────────────────────
    def restore(self) -> List[RestoreResult]:
        logger.debug("[restore] starting")
        coordinator = RestoreCoordinator(
            self.store, self.desktop, self.desktop,
            WindowMatcher(self.settings.distance_threshold),
        )
        results = coordinator.restore()
        ok = sum(1 for r in results if r.success)
        logger.info(f"[restore] complete: {ok} succeeded, {len(results) - ok} failed")
        for r in results:
            if not r.success:
                logger.warning(f"[restore] {r.snapshot.application_name} "
                               f"{r.snapshot.window_title!r}: {r.error or 'unknown'}")
        return results

    # ── Clear / list ──────────────────────────────────────────────────────
    def clear_all(self) -> int:
        with self._save_lock:
            removed = self.store.delete_all()
        logger.info(f"[save] cleared {removed} stored configurations")
        return removed

    def list_configurations(self) -> List[str]:
        return self.store.list_identifiers()

    # ── Settings ──────────────────────────────────────────────────────────
    def _persist(self) -> None:
        if self.config_path is not None:
            save_settings(self.settings, self.config_path)

    def set_save_interval(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("save interval must be positive")
        self.settings.save_interval = float(seconds)
        if self.scheduler is not None:
            self.scheduler.restart(self.settings.save_interval)
        self._persist()
        logger.info(f"[config] save interval {seconds:g}s")

    def set_stale_threshold_days(self, days: int) -> None:
        if int(days) <= 0:
            raise ValueError("stale threshold must be at least one day")
        self.settings.stale_threshold_days = int(days)
        self._persist()
        logger.info(f"[config] stale threshold {days} days")

    def set_restore_policy(self, on_connect: Optional[bool] = None,
                           on_disconnect: Optional[bool] = None,
                           on_desktop_change: Optional[bool] = None) -> None:
        if on_connect is not None:
            self.settings.restore_on_connect = bool(on_connect)
        if on_disconnect is not None:
            self.settings.restore_on_disconnect = bool(on_disconnect)
        if on_desktop_change is not None:
            self.settings.restore_on_desktop_change = bool(on_desktop_change)
        self._persist()

    # ── Pause ─────────────────────────────────────────────────────────────
    def pause_saving(self) -> None:
        self.paused = True
        if self.scheduler is not None:
            self.scheduler.stop()
        logger.info("[save] paused")

    def resume_saving(self) -> None:
        self.paused = False
        if self.scheduler is not None:
            self.scheduler.start()
        logger.info("[save] resumed")

    # ── Change policy ─────────────────────────────────────────────────────
    def should_restore_for_displays(self, previous: int, new: int) -> bool:
        if new > previous:
            return self.settings.restore_on_connect
        if new < previous:
            return self.settings.restore_on_disconnect
        return False

    def handle_event(self, event: LayoutEvent) -> bool:
        """Act on one event; False means the loop should stop."""
        kind = event.kind
        if kind is EventKind.STOP:
            return False
        if kind is EventKind.SAVE:
            if not self.paused:
                self.capture_and_save()
        elif kind is EventKind.RESTORE:
            self.restore()
        elif kind is EventKind.DISPLAYS_CHANGED:
            previous, new = event.previous_count or 0, event.new_count or 0
            if self.should_restore_for_displays(previous, new):
                logger.info(f"[monitor] {previous} -> {new} displays, restoring")
                self.sleep(self.settings.settle_delay)
                self.restore()
        elif kind is EventKind.DESKTOP_CHANGED:
            if self.settings.restore_on_desktop_change:
                self.sleep(self.settings.settle_delay)
                self.restore()
        elif kind is EventKind.PAUSE:
            self.pause_saving()
        elif kind is EventKind.RESUME:
            self.resume_saving()
        return True

    def run(self, channel: EventChannel, poll: float = 0.5) -> None:
        """Drain ``channel`` on this thread until a STOP event arrives."""
        while True:
            event = channel.get(timeout=poll)
            if event is None:
                continue
            try:
                keep_going = self.handle_event(event)
            except Exception:
                logger.exception(f"[daemon] {event.kind.value} failed")
                keep_going = True
            if not keep_going:
                return


# ══════════════════════════════════════════════════════════════════════════
#  Daemon wiring
# ══════════════════════════════════════════════════════════════════════════
def run_daemon(service: LayoutService, channel: Optional[EventChannel] = None) -> None:
    channel = channel or EventChannel()
    settings = service.settings

    service.scheduler = SnapshotScheduler(
        lambda: channel.post(LayoutEvent(EventKind.SAVE)),
        interval=settings.save_interval,
    )
    display_source = PollingChangeSource(service.desktop.display_count,
                                         interval=settings.display_poll_interval,
                                         name="display-poller")
    displays = DisplayMonitor(
        lambda old, new: channel.post(LayoutEvent(EventKind.DISPLAYS_CHANGED, old, new)),
        display_source, service.desktop.display_count,
    )
    spaces = None
    desktop_source = getattr(service.desktop, "desktop_changes", None)
    if desktop_source is not None:
        spaces = SpaceMonitor(lambda: channel.post(LayoutEvent(EventKind.DESKTOP_CHANGED)),
                              desktop_source)
        spaces.start()

    displays.start()
    display_source.start()
    service.scheduler.start()
    logger.info(f"[daemon] running, saving every {settings.save_interval:g}s")
    try:
        service.run(channel)
    except KeyboardInterrupt:
        pass
    finally:
        service.scheduler.stop()
        display_source.stop()
        displays.stop()
        if spaces is not None:
            spaces.stop()
        logger.info("[daemon] stopped")


def default_desktop():
    if sys.platform != "win32":
        raise RuntimeError(f"No desktop backend for platform {sys.platform!r}")
    from win32_desktop import Win32Desktop
    return Win32Desktop()


# ══════════════════════════════════════════════════════════════════════════
#  CLI entry point
# ══════════════════════════════════════════════════════════════════════════
def _on_off(value: str) -> bool:
    lo = value.strip().lower()
    if lo in ("on", "true", "yes", "1"):
        return True
    if lo in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _print_settings(settings: LayoutSettings) -> None:
    for key, value in settings.to_dict().items():
        print(f"  {key:26} {value}")
    print(f"  {'layouts_dir':26} {settings.layouts_dir}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Save/restore window positions per monitor setup."
    )
    p.add_argument("--config", default=None, help="Path to config.json")
    p.add_argument("--verbose", "-v", action="store_true")
    s = p.add_subparsers(dest="cmd", required=True)

    s.add_parser("save", help="Capture visible windows and merge into the stored layout")
    s.add_parser("restore", help="Move running windows back to the stored layout")
    s.add_parser("list", help="List stored monitor configurations")

    sp = s.add_parser("clear", help="Delete every stored configuration")
    sp.add_argument("--yes", "-y", action="store_true")

    sp = s.add_parser("config", help="Show or change settings")
    sp.add_argument("--save-interval", type=float,
                    help=f"seconds; common values {SAVE_INTERVAL_PRESETS}")
    sp.add_argument("--stale-days", type=int,
                    help=f"days; common values {STALE_DAYS_PRESETS}")
    sp.add_argument("--restore-on-connect", type=_on_off)
    sp.add_argument("--restore-on-disconnect", type=_on_off)
    sp.add_argument("--restore-on-desktop-change", type=_on_off)

    s.add_parser("daemon", help="Save periodically and restore on display changes")
    s.add_parser("help")
    return p


def main(argv: Optional[List[str]] = None,
         desktop_factory: Callable = default_desktop) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    _setup_logging(args.verbose)

    config_path = Path(args.config) if args.config else default_config_path()
    settings = load_settings(config_path)

    if args.cmd == "help":
        print("""
Quick reference
  save:     window-restore save
  restore:  window-restore restore [-v]
  list:     window-restore list
  clear:    window-restore clear --yes
  config:   window-restore config --save-interval 60 --stale-days 14
  daemon:   window-restore daemon
""")
        return 0

    if args.cmd in ("list", "clear", "config"):
        service = LayoutService(None, settings, config_path=config_path)
    else:
        try:
            desktop = desktop_factory()
        except RuntimeError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        service = LayoutService(desktop, settings, config_path=config_path)

    if args.cmd == "save":
        config = service.capture_and_save()
        if config is None:
            print("Save failed (see log).", file=sys.stderr)
            return 1
        print(f"Saved {len(config.windows)} windows -> {config.identifier}")

    elif args.cmd == "restore":
        results = service.restore()
        ok = sum(1 for r in results if r.success)
        print(f"Restored {ok} of {len(results)} matched windows")
        for r in results:
            if not r.success:
                print(f"  FAILED  {r.snapshot.application_name}  "
                      f"\"{r.snapshot.window_title[:60]}\"  {r.error}")

    elif args.cmd == "list":
        ids = service.list_configurations()
        if not ids:
            print("No saved configurations.")
        for config_id in ids:
            print(f"  {config_id}")

    elif args.cmd == "clear":
        if not args.yes:
            answer = input("Delete all saved window positions? This cannot be undone (y/N): ")
            if answer.strip().lower() not in ("y", "yes"):
                print("Cancelled.")
                return 0
        removed = service.clear_all()
        print(f"Removed {removed} saved configurations.")

    elif args.cmd == "config":
        changed = False
        try:
            if args.save_interval is not None:
                service.set_save_interval(args.save_interval)
                changed = True
            if args.stale_days is not None:
                service.set_stale_threshold_days(args.stale_days)
                changed = True
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        if (args.restore_on_connect is not None or args.restore_on_disconnect is not None
                or args.restore_on_desktop_change is not None):
            service.set_restore_policy(args.restore_on_connect,
                                       args.restore_on_disconnect,
                                       args.restore_on_desktop_change)
            changed = True
        if changed:
            print(f"Saved settings -> {config_path}")
        _print_settings(service.settings)

    elif args.cmd == "daemon":
        run_daemon(service)

    return 0


if __name__ == "__main__":
    sys.exit(main())
