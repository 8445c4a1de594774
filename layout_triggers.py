"""
layout_triggers.py  –  What makes a save or a restore happen
=============================================================

SnapshotScheduler   periodic "save now" ticks on a background thread
DisplayMonitor      monitor count changed  → on_change(previous, new)
SpaceMonitor        active desktop changed → on_change()
ChangeSource        fan-out of change notifications; post() injects one
PollingChangeSource ChangeSource that polls a probe on a thread
EventChannel        typed queue the owning thread drains

Ticks and change callbacks run on whatever thread produced them.  In the
daemon they only post LayoutEvents; all saving and restoring happens on the
thread that drains the EventChannel.
"""

from __future__ import annotations

import enum
import itertools
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from loguru import logger


# ══════════════════════════════════════════════════════════════════════════
#  Event channel
# ══════════════════════════════════════════════════════════════════════════
class EventKind(enum.Enum):
    SAVE = "save"
    RESTORE = "restore"
    DISPLAYS_CHANGED = "displays_changed"
    DESKTOP_CHANGED = "desktop_changed"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


@dataclass(frozen=True)
class LayoutEvent:
    kind: EventKind
    previous_count: Optional[int] = None
    new_count: Optional[int] = None


class EventChannel:
    def __init__(self) -> None:
        self._queue: "queue.Queue[LayoutEvent]" = queue.Queue()

    def post(self, event: LayoutEvent) -> None:
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[LayoutEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> Iterator[LayoutEvent]:
        """Yield whatever is queued right now without blocking."""
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return


# ══════════════════════════════════════════════════════════════════════════
#  Scheduler
# ══════════════════════════════════════════════════════════════════════════
class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class SnapshotScheduler:
    """Idle → Running → Idle.

    start() fires on_save once right away, on the calling thread, then every
    ``interval`` seconds from a ticker thread.  At most one ticker exists at
    a time.  Once stop() returns no further on_save call will begin; a tick
    already inside on_save is allowed to finish.
    """

    def __init__(self, on_save: Callable[[], Any], interval: float = 30.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.on_save = on_save
        self.interval = float(interval)
        self._lock = threading.RLock()
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._stop is not None else SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def start(self) -> None:
        with self._lock:
            old = self._cancel()
            self.on_save()
            stop = threading.Event()
            thread = threading.Thread(target=self._run, args=(stop,),
                                      name="snapshot-scheduler", daemon=True)
            self._stop, self._thread = stop, thread
            thread.start()
        self._join(old)
        logger.debug(f"[scheduler] started, every {self.interval:g}s")

    def stop(self) -> None:
        with self._lock:
            old = self._cancel()
        if old is not None:
            self._join(old)
            logger.debug("[scheduler] stopped")

    def restart(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        with self._lock:
            self.interval = float(interval)
            running = self.is_running
        if running:
            self.start()

    def _cancel(self) -> Optional[threading.Thread]:
        if self._stop is None:
            return None
        self._stop.set()
        old = self._thread
        self._stop, self._thread = None, None
        return old

    @staticmethod
    def _join(thread: Optional[threading.Thread]) -> None:
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            with self._lock:
                if stop.is_set():
                    return
                try:
                    self.on_save()
                except Exception:
                    logger.exception("[scheduler] save callback failed")


# ══════════════════════════════════════════════════════════════════════════
#  Change sources
# ══════════════════════════════════════════════════════════════════════════
class ChangeSource:
    """Notifies subscribed observers; post() is the injection point."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: Dict[int, Callable[[], Any]] = {}
        self._tokens = itertools.count(1)

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def subscribe(self, callback: Callable[[], Any]) -> int:
        with self._lock:
            token = next(self._tokens)
            self._observers[token] = callback
            return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def post(self) -> None:
        with self._lock:
            observers = list(self._observers.values())
        for callback in observers:
            callback()


class PollingChangeSource(ChangeSource):
    """Polls ``probe`` every ``interval`` seconds; posts when its value changes."""

    def __init__(self, probe: Callable[[], Any], interval: float = 2.0,
                 name: str = "change-poller") -> None:
        super().__init__()
        self.probe = probe
        self.interval = float(interval)
        self.name = name
        self._stop: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._last: Any = None

    def start(self) -> None:
        if self._stop is not None:
            return
        self._last = self.probe()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,),
                                        name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        thread, self._stop, self._thread = self._thread, None, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def poll_once(self) -> bool:
        try:
            value = self.probe()
        except Exception:
            logger.exception(f"[monitor] {self.name} probe failed")
            return False
        if value == self._last:
            return False
        self._last = value
        self.post()
        return True

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            self.poll_once()


# ══════════════════════════════════════════════════════════════════════════
#  Monitors
# ══════════════════════════════════════════════════════════════════════════
class DisplayMonitor:
    """Turns "something about the displays changed" into (previous, new) counts.

    Restore policy (connect vs. disconnect, settle delay) belongs to the
    consumer of on_change, not here.
    """

    def __init__(self, on_change: Callable[[int, int], Any], source: ChangeSource,
                 count_displays: Callable[[], int]) -> None:
        self.on_change = on_change
        self.source = source
        self.count_displays = count_displays
        self.current_count = count_displays()
        self._token: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def start(self) -> None:
        if self._token is not None:
            self.source.unsubscribe(self._token)
        self._token = self.source.subscribe(self._handle)

    def stop(self) -> None:
        if self._token is not None:
            self.source.unsubscribe(self._token)
            self._token = None

    def _handle(self) -> None:
        previous, self.current_count = self.current_count, self.count_displays()
        logger.info(f"[monitor] displays changed {previous} -> {self.current_count}")
        self.on_change(previous, self.current_count)


class SpaceMonitor:
    """Active virtual desktop changed."""

    def __init__(self, on_change: Callable[[], Any], source: ChangeSource) -> None:
        self.on_change = on_change
        self.source = source
        self._token: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def start(self) -> None:
        if self._token is None:
            self._token = self.source.subscribe(self.on_change)

    def stop(self) -> None:
        if self._token is not None:
            self.source.unsubscribe(self._token)
            self._token = None
