"""
layout_restore.py  –  Put live windows back where the saved layout says
========================================================================

    current config id ─► store.load ─► group by application
        └─ per running app: live windows × that app's snapshots
               └─ WindowMatcher (stable id → title → position)
                      └─ actuator.apply_frame / apply_minimized

Outcomes that are NOT failures and produce no result entry:
  · nothing stored for this monitor setup
  · the application is not running
  · a live window matches no snapshot (probably another virtual desktop)

A window whose frame applied but whose minimise state did not is still
reported as a success; the minimise problem only goes to the log.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from loguru import logger

from desktop import DisplaySource, WindowActuator
from layout_matching import WindowMatcher
from layout_model import DecodeError, WindowSnapshot
from layout_store import SnapshotStore, StorageIOError


@dataclass(frozen=True)
class RestoreResult:
    snapshot: WindowSnapshot
    success: bool
    error: Optional[str] = None


class RestoreCoordinator:
    def __init__(self, store: SnapshotStore, displays: DisplaySource,
                 actuator: WindowActuator,
                 matcher: Optional[WindowMatcher] = None) -> None:
        self.store = store
        self.displays = displays
        self.actuator = actuator
        self.matcher = matcher or WindowMatcher()

    def restore(self) -> List[RestoreResult]:
        config_id = self.displays.current_configuration_identifier()
        try:
            config = self.store.load(config_id)
        except (StorageIOError, DecodeError) as exc:
            logger.warning(f"[restore] could not load {config_id}: {exc}")
            return []
        if config is None:
            logger.info(f"[restore] nothing saved for {config_id}")
            return []

        by_app: Dict[str, List[WindowSnapshot]] = {}
        for snapshot in config.windows:
            by_app.setdefault(snapshot.application_bundle_identifier, []).append(snapshot)

        results: List[RestoreResult] = []
        for bundle_id, snapshots in by_app.items():
            if not self.actuator.is_running(bundle_id):
                logger.debug(f"[restore] {bundle_id} not running, skipped")
                continue
            results.extend(self._restore_app(bundle_id, snapshots))
        return results

    def _restore_app(self, bundle_id: str,
                     snapshots: List[WindowSnapshot]) -> List[RestoreResult]:
        results: List[RestoreResult] = []
        claimed = set()
        for live in self.actuator.live_windows(bundle_id):
            if live.frame.area <= 0:
                continue
            match = self.matcher.find_match_with_identity(live, snapshots, claimed)
            if match is None:
                logger.debug(f"[restore] no snapshot for {bundle_id} {live.title!r}")
                continue
            index, snapshot = match
            claimed.add(index)
            results.append(self._apply(live, snapshot))
        return results

    def _apply(self, live, snapshot: WindowSnapshot) -> RestoreResult:
        outcome = self.actuator.apply_frame(live.handle, snapshot.frame)
        if not self.actuator.apply_minimized(live.handle, snapshot.is_minimized):
            logger.warning(
                f"[restore] {snapshot.application_name} {snapshot.window_title!r}: "
                f"could not set minimized={snapshot.is_minimized}"
            )
        if outcome.ok:
            return RestoreResult(snapshot, True)
        return RestoreResult(snapshot, False, outcome.describe())
