"""
layout_matching.py  –  Merge fresh captures into stored ones; match windows
============================================================================

Identity of a window
  · (bundle, "id", windowIdentifier) when the platform gives a stable id
  · (bundle, "title", windowTitle) otherwise
  Two windows with the same title but different ids are different windows.

Merge
  Current captures always win.  Stored windows that were not seen this time
  (other virtual desktop, hidden) survive until their lastSeenAt falls on or
  before now - staleThreshold.

Match  (greedy, first hit wins)
  1. stable id      (restore path only, both sides must carry one)
  2. exact title    (only when the live title is non-empty)
  3. nearest centre within distance_threshold, same application only
  Ties go to the first candidate in list order.  Callers keep an
  ``excluded`` set of claimed indices so no snapshot is applied twice.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from layout_model import WindowSnapshot, utcnow

DEFAULT_DISTANCE_THRESHOLD = 200.0

IdentityKey = Tuple[str, str, Union[int, str]]
Match = Tuple[int, WindowSnapshot]


# ══════════════════════════════════════════════════════════════════════════
#  Merge
# ══════════════════════════════════════════════════════════════════════════
def identity_key(window: WindowSnapshot) -> IdentityKey:
    bundle = window.application_bundle_identifier
    if window.window_identifier is not None:
        return bundle, "id", window.window_identifier
    return bundle, "title", window.window_title


def merge_snapshots(current: Sequence[WindowSnapshot],
                    existing: Iterable[WindowSnapshot],
                    stale_threshold: timedelta,
                    now: Optional[datetime] = None) -> List[WindowSnapshot]:
    cutoff = (now or utcnow()) - stale_threshold
    current_keys = {identity_key(w) for w in current}

    merged = list(current)
    for window in existing:
        if identity_key(window) in current_keys:
            continue
        if window.last_seen_at > cutoff:
            merged.append(window)
    return merged


# ══════════════════════════════════════════════════════════════════════════
#  Match
# ══════════════════════════════════════════════════════════════════════════
class WindowMatcher:
    """Pick the saved snapshot a live window should be moved to.

    ``observed`` is anything with ``title``, ``frame`` and ``bundle_id``
    attributes (plus ``window_id`` for the stable-id rule), normally a
    layout_model.ObservedWindow.
    """

    def __init__(self, distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD) -> None:
        self.distance_threshold = float(distance_threshold)

    def find_match(self, observed, candidates: Sequence[WindowSnapshot],
                   excluded: Optional[Set[int]] = None) -> Optional[Match]:
        excluded = excluded or set()
        return (self._title_match(observed, candidates, excluded)
                or self._position_match(observed, candidates, excluded))

    def find_match_with_identity(self, observed, candidates: Sequence[WindowSnapshot],
                                 excluded: Optional[Set[int]] = None) -> Optional[Match]:
        excluded = excluded or set()
        return (self._stable_id_match(observed, candidates, excluded)
                or self.find_match(observed, candidates, excluded))

    # ── Rules ─────────────────────────────────────────────────────────────
    @staticmethod
    def _stable_id_match(observed, candidates, excluded) -> Optional[Match]:
        wid = getattr(observed, "window_id", None)
        if wid is None:
            return None
        for index, snapshot in enumerate(candidates):
            if index in excluded:
                continue
            if snapshot.window_identifier is not None and snapshot.window_identifier == wid:
                return index, snapshot
        return None

    @staticmethod
    def _title_match(observed, candidates, excluded) -> Optional[Match]:
        if not observed.title:
            return None
        for index, snapshot in enumerate(candidates):
            if index in excluded:
                continue
            if snapshot.window_title == observed.title:
                return index, snapshot
        return None

    def _position_match(self, observed, candidates, excluded) -> Optional[Match]:
        best: Optional[Match] = None
        best_distance = 0.0
        for index, snapshot in enumerate(candidates):
            if index in excluded:
                continue
            if snapshot.application_bundle_identifier != observed.bundle_id:
                continue
            distance = observed.frame.distance_to(snapshot.frame)
            if distance > self.distance_threshold:
                continue
            # strict < keeps the first of equally close candidates
            if best is None or distance < best_distance:
                best, best_distance = (index, snapshot), distance
        return best
