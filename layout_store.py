"""
layout_store.py  –  One JSON document per monitor configuration
================================================================

    <storage_dir>/<configuration identifier>.json      (mode 0600)

save() replaces the whole document (last writer wins); merging with what
was there before is the caller's job.  Writes go to a temp file in the same
directory and are renamed into place, so a crash mid-write never leaves a
truncated layout behind.

The store does no locking.  Two concurrent saves for the same identifier
must be serialised by the caller.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from layout_model import DecodeError, DisplayConfiguration

SUFFIX = ".json"


class StorageIOError(OSError):
    """Reading or writing the layout directory failed."""


class SnapshotStore:
    def __init__(self, storage_dir: Union[str, Path]) -> None:
        self.storage_dir = Path(storage_dir)

    def path_for(self, identifier: str) -> Path:
        if not identifier or os.sep in identifier or "/" in identifier or identifier in (".", ".."):
            raise ValueError(f"Invalid configuration identifier {identifier!r}")
        return self.storage_dir / f"{identifier}{SUFFIX}"

    # ── Write ─────────────────────────────────────────────────────────────
    def save(self, config: DisplayConfiguration) -> Path:
        path = self.path_for(config.identifier)
        payload = json.dumps(config.to_dict(), indent=2, sort_keys=True,
                             ensure_ascii=False)
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            # mkstemp creates the file owner read/write only.
            fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir,
                                            prefix=f".{config.identifier}.",
                                            suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise StorageIOError(f"Could not write {path}: {exc}") from exc
        return path

    # ── Read ──────────────────────────────────────────────────────────────
    def load(self, identifier: str,
             now: Optional[datetime] = None) -> Optional[DisplayConfiguration]:
        """Stored configuration for ``identifier`` or None when there is none."""
        path = self.path_for(identifier)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageIOError(f"Could not read {path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"{path} is not valid JSON: {exc}") from exc
        return DisplayConfiguration.from_dict(data, now=now)

    def list_identifiers(self) -> List[str]:
        if not self.storage_dir.exists():
            return []
        try:
            names = sorted(p.stem for p in self.storage_dir.iterdir()
                           if p.is_file() and p.suffix == SUFFIX)
        except OSError as exc:
            raise StorageIOError(f"Could not list {self.storage_dir}: {exc}") from exc
        return names

    # ── Delete ────────────────────────────────────────────────────────────
    def delete_all(self) -> int:
        """Remove every stored configuration; returns how many went."""
        removed = 0
        for identifier in self.list_identifiers():
            path = self.path_for(identifier)
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageIOError(f"Could not delete {path}: {exc}") from exc
            removed += 1
        return removed
