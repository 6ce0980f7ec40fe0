"""
DOCBATCH State — Record Stores

Keyed JSON-able records behind a small interface, so the state
machine and the orchestrator never touch globals or the filesystem
directly:

  InMemoryRecordStore   tests and throwaway runs
  JsonFileRecordStore   snapshot file + timestamped backups

Snapshot layout:
  {"version": "1.0", "timestamp": "...", "<records_key>": {key: record}}

Writes are single-writer (one lock per store), atomic (temp file +
os.replace) and preceded by a backup copy of the file being replaced.
Only the newest `retention` backups are kept.
"""

from __future__ import annotations

import copy
import json
import os
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from docbatch.errors import PersistenceError

SNAPSHOT_VERSION = "1.0"

Record = dict[str, Any]


class RecordStore(Protocol):
    def get(self, key: str) -> Record | None: ...
    def set(self, key: str, value: Record) -> None: ...
    def delete(self, key: str) -> bool: ...
    def list(self) -> dict[str, Record]: ...
    def clear(self) -> None: ...
    def flush(self, force: bool = False, backup: bool = True) -> Path | None: ...
    def backup(self) -> Path | None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryRecordStore:
    """Dict-backed store. flush/backup are no-ops."""

    def __init__(self, records: dict[str, Record] | None = None):
        self._records: dict[str, Record] = copy.deepcopy(records or {})
        self._lock = threading.RLock()

    def get(self, key: str) -> Record | None:
        with self._lock:
            value = self._records.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Record) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def list(self) -> dict[str, Record]:
        with self._lock:
            return copy.deepcopy(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def flush(self, force: bool = False, backup: bool = True) -> Path | None:
        return None

    def backup(self) -> Path | None:
        return None


# ---------------------------------------------------------------------------
# JSON file
# ---------------------------------------------------------------------------

@dataclass
class RestoreInfo:
    """What happened the last time a corrupt snapshot was replaced by a backup."""
    backup_path: Path
    original_error: str


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


class JsonFileRecordStore:
    """
    File-backed store. Loads on construction:
      - missing file → empty store
      - corrupt file → exactly one restore from the newest backup;
        success is logged and recorded in `last_restore`, failure
        raises PersistenceError chained to the original error
    """

    def __init__(
        self,
        directory: Path,
        collection: str = "states",
        records_key: str = "states",
        retention: int = 10,
    ):
        self.directory = Path(directory)
        self.collection = collection
        self.records_key = records_key
        self.retention = retention
        self.path = self.directory / f"{collection}.json"
        self.backup_dir = self.directory / "backups"
        self.last_saved: str | None = None
        self.last_restore: RestoreInfo | None = None

        self._records: dict[str, Record] = {}
        self._dirty = False
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        # A corrupt main file must not be copied over the good backups
        self._skip_backup_once = False

        self._load()

    # -- Interface -----------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._dirty

    def get(self, key: str) -> Record | None:
        with self._lock:
            value = self._records.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Record) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(value)
            self._dirty = True

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._records.pop(key, None) is not None
            if removed:
                self._dirty = True
            return removed

    def list(self) -> dict[str, Record]:
        with self._lock:
            return copy.deepcopy(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._dirty = True

    def flush(self, force: bool = False, backup: bool = True) -> Path | None:
        """
        Write the snapshot if anything changed (or when forced). The
        previous snapshot is backed up first unless `backup` is False.
        """
        with self._lock:
            if not self._dirty and not force:
                return None
            snapshot = {
                "version": SNAPSHOT_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                self.records_key: copy.deepcopy(self._records),
            }
            self._dirty = False

        with self._write_lock:
            try:
                if backup and not self._skip_backup_once:
                    self._backup_current()
                self._skip_backup_once = False
                self._write_atomic(json.dumps(snapshot, indent=2, ensure_ascii=False))
            except OSError as e:
                with self._lock:
                    self._dirty = True
                logger.error(f"[STORE] Failed to save {self.path}: {e}")
                raise PersistenceError(f"Could not save {self.path}: {e}", path=self.path) from e

        self.last_saved = snapshot["timestamp"]
        logger.debug(f"[STORE] Saved {len(snapshot[self.records_key])} records to {self.path}")
        return self.path

    def backup(self) -> Path | None:
        """Copy the current snapshot into the backup directory."""
        with self._write_lock:
            try:
                return self._backup_current()
            except OSError as e:
                raise PersistenceError(f"Could not back up {self.path}: {e}", path=self.path) from e

    def list_backups(self) -> list[Path]:
        """Backups, oldest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(f"{self.collection}_*.json"))

    # -- Disk ----------------------------------------------------------------

    def _backup_current(self) -> Path | None:
        if not self.path.exists():
            return None
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        stamp = _utc_stamp()
        target = self.backup_dir / f"{self.collection}_{stamp}.json"
        suffix = 1
        while target.exists():
            target = self.backup_dir / f"{self.collection}_{stamp}_{suffix}.json"
            suffix += 1

        shutil.copy2(self.path, target)
        self._prune_backups()
        return target

    def _prune_backups(self) -> None:
        backups = self.list_backups()
        for old in backups[: max(0, len(backups) - self.retention)]:
            try:
                old.unlink()
            except OSError as e:
                logger.warning(f"[STORE] Could not delete old backup {old}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=0.5),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    def _write_atomic(self, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(f".json.tmp.{os.getpid()}.{threading.get_ident()}")
        try:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def _read_snapshot(self, path: Path) -> dict[str, Record]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("snapshot is not a JSON object")
        records = data.get(self.records_key)
        if not isinstance(records, dict) or not all(isinstance(v, dict) for v in records.values()):
            raise ValueError(f"snapshot has no valid '{self.records_key}' map")
        return records

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug(f"[STORE] No snapshot at {self.path}; starting empty.")
            return

        try:
            self._records = self._read_snapshot(self.path)
            logger.debug(f"[STORE] Loaded {len(self._records)} records from {self.path}")
            return
        except (OSError, ValueError) as e:
            original = e

        backups = self.list_backups()
        if not backups:
            logger.error(f"[STORE] {self.path} is unreadable and no backup exists: {original}")
            raise PersistenceError(
                f"Could not load {self.path}: {original}", path=self.path
            ) from original

        latest = backups[-1]
        try:
            self._records = self._read_snapshot(latest)
        except (OSError, ValueError) as e:
            logger.error(f"[STORE] Restore from {latest.name} failed: {e}")
            raise PersistenceError(
                f"Could not load {self.path} ({original}); restore from {latest.name} failed: {e}",
                path=self.path,
            ) from original

        self.last_restore = RestoreInfo(backup_path=latest, original_error=str(original))
        self._dirty = True
        self._skip_backup_once = True
        logger.warning(
            f"[STORE] {self.path.name} was unreadable ({original}); "
            f"restored {len(self._records)} records from {latest.name}."
        )
