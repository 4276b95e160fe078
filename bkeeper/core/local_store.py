"""Device-local persistence of hive collections with file locking."""

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from bkeeper.core.errors import StorageFailure

logger = logging.getLogger(__name__)

HIVES = "hives"
INSPECTIONS = "inspections"
TASKS = "tasks"
HARVESTS = "harvests"
COLLECTIONS = (HIVES, INSPECTIONS, TASKS, HARVESTS)


class LocalStore:
    """Named JSON-array collections, each replaced as a whole on save.

    All writes funnel through one lock per store: a thread lock for callers
    in this process and an ``fcntl`` lock on ``.lock`` for other processes
    sharing the data directory. ``mutate`` and ``transaction`` hold the lock
    across the full load -> change -> save cycle.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.lock_path = self.data_dir / ".lock"
        self._mutex = threading.RLock()
        self._depth = 0
        self._lock_handle = None
        # collection -> previous file text (None if the file did not exist)
        self._journal: Optional[dict] = None
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.lock_path.touch(exist_ok=True)
        except OSError as e:
            raise StorageFailure(f"Cannot prepare data directory {self.data_dir}: {e}") from e

    def path_for(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return self.data_dir / f"{collection}.json"

    def exists(self, collection: str) -> bool:
        return self.path_for(collection).exists()

    @contextmanager
    def _lock(self):
        """Exclusive store lock, re-entrant within one thread."""
        with self._mutex:
            if self._depth == 0:
                self._lock_handle = open(self.lock_path, "r+")
                fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_EX)
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
                    self._lock_handle.close()
                    self._lock_handle = None

    # --- Whole-collection access ---

    def load(self, collection: str) -> list[dict]:
        """Load a collection; a collection that was never written is empty."""
        path = self.path_for(collection)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error("Could not read %s: %s", path, e)
            raise StorageFailure(f"Could not read {collection}: {e}") from e

        try:
            data = json.loads(content) if content.strip() else []
        except json.JSONDecodeError as e:
            logger.error("Corrupt JSON in %s: %s", path, e)
            raise StorageFailure(f"Stored {collection} are not valid JSON") from e

        if not isinstance(data, list):
            raise StorageFailure(f"Stored {collection} must be a JSON array")
        return data

    def save(self, collection: str, records: list[dict]) -> None:
        """Replace a collection with ``records``."""
        path = self.path_for(collection)
        with self._lock():
            if self._journal is not None and collection not in self._journal:
                self._journal[collection] = self._read_raw(path)
            self._write_atomic(path, json.dumps(records, indent=2, ensure_ascii=False, default=str))

    def mutate(self, collection: str, fn: Callable[[list[dict]], Optional[list[dict]]]) -> list[dict]:
        """Load, transform and save a collection as one serialized step.

        ``fn`` may change the list in place and return None, or return a new
        list. The saved list is returned.
        """
        with self._lock():
            records = self.load(collection)
            result = fn(records)
            if result is not None:
                records = result
            self.save(collection, records)
            return records

    @contextmanager
    def transaction(self):
        """Hold the store lock across several saves.

        If the block raises, every collection saved inside it is restored to
        its previous content before the exception propagates.
        """
        with self._lock():
            if self._journal is not None:
                # Nested: the outermost transaction owns the journal
                yield self
                return
            self._journal = {}
            try:
                yield self
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None

    def _rollback(self) -> None:
        for collection, previous in self._journal.items():
            path = self.path_for(collection)
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    self._write_atomic(path, previous)
            except (OSError, StorageFailure) as e:
                logger.error("Rollback of %s failed: %s", collection, e)
        logger.warning("Rolled back local changes to %s", ", ".join(self._journal) or "nothing")

    # --- Quarantine of unreadable records ---

    def quarantine(self, collection: str, records: list[dict]) -> Path:
        """Move records that fail validation aside instead of dropping them."""
        path = self.data_dir / f"{collection}.rejected.json"
        with self._lock():
            existing = []
            raw = self._read_raw(path)
            if raw and raw.strip():
                try:
                    existing = json.loads(raw)
                except json.JSONDecodeError:
                    existing = []
            existing.extend(records)
            self._write_atomic(path, json.dumps(existing, indent=2, ensure_ascii=False, default=str))
        logger.warning("Quarantined %d %s record(s) in %s", len(records), collection, path)
        return path

    # --- File helpers ---

    @staticmethod
    def _read_raw(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailure(f"Could not read {path.name}: {e}") from e

    def _write_atomic(self, path: Path, text: str) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.stem}-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Could not write %s: %s", path, e)
            raise StorageFailure(f"Could not save {path.stem}: {e}") from e
