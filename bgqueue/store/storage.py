import os
import json
import fcntl
import logging
import time
import random
from contextlib import contextmanager
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class ConflictError(StoreError):
    pass


class StoreDocument:
    """
    The single JSON document behind a JsonFileStore, versioned for
    optimistic concurrency across processes.

    Three files share `filename_base`:
      <base>.json  the rows
      <base>.meta  the version counter bumped by every commit
      <base>.lock  flock target; shared for snapshots, exclusive for commits

    Writers snapshot, mutate in memory and commit only if the version is
    unchanged. `prune` runs inside every transaction, so expired rows such
    as lapsed process locks are dropped on the next write instead of
    accumulating in the file.
    """

    def __init__(self, filename_base: str, prune: Optional[Callable[[dict], int]] = None):
        self.rows_file = f"{filename_base}.json"
        self.version_file = f"{filename_base}.meta"
        self.lock_file = f"{filename_base}.lock"
        self.prune = prune

        if not os.path.exists(self.version_file):
            self._replace(self.version_file, {"version": 0})
        if not os.path.exists(self.rows_file):
            self._replace(self.rows_file, {})

    @staticmethod
    def _replace(path: str, payload: dict):
        tmp_path = f"{path}.{os.getpid()}.tmp"
        try:
            with open(tmp_path, 'w') as f:
                json.dump(payload, f)
        except TypeError as e:
            os.remove(tmp_path)
            raise StoreError(f"Value is not JSON serialisable: {e}") from e
        os.replace(tmp_path, path)

    @staticmethod
    def _load(path: str, default):
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return default

    @contextmanager
    def _flocked(self, mode: int):
        with open(self.lock_file, 'a') as lockf:
            fcntl.flock(lockf.fileno(), mode)
            try:
                yield
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    def _version(self) -> int:
        return self._load(self.version_file, {}).get("version", 0)

    def snapshot(self) -> Tuple[dict, int]:
        """Current rows document and its version."""
        with self._flocked(fcntl.LOCK_SH):
            return self._load(self.rows_file, {}), self._version()

    def commit(self, document: dict, expected_version: int) -> Tuple[bool, int]:
        """
        Write `document` if nobody committed since `expected_version` was read.
        Returns (True, new_version) or (False, current_version).
        """
        with self._flocked(fcntl.LOCK_EX):
            current_version = self._version()
            if current_version != expected_version:
                return False, current_version

            self._replace(self.rows_file, document)
            self._replace(self.version_file, {"version": current_version + 1})
            return True, current_version + 1

    def transact(self, mutate: Callable[[dict], Any], max_retries: int = 10, base_delay: float = 0.01) -> Any:
        """
        Apply `mutate` to a fresh snapshot and commit it, retrying on
        conflict with exponential backoff and jitter.

        `mutate` changes the document in place; its return value is
        handed back once the commit lands.
        """
        for attempt in range(max_retries):
            document, version = self.snapshot()
            result = mutate(document)
            if self.prune is not None:
                pruned = self.prune(document)
                if pruned:
                    logger.debug(f"Pruned {pruned} expired row(s) from {self.rows_file}")

            ok, new_version = self.commit(document, version)
            if ok:
                logger.debug(f"Committed {self.rows_file} version {new_version} on attempt {attempt + 1}")
                return result

            delay = base_delay * (2 ** attempt) + random.uniform(0, 0.05)
            logger.warning(f"Conflict on version {version}. Retrying in {delay:.3f}s (Attempt {attempt + 1}/{max_retries})")
            time.sleep(delay)

        raise ConflictError(f"Failed to commit {self.rows_file} after {max_retries} attempts.")
