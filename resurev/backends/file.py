"""Key-value store kept in one JSON document with file locking.

Several processes on the same machine may share the file; each call takes an
advisory lock on a sidecar ``.lock`` file for the duration of one operation.
"""
from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from resurev.backends.base import KeyValueBackend
from resurev.errors import BackendUnavailable
from resurev.log import get_logger

log = get_logger(__name__)


class FileKV(KeyValueBackend):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock_path = self.path.with_suffix(self.path.suffix + ".lock")

    @contextmanager
    def _locked(self, exclusive: bool) -> Iterator[None]:
        """Hold a shared or exclusive flock on the sidecar file for one operation."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            f = open(self._lock_path, "a+", encoding="utf-8")
        except OSError as exc:
            raise BackendUnavailable(f"cannot open {self._lock_path}: {exc}") from exc
        with f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            except OSError as exc:
                raise BackendUnavailable(f"cannot lock {self._lock_path.name}: {exc}") from exc
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            log.error("KV file %s is corrupt (%s); treating as empty", self.path.name, exc)
            return {}
        except OSError as exc:
            raise BackendUnavailable(f"cannot read {self.path}: {exc}") from exc
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self.path)
            return True
        except OSError as exc:
            log.warning("KV write to %s failed: %s", self.path.name, exc)
            return False

    def get(self, key: str) -> str | None:
        with self._locked(exclusive=False):
            return self._read().get(key)

    def set(self, key: str, value: str) -> bool:
        with self._locked(exclusive=True):
            data = self._read()
            data[key] = value
            return self._write(data)

    def delete(self, key: str) -> bool:
        with self._locked(exclusive=True):
            data = self._read()
            if key not in data:
                return True
            del data[key]
            return self._write(data)

    def list(self, prefix: str, with_values: bool = False) -> list:
        with self._locked(exclusive=False):
            items = sorted((k, v) for k, v in self._read().items() if k.startswith(prefix))
        if with_values:
            return items
        return [k for k, _ in items]

    def ping(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.path.parent, os.W_OK)
