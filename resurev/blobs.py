"""Storage for uploaded resume files."""
from __future__ import annotations

import hashlib
import os
from abc import ABC, abstractmethod
from pathlib import Path

from resurev.errors import BackendUnavailable
from resurev.log import get_logger

log = get_logger(__name__)


class BlobStore(ABC):
    """Opaque handle ↔ bytes."""

    @abstractmethod
    def upload(self, name: str, data: bytes) -> str:
        ...

    @abstractmethod
    def read(self, handle: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, handle: str) -> bool:
        ...


class LocalBlobStore(BlobStore):
    """Content-addressed files under *root*: ``<aa>/<sha256><suffix>``.

    Uploading the same bytes twice yields the same handle and one file.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, handle: str) -> Path:
        path = (self.root / handle).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob handle escapes store: {handle!r}")
        return path

    def upload(self, name: str, data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        handle = f"{digest[:2]}/{digest}{Path(name).suffix.lower()}"
        path = self._path(handle)
        if path.exists():
            log.debug("Blob %s already stored", handle)
            return handle
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            raise BackendUnavailable(f"cannot store {name}: {exc}") from exc
        log.info("Stored %s (%d bytes) → %s", name, len(data), handle)
        return handle

    def read(self, handle: str) -> bytes:
        try:
            return self._path(handle).read_bytes()
        except OSError as exc:
            raise BackendUnavailable(f"cannot read blob {handle}: {exc}") from exc

    def delete(self, handle: str) -> bool:
        try:
            self._path(handle).unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            log.warning("Could not delete blob %s: %s", handle, exc)
            return False
