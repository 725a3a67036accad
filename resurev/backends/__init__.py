from .base import KeyValueBackend
from .file import FileKV
from .http import HttpKV
from .memory import MemoryKV

from resurev.config import Settings
from resurev.log import get_logger

log = get_logger(__name__)

__all__ = ["KeyValueBackend", "FileKV", "HttpKV", "MemoryKV", "get_backend"]


def get_backend(settings: Settings) -> KeyValueBackend:
    kind = settings.kv_backend.lower()

    if kind == "http":
        log.info("Using HTTP key-value backend at %s", settings.kv_url)
        return HttpKV(settings.kv_url)

    if kind == "memory":
        log.info("Using in-memory key-value backend (not shared across processes)")
        return MemoryKV()

    if kind != "file":
        log.warning("Unknown kv_backend %r — falling back to file", settings.kv_backend)
    log.info("Using file key-value backend → %s", settings.kv_path)
    return FileKV(settings.kv_path)
