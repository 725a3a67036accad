"""Explicit wiring of the shared collaborators."""
from __future__ import annotations

from dataclasses import dataclass

from resurev.ai import AIInvoker, get_invoker
from resurev.backends import KeyValueBackend, get_backend
from resurev.blobs import BlobStore, LocalBlobStore
from resurev.config import Settings, ensure_dirs, load_settings
from resurev.log import get_logger
from resurev.retry import wait_until

log = get_logger(__name__)


@dataclass
class ServiceContext:
    kv: KeyValueBackend
    blobs: BlobStore
    ai: AIInvoker
    settings: Settings


def build_context(
    settings: Settings | None = None,
    *,
    kv: KeyValueBackend | None = None,
    blobs: BlobStore | None = None,
    ai: AIInvoker | None = None,
) -> ServiceContext:
    """Build the context and wait (bounded) for the store to become ready."""
    settings = settings or load_settings()
    ensure_dirs(settings)
    kv = kv or get_backend(settings)
    wait_until(
        kv.ping,
        interval=settings.ready_interval,
        timeout=settings.ready_timeout,
        what="key-value store",
    )
    blobs = blobs or LocalBlobStore(settings.blob_dir)
    ai = ai or get_invoker(settings, blobs)
    log.debug("Service context ready (kv=%s, ai=%s)", type(kv).__name__, type(ai).__name__)
    return ServiceContext(kv=kv, blobs=blobs, ai=ai, settings=settings)
