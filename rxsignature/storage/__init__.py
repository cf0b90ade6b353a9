"""
Reference-set storage.
One interface, a JSON-file backend and an SQLCipher backend, picked by configuration.
"""

from pathlib import Path
from typing import Optional

from rxsignature.config import STORE_BACKEND, STORE_PATH, DB_PATH
from .base import ReferenceStore
from .json_store import JsonReferenceStore


def open_store(backend: Optional[str] = None,
               path: Optional[Path] = None,
               image_dir: Optional[Path] = None) -> ReferenceStore:
    """Open the configured reference store.

    Args:
        backend: "json" or "database" (default: STORE_BACKEND)
        path: JSON file or database file (default: STORE_PATH / DB_PATH)
        image_dir: Directory for reference images (default: next to the store)

    Raises:
        ValueError: If the backend is unknown
    """
    backend = backend or STORE_BACKEND
    if backend == "json":
        return JsonReferenceStore(Path(path or STORE_PATH), image_dir=image_dir)
    if backend == "database":
        # sqlcipher3 is only needed for this backend
        from .database import DatabaseReferenceStore
        return DatabaseReferenceStore(Path(path or DB_PATH), image_dir=image_dir)
    raise ValueError(f"Unknown store backend: {backend!r} (expected 'json' or 'database')")


__all__ = ['ReferenceStore', 'JsonReferenceStore', 'open_store']
