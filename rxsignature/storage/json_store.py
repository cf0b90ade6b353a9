"""JSON file reference store.

The whole reference set lives in one JSON array (the trained-signatures
layout). Writes go to a temporary file in the same directory followed by
os.replace, so a reader never sees a half-written store. A per-path lock
serializes read-check-write sequences of concurrent writers in one process.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rxsignature.config import SIGNATURE_IMAGE_DIRNAME
from rxsignature.exceptions import DuplicateIdentifierError, StoreError
from rxsignature.models import ReferenceSignature
from rxsignature.models_serialization import reference_from_dict, reference_to_dict
from rxsignature.storage.base import ReferenceStore

_PATH_LOCKS: Dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


class JsonReferenceStore(ReferenceStore):
    """Reference store backed by a single JSON file.

    Image paths are stored relative to the JSON file's directory when the
    image lives under it.
    """

    def __init__(self, path: Path, image_dir: Optional[Path] = None):
        """Initialize store.

        Args:
            path: JSON file (created on first write)
            image_dir: Where reference images go (default: <dir>/signatures)
        """
        self.path = Path(path)
        self.base_dir = self.path.parent
        self.image_dir = Path(image_dir) if image_dir else self.base_dir / SIGNATURE_IMAGE_DIRNAME
        self._lock = _lock_for(self.path)

    def _read(self) -> List[ReferenceSignature]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreError(f"Unable to read reference store {self.path}: {exc}") from exc

        if not isinstance(raw, list):
            raise StoreError(f"Reference store {self.path} must contain a JSON array")

        try:
            return [reference_from_dict(entry, self.base_dir) for entry in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed record in reference store {self.path}: {exc}") from exc

    def _write(self, references: Sequence[ReferenceSignature]) -> None:
        payload = [reference_to_dict(r, self.base_dir) for r in references]
        self.base_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.base_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StoreError(f"Unable to write reference store {self.path}: {exc}") from exc
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def load_all(self) -> List[ReferenceSignature]:
        with self._lock:
            return self._read()

    def append(self, reference: ReferenceSignature) -> None:
        with self._lock:
            references = self._read()
            if any(r.id == reference.id for r in references):
                raise DuplicateIdentifierError(reference.id)
            references.append(reference)
            self._write(references)

    def replace_all(self, references: Sequence[ReferenceSignature]) -> List[ReferenceSignature]:
        ids = [r.id for r in references]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise DuplicateIdentifierError(duplicates[0])

        with self._lock:
            try:
                previous = self._read()
            except StoreError:
                # Re-enrollment is how a corrupt store gets rebuilt
                previous = []
            self._write(references)
            return previous

    def __repr__(self) -> str:
        return f"JsonReferenceStore({str(self.path)!r})"
