"""Reference-set store interface.

A store is a flat collection of ReferenceSignature records plus a directory for
the preprocessed reference images. Records are appended, never updated in
place; re-enrollment replaces the whole set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from rxsignature.models import ReferenceSignature


class ReferenceStore(ABC):
    """Abstract reference-set store."""

    #: Directory preprocessed reference images are written to
    image_dir: Path

    @abstractmethod
    def load_all(self) -> List[ReferenceSignature]:
        """Load every record, in enrollment order.

        Raises:
            StoreError: If the store cannot be read
        """

    @abstractmethod
    def append(self, reference: ReferenceSignature) -> None:
        """Append one record.

        Raises:
            DuplicateIdentifierError: If reference.id is already stored
            StoreError: If the store cannot be written
        """

    @abstractmethod
    def replace_all(self, references: Sequence[ReferenceSignature]) -> List[ReferenceSignature]:
        """Replace the whole set atomically.

        Returns:
            The records that were replaced
        """

    def load_active(self) -> List[ReferenceSignature]:
        """Records eligible for verification."""
        return [r for r in self.load_all() if r.is_active]

    def get(self, reference_id: str) -> Optional[ReferenceSignature]:
        for reference in self.load_all():
            if reference.id == reference_id:
                return reference
        return None

    def exists(self, reference_id: str) -> bool:
        return self.get(reference_id) is not None

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
