"""Data structures for rxsignature

This module defines the core data classes used throughout the signature verification
core. These classes are shared across all modules (preprocessing, fingerprinting,
matching, enrollment, storage).
"""

from __future__ import annotations
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rxsignature.config import (
    DEFAULT_HASH_CONFIDENCE_TABLE, FINGERPRINT_HEX_LENGTH, HASH_WEIGHT, PIXEL_WEIGHT,
    STRICT_MATCH_THRESHOLD, MAX_WORKERS, PARALLEL_MIN_REFERENCES, VERIFY_TIMEOUT,
    HashConfidenceBand, validate_hash_table,
)

_HEX_DIGITS = frozenset(string.hexdigits.lower())


class DocumentType(str, Enum):
    """What an uploaded image contains, judged from its dimensions."""
    FULL_DOCUMENT = "full_document"
    SIGNATURE_ONLY = "signature_only"


@dataclass(frozen=True)
class ReferenceSignature:
    """An enrolled doctor's ground-truth signature.

    Attributes:
        id: Stable external identifier (licence number)
        display_name: Doctor's display name
        reference_image_path: Path to the *preprocessed* reference image
        fingerprint: 64 lowercase hex chars, computed from reference_image_path
        email, phone, specialty, hospital_name: Profile fields kept with the record
        is_verified: Whether the enrolment was vetted
        is_active: Inactive references are not loaded for verification
        enrolled_at: UTC ISO-8601 enrolment timestamp
        extra: Any other profile field supplied at enrolment
    """
    id: str
    display_name: str
    reference_image_path: Path
    fingerprint: str
    email: str = ""
    phone: str = ""
    specialty: str = ""
    hospital_name: str = ""
    is_verified: bool = True
    is_active: bool = True
    enrolled_at: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate reference after initialization."""
        if not self.id or not str(self.id).strip():
            raise ValueError("Reference id must be a non-empty string")

        if len(self.fingerprint) != FINGERPRINT_HEX_LENGTH or not set(self.fingerprint) <= _HEX_DIGITS:
            raise ValueError(
                f"Fingerprint must be {FINGERPRINT_HEX_LENGTH} lowercase hex characters, "
                f"got {self.fingerprint!r}"
            )

        if not isinstance(self.reference_image_path, Path):
            object.__setattr__(self, "reference_image_path", Path(self.reference_image_path))


@dataclass(frozen=True)
class MatchedReference:
    """Identifier and name of the best-scoring reference."""
    id: str
    name: str


@dataclass(frozen=True)
class SimilarityResult:
    """Outcome of comparing two preprocessed images.

    Attributes:
        confidence: Combined score, integer 0-100
        is_match: confidence >= threshold
        hash_confidence: Score derived from the fingerprint Hamming distance
        pixel_similarity: Score derived from the pixel MSE
        distance: Hamming distance between the two fingerprints
        method: Scoring method label
    """
    confidence: int
    is_match: bool
    hash_confidence: float
    pixel_similarity: int
    distance: int
    method: str


@dataclass(frozen=True)
class VerificationVerdict:
    """Output of one verification call.

    ``verified`` is true iff a best match exists and ``confidence >= threshold``.
    ``matched_reference`` names the best-scoring reference even on rejection so
    near misses can be logged.
    """
    verified: bool
    confidence: int
    matched_reference: Optional[MatchedReference]
    detail: str
    threshold: float = STRICT_MATCH_THRESHOLD
    method: str = ""
    document_type: Optional[DocumentType] = None
    scores: Tuple[Tuple[str, int], ...] = ()
    skipped: Tuple[str, ...] = ()


@dataclass
class VerificationSettings:
    """Tunable scoring policy.

    Defaults reproduce the values existing enrolled data was tuned against.

    Attributes:
        threshold: Minimum combined confidence to accept (0-100)
        hash_weight: Weight of the hash-derived score
        pixel_weight: Weight of the pixel-derived score
        hash_table: Piecewise-linear distance -> confidence policy
        max_workers: Processes used for large reference sets (1 = sequential)
        parallel_min_references: Reference count at which parallel scoring kicks in
        timeout: Per-comparison timeout for parallel scoring (seconds)
    """
    threshold: float = STRICT_MATCH_THRESHOLD
    hash_weight: float = HASH_WEIGHT
    pixel_weight: float = PIXEL_WEIGHT
    hash_table: Tuple[HashConfidenceBand, ...] = DEFAULT_HASH_CONFIDENCE_TABLE
    max_workers: int = MAX_WORKERS
    parallel_min_references: int = PARALLEL_MIN_REFERENCES
    timeout: float = VERIFY_TIMEOUT

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not (0.0 <= self.threshold <= 100.0):
            raise ValueError(f"Threshold must be in [0, 100], got {self.threshold}")

        if self.hash_weight < 0.0 or self.pixel_weight < 0.0:
            raise ValueError("Weights must be non-negative")

        weight_sum = self.hash_weight + self.pixel_weight
        if not (0.99 <= weight_sum <= 1.01):
            raise ValueError(f"hash_weight + pixel_weight must sum to 1.0, got {weight_sum}")

        problems = validate_hash_table(self.hash_table)
        if problems:
            raise ValueError("; ".join(problems))

        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

        if self.parallel_min_references < 1:
            raise ValueError(f"parallel_min_references must be >= 1, got {self.parallel_min_references}")

        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")


# Keys accepted for each metadata field (snake_case, camelCase as in training manifests)
_METADATA_ALIASES: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "licenseNumber", "license_number"),
    "name": ("name", "displayName", "display_name"),
    "email": ("email",),
    "phone": ("phone",),
    "specialty": ("specialty",),
    "hospital_name": ("hospitalName", "hospital_name"),
}


@dataclass
class EnrollmentMetadata:
    """Profile data supplied alongside a raw signature image at enrolment."""
    id: str
    name: str
    email: str = ""
    phone: str = ""
    specialty: str = ""
    hospital_name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id or not str(self.id).strip():
            raise ValueError("Enrollment metadata requires a non-empty id")
        if not self.name or not str(self.name).strip():
            raise ValueError("Enrollment metadata requires a non-empty name")
        self.id = str(self.id).strip()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnrollmentMetadata":
        """Build metadata from a mapping, accepting camelCase or snake_case keys.

        Unknown keys are kept in ``extra``.
        """
        values: Dict[str, Any] = {}
        consumed = set()
        for attr, aliases in _METADATA_ALIASES.items():
            for key in aliases:
                if key in data and data[key] not in (None, ""):
                    values[attr] = data[key]
                    break
            consumed.update(aliases)

        if "id" not in values:
            raise ValueError("Enrollment metadata requires an 'id' (or 'licenseNumber')")
        if "name" not in values:
            raise ValueError("Enrollment metadata requires a 'name'")

        extra = {k: v for k, v in data.items() if k not in consumed}
        return cls(extra=extra, **values)


@dataclass
class TrainingSummary:
    """Result of a batch enrolment run."""
    total: int = 0
    trained: List[ReferenceSignature] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (label, error)

    @property
    def success_count(self) -> int:
        return len(self.trained)


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()
