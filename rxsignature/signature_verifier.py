"""rxsignature - Prescription Signature Verification Core

ARCHITECTURE:
- Modular design:
  * config.py: Centralized configuration
  * models.py: Core data structures
  * preprocessing.py: Loading, region extraction, canonical preprocessing
  * fingerprinting.py: Perceptual hash, Hamming distance, hash confidence
  * matching.py: Pixel similarity, combined scoring, one-to-many verification
  * enrollment.py: Reference enrollment and batch training
  * storage/: JSON and SQLCipher reference stores

PIPELINE:
1. Region extraction: classify by size -> bottom-right crop for full documents
2. Preprocessing: letterbox 500x200 -> greyscale -> contrast stretch -> binarize
3. Scoring: 20% hash confidence + 80% pixel similarity against every reference
4. Verdict: best reference, accepted iff confidence >= 78

This module is the surface the route layer and the admin tooling call.
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Sequence, Union

from rxsignature.enrollment import MetadataLike, enroll
from rxsignature.exceptions import EmptyReferenceSetError
from rxsignature.matching import SignatureMatcher
from rxsignature.models import ReferenceSignature, VerificationSettings, VerificationVerdict
from rxsignature.preprocessing import load_image
from rxsignature.storage import ReferenceStore, open_store


def verify_prescription_signature(
    candidate_image_path: Union[str, Path],
    reference_set: Sequence[ReferenceSignature],
    settings: Optional[VerificationSettings] = None
) -> VerificationVerdict:
    """Verify an uploaded prescription (or signature crop) against the enrolled set.

    Args:
        candidate_image_path: Path where the route layer stored the upload
        reference_set: Enrolled references (see load_reference_set)
        settings: Scoring policy (defaults reproduce threshold 78, weights 0.2/0.8)

    Returns:
        VerificationVerdict

    Raises:
        EmptyReferenceSetError: If reference_set is empty
        DecodeError: If the upload cannot be decoded
    """
    matcher = SignatureMatcher(reference_set, settings)
    # Checked first so a misconfigured store is reported even for a bad upload
    if not matcher.references:
        raise EmptyReferenceSetError("No reference signatures enrolled; nothing to verify against")
    return matcher.verify(load_image(candidate_image_path))


def enroll_reference_signature(
    raw_image_path: Union[str, Path],
    metadata: MetadataLike,
    store: Optional[ReferenceStore] = None,
    *,
    extract_region: bool = False
) -> ReferenceSignature:
    """Enroll a raw signature image as a reference (administrative step).

    Args:
        raw_image_path: Raw signature image
        metadata: {id, name, ...} mapping or EnrollmentMetadata
        store: Target store (default: the configured store)
        extract_region: Crop the signature region out of a full prescription first

    Returns:
        The stored ReferenceSignature

    Raises:
        DuplicateIdentifierError: If the id is already enrolled
        DecodeError: If the image cannot be decoded
    """
    if store is not None:
        return enroll(raw_image_path, metadata, store, extract_region=extract_region)
    with open_store() as default_store:
        return enroll(raw_image_path, metadata, default_store, extract_region=extract_region)


def load_reference_set(store: Optional[ReferenceStore] = None, active_only: bool = True) -> List[ReferenceSignature]:
    """Load the reference set wholesale before a verification batch.

    Raises:
        StoreError: If the store cannot be read
    """
    if store is not None:
        return store.load_active() if active_only else store.load_all()
    with open_store() as default_store:
        return default_store.load_active() if active_only else default_store.load_all()
