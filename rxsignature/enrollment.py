"""Enrollment pipeline for rxsignature

Turns a raw signature image plus doctor metadata into a persisted
ReferenceSignature:
1. Load the raw image (optionally cropping a full prescription first)
2. preprocess() - the same function verification applies to candidates
3. Persist the preprocessed PNG into the store's image directory
4. Fingerprint the persisted image
5. Append the record to the store

Duplicate policy: enrolling an id that is already stored raises
DuplicateIdentifierError. Overwriting is only possible by re-training the
whole set with replace=True.
"""

from __future__ import annotations
import json
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from rxsignature.config import SIGNATURE_IMAGE_EXTENSION
from rxsignature.exceptions import DuplicateIdentifierError, SignatureVerificationError, StoreError
from rxsignature.fingerprinting import fingerprint_file
from rxsignature.logger import log_enrollment, log_error, log_warning
from rxsignature.models import EnrollmentMetadata, ReferenceSignature, TrainingSummary, utc_timestamp
from rxsignature.preprocessing import extract_signature_region, load_image, preprocess, save_image
from rxsignature.storage.base import ReferenceStore

MetadataLike = Union[EnrollmentMetadata, Mapping[str, Any]]

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _as_metadata(metadata: MetadataLike) -> EnrollmentMetadata:
    if isinstance(metadata, EnrollmentMetadata):
        return metadata
    return EnrollmentMetadata.from_dict(metadata)


def reference_image_path(image_dir: Path, reference_id: str) -> Path:
    """Unique destination for a reference image: signature-<id>-<suffix>.png."""
    safe_id = _UNSAFE_FILENAME_CHARS.sub("_", reference_id).strip("_") or "reference"
    return image_dir / f"signature-{safe_id}-{uuid.uuid4().hex[:8]}{SIGNATURE_IMAGE_EXTENSION}"


def build_reference(raw_image_path: Union[str, Path],
                    metadata: MetadataLike,
                    image_dir: Path,
                    *,
                    extract_region: bool = False) -> ReferenceSignature:
    """Preprocess, persist and fingerprint a raw signature image.

    Does not touch any store.

    Args:
        raw_image_path: Raw signature image (or full prescription if extract_region)
        metadata: Doctor metadata (EnrollmentMetadata or mapping)
        image_dir: Directory the preprocessed image is written to
        extract_region: Crop the signature region first, as verification does

    Returns:
        ReferenceSignature pointing at the persisted preprocessed image

    Raises:
        DecodeError: If the raw image cannot be decoded
        StoreError: If the preprocessed image cannot be written
    """
    meta = _as_metadata(metadata)
    image = load_image(raw_image_path)
    if extract_region:
        image = extract_signature_region(image)
    processed = preprocess(image)

    destination = reference_image_path(Path(image_dir), meta.id)
    try:
        save_image(processed, destination)
    except OSError as exc:
        raise StoreError(f"Unable to write reference image {destination}: {exc}") from exc

    try:
        # Fingerprint what was persisted, i.e. exactly what verification will load
        fingerprint = fingerprint_file(destination)
    except SignatureVerificationError:
        destination.unlink(missing_ok=True)
        raise

    return ReferenceSignature(
        id=meta.id,
        display_name=meta.name,
        reference_image_path=destination,
        fingerprint=fingerprint,
        email=meta.email,
        phone=meta.phone,
        specialty=meta.specialty,
        hospital_name=meta.hospital_name,
        is_verified=True,
        is_active=True,
        enrolled_at=utc_timestamp(),
        extra=dict(meta.extra),
    )


def enroll(raw_image_path: Union[str, Path],
           metadata: MetadataLike,
           store: ReferenceStore,
           *,
           extract_region: bool = False) -> ReferenceSignature:
    """Enroll one reference signature and append it to the store.

    Raises:
        DuplicateIdentifierError: If metadata.id is already enrolled
        DecodeError: If the raw image cannot be decoded
        StoreError: If the store or image directory cannot be written
    """
    meta = _as_metadata(metadata)
    if store.exists(meta.id):
        log_enrollment("ENROLL", meta.id, "DUPLICATE")
        raise DuplicateIdentifierError(meta.id)

    reference = build_reference(raw_image_path, meta, store.image_dir, extract_region=extract_region)
    try:
        store.append(reference)
    except Exception:
        # Lost a race with a concurrent enrollment, or the store is unwritable
        reference.reference_image_path.unlink(missing_ok=True)
        raise

    log_enrollment("ENROLL", reference.id, "SUCCESS", {
        "name": reference.display_name,
        "fingerprint": reference.fingerprint,
        "image": reference.reference_image_path.name,
    })
    return reference


# ---------------------------------------------------------------------------
# Batch training


def load_manifest(manifest_path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read a training manifest.

    The manifest is a JSON array of entries::

        {"imagePath": "signature1.png",
         "doctorInfo": {"name": "...", "licenseNumber": "MED001", ...}}

    Flat entries (``imagePath`` next to the metadata keys) are accepted too.
    Relative image paths are resolved against the manifest's directory.

    Raises:
        ValueError: If the manifest is not a JSON array of objects
    """
    manifest_path = Path(manifest_path)
    entries = json.loads(manifest_path.read_text(encoding="utf-8"))
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ValueError(f"Training manifest {manifest_path} must be a JSON array of objects")

    resolved = []
    for entry in entries:
        entry = dict(entry)
        image_path = entry.get("imagePath") or entry.get("image_path")
        if image_path is None:
            raise ValueError(f"Manifest entry without imagePath: {entry}")
        image_path = Path(image_path)
        if not image_path.is_absolute():
            image_path = manifest_path.parent / image_path
        entry["imagePath"] = image_path
        resolved.append(entry)
    return resolved


def _entry_metadata(entry: Mapping[str, Any]) -> EnrollmentMetadata:
    info = entry.get("doctorInfo")
    if info is None:
        info = {k: v for k, v in entry.items() if k not in ("imagePath", "image_path", "extractRegion")}
    return EnrollmentMetadata.from_dict(info)


def train(entries: Sequence[Mapping[str, Any]],
          store: ReferenceStore,
          *,
          replace: bool = False,
          extract_region: bool = False) -> TrainingSummary:
    """Enroll a batch of signatures.

    Each entry is enrolled independently; failures are logged and skipped.
    With ``replace`` the whole reference set is swapped for the batch in one
    write (re-enrollment), and images of the replaced records are removed.

    Args:
        entries: Manifest entries (see load_manifest)
        store: Target store
        replace: Replace the stored set instead of appending to it
        extract_region: Crop signature regions from full prescriptions first

    Returns:
        TrainingSummary
    """
    summary = TrainingSummary(total=len(entries))
    built: List[ReferenceSignature] = []
    seen_ids = set()

    for entry in entries:
        label = str(entry.get("imagePath"))
        try:
            meta = _entry_metadata(entry)
            crop = bool(entry.get("extractRegion", extract_region))
            if replace:
                if meta.id in seen_ids:
                    raise DuplicateIdentifierError(meta.id)
                reference = build_reference(entry["imagePath"], meta, store.image_dir, extract_region=crop)
                seen_ids.add(meta.id)
                built.append(reference)
            else:
                reference = enroll(entry["imagePath"], meta, store, extract_region=crop)
            summary.trained.append(reference)
        except (SignatureVerificationError, ValueError, OSError) as exc:
            log_error(exc, context=f"train ({label})")
            summary.failed.append((label, str(exc)))

    if replace:
        try:
            previous = store.replace_all(built)
        except Exception:
            for reference in built:
                reference.reference_image_path.unlink(missing_ok=True)
            raise
        kept = {r.reference_image_path.resolve() for r in built}
        for old in previous:
            old_path = old.reference_image_path
            if old_path.resolve() in kept or not _is_within(old_path, store.image_dir):
                continue
            try:
                old_path.unlink(missing_ok=True)
            except OSError as exc:
                log_warning(f"Could not remove replaced reference image {old_path}: {exc}")
        log_enrollment("REPLACE", None, "SUCCESS", {"replaced": len(previous), "enrolled": len(built)})

    log_enrollment("TRAIN", None, "COMPLETE", {
        "trained": summary.success_count,
        "total": summary.total,
        "failed": len(summary.failed),
    })
    return summary


def train_from_manifest(manifest_path: Union[str, Path],
                        store: ReferenceStore,
                        *,
                        replace: bool = False,
                        extract_region: bool = False) -> TrainingSummary:
    """Load a manifest and run train() on it."""
    return train(load_manifest(manifest_path), store, replace=replace, extract_region=extract_region)


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.resolve().relative_to(Path(directory).resolve())
        return True
    except ValueError:
        return False
