"""Serialization for ReferenceSignature and VerificationVerdict

Reference records are persisted as plain dicts using the key names of the
trained-signatures JSON layout (camelCase), so an existing store written by the
training scripts loads unchanged. Image paths are written relative to a base
directory when they live under it.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import json

from rxsignature.models import ReferenceSignature, VerificationVerdict

# Persisted key -> attribute
_RECORD_FIELDS = (
    ("id", "id"),
    ("name", "display_name"),
    ("email", "email"),
    ("phone", "phone"),
    ("specialty", "specialty"),
    ("hospitalName", "hospital_name"),
    ("signatureHash", "fingerprint"),
    ("isVerified", "is_verified"),
    ("isActive", "is_active"),
    ("trainedAt", "enrolled_at"),
)
_KNOWN_KEYS = {key for key, _ in _RECORD_FIELDS} | {"signaturePath", "licenseNumber"}


def reference_to_dict(reference: ReferenceSignature, base_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Serialize a reference to a JSON-compatible dictionary.

    Args:
        reference: ReferenceSignature object
        base_dir: If given and the image lives under it, the path is stored relative

    Returns:
        Dictionary in the trained-signatures layout
    """
    image_path = reference.reference_image_path
    if base_dir is not None:
        try:
            image_path = image_path.resolve().relative_to(Path(base_dir).resolve())
        except ValueError:
            pass

    data: Dict[str, Any] = {key: getattr(reference, attr) for key, attr in _RECORD_FIELDS}
    data["licenseNumber"] = reference.id
    data["signaturePath"] = image_path.as_posix()
    for key, value in reference.extra.items():
        data.setdefault(key, value)
    return data


def reference_from_dict(data: Dict[str, Any], base_dir: Optional[Path] = None) -> ReferenceSignature:
    """Deserialize a reference from a dictionary.

    Args:
        data: Dictionary in the trained-signatures layout
        base_dir: Directory relative image paths are resolved against

    Returns:
        ReferenceSignature object

    Raises:
        KeyError: If a required key is missing
        ValueError: If the fingerprint or id is malformed
    """
    image_path = Path(data["signaturePath"])
    if base_dir is not None and not image_path.is_absolute():
        image_path = Path(base_dir) / image_path

    return ReferenceSignature(
        id=str(data.get("id") or data["licenseNumber"]),
        display_name=data.get("name", ""),
        reference_image_path=image_path,
        fingerprint=str(data["signatureHash"]).lower(),
        email=data.get("email", ""),
        phone=data.get("phone", ""),
        specialty=data.get("specialty", ""),
        hospital_name=data.get("hospitalName", ""),
        is_verified=bool(data.get("isVerified", True)),
        is_active=bool(data.get("isActive", True)),
        enrolled_at=data.get("trainedAt", ""),
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


def reference_to_json(reference: ReferenceSignature) -> str:
    """Serialize a reference to a JSON string (absolute image path)."""
    return json.dumps(reference_to_dict(reference), indent=2)


def reference_from_json(json_str: str) -> ReferenceSignature:
    """Deserialize a reference from a JSON string."""
    return reference_from_dict(json.loads(json_str))


def verdict_to_dict(verdict: VerificationVerdict) -> Dict[str, Any]:
    """Serialize a verdict into the payload handed back to the route layer.

    Returns:
        Dictionary with verified, confidence, matchedDoctor, details and scoring context
    """
    matched = None
    if verdict.matched_reference is not None:
        matched = {"id": verdict.matched_reference.id, "name": verdict.matched_reference.name}

    return {
        "verified": verdict.verified,
        "confidence": verdict.confidence,
        "matchedDoctor": matched,
        "details": verdict.detail,
        "threshold": verdict.threshold,
        "method": verdict.method,
        "documentType": verdict.document_type.value if verdict.document_type else None,
        "scores": [{"id": ref_id, "confidence": score} for ref_id, score in verdict.scores],
        "skipped": list(verdict.skipped),
    }
