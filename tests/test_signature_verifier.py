import tempfile

import cv2
import numpy as np
import pytest

from rxsignature import (
    DecodeError, EmptyReferenceSetError, DocumentType,
    enroll_reference_signature, load_reference_set, verify_prescription_signature,
)
from rxsignature.storage import JsonReferenceStore

from conftest import draw_signature, write_png


def _prescription_with(signature: np.ndarray) -> np.ndarray:
    page = np.full((800, 1000), 255, dtype=np.uint8)
    cv2.putText(page, "Rx: Amoxicillin 500mg", (60, 200), cv2.FONT_HERSHEY_SIMPLEX, 1.5, 0, 2)
    page[640:, 700:] = signature
    return page


def test_verify_signature_crop(enrolled_store, signature_files):
    verdict = verify_prescription_signature(signature_files["MED001"], load_reference_set(enrolled_store))
    assert verdict.verified
    assert verdict.matched_reference.id == "MED001"
    assert verdict.confidence >= 95


def test_verify_full_prescription(tmp_path, json_store):
    patch = cv2.resize(draw_signature("text"), (300, 160))
    patch_file = write_png(tmp_path / "patch.png", patch)
    prescription = write_png(tmp_path / "prescription.png", _prescription_with(patch))

    enroll_reference_signature(patch_file, {"licenseNumber": "MED777", "name": "Dr. Paulo Reis"}, json_store)
    verdict = verify_prescription_signature(prescription, load_reference_set(json_store))

    assert verdict.document_type is DocumentType.FULL_DOCUMENT
    assert verdict.verified
    assert verdict.confidence == 100
    assert verdict.matched_reference.name == "Dr. Paulo Reis"


def test_enroll_from_prescription_region(tmp_path, json_store):
    patch = cv2.resize(draw_signature("zigzag"), (300, 160))
    prescription = write_png(tmp_path / "prescription.png", _prescription_with(patch))

    enroll_reference_signature(prescription, {"id": "MED900", "name": "Dr. Rosa"}, json_store,
                               extract_region=True)
    verdict = verify_prescription_signature(prescription, load_reference_set(json_store))

    assert verdict.verified
    assert verdict.confidence == 100


def test_empty_reference_set_is_a_distinct_error(signature_files):
    with pytest.raises(EmptyReferenceSetError):
        verify_prescription_signature(signature_files["MED001"], [])


def test_zero_byte_upload_fails_without_leftovers(enrolled_store, tmp_path, monkeypatch):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))

    upload = tmp_path / "upload.png"
    upload.write_bytes(b"")

    with pytest.raises(DecodeError):
        verify_prescription_signature(upload, load_reference_set(enrolled_store))
    assert list(scratch.iterdir()) == []


def test_parallel_verification_leaves_no_scratch_files(enrolled_store, signature_files, tmp_path, monkeypatch):
    from rxsignature.models import VerificationSettings

    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))

    settings = VerificationSettings(max_workers=2, parallel_min_references=2)
    verdict = verify_prescription_signature(signature_files["MED003"], load_reference_set(enrolled_store), settings)

    assert verdict.matched_reference.id == "MED003"
    assert list(scratch.glob("*.png")) == []


def test_load_reference_set_skips_inactive(tmp_path, signature_files):
    import json

    store = JsonReferenceStore(tmp_path / "trained-signatures.json")
    enroll_reference_signature(signature_files["MED001"], {"id": "A", "name": "Dr. A"}, store)
    enroll_reference_signature(signature_files["MED002"], {"id": "B", "name": "Dr. B"}, store)

    records = json.loads(store.path.read_text())
    records[0]["isActive"] = False
    store.path.write_text(json.dumps(records))

    assert [r.id for r in load_reference_set(store)] == ["B"]
    assert [r.id for r in load_reference_set(store, active_only=False)] == ["A", "B"]
