import json

import pytest

from rxsignature.enrollment import enroll, load_manifest, reference_image_path, train, train_from_manifest
from rxsignature.exceptions import DuplicateIdentifierError
from rxsignature.fingerprinting import fingerprint_file
from rxsignature.models import EnrollmentMetadata
from rxsignature.preprocessing import load_image
from rxsignature.storage import JsonReferenceStore


def test_enroll_persists_preprocessed_image(json_store, signature_files):
    reference = enroll(signature_files["MED001"],
                       EnrollmentMetadata(id="MED001", name="Dr. Ana Costa", specialty="Cardiology"),
                       json_store)

    assert reference.reference_image_path.exists()
    assert reference.reference_image_path.parent == json_store.image_dir
    assert load_image(reference.reference_image_path).shape == (200, 500)
    assert reference.fingerprint == fingerprint_file(reference.reference_image_path)
    assert reference.is_active and reference.is_verified
    assert reference.enrolled_at


def test_enrolled_record_survives_reload(json_store, signature_files):
    enroll(signature_files["MED002"], {"licenseNumber": "MED002", "name": "Dr. Rui Lopes",
                                       "hospitalName": "Hospital Sao Joao", "extraNote": "locum"},
           json_store)

    reloaded = JsonReferenceStore(json_store.path).get("MED002")

    assert reloaded is not None
    assert reloaded.display_name == "Dr. Rui Lopes"
    assert reloaded.hospital_name == "Hospital Sao Joao"
    assert reloaded.extra == {"extraNote": "locum"}
    assert reloaded.reference_image_path.exists()


def test_enroll_duplicate_id_is_rejected(json_store, signature_files):
    enroll(signature_files["MED001"], {"id": "MED001", "name": "Dr. A"}, json_store)

    with pytest.raises(DuplicateIdentifierError) as excinfo:
        enroll(signature_files["MED002"], {"id": "MED001", "name": "Dr. Impostor"}, json_store)

    assert excinfo.value.identifier == "MED001"
    assert [r.display_name for r in json_store.load_all()] == ["Dr. A"]
    assert len(list(json_store.image_dir.iterdir())) == 1


def test_enroll_requires_id_and_name():
    with pytest.raises(ValueError):
        EnrollmentMetadata.from_dict({"name": "Dr. Nobody"})
    with pytest.raises(ValueError):
        EnrollmentMetadata.from_dict({"id": "X1"})


def test_metadata_aliases_and_extras():
    meta = EnrollmentMetadata.from_dict({
        "licenseNumber": " MED123 ", "name": "Dr. Maria", "hospitalName": "HSJ", "crm": "42",
    })
    assert meta.id == "MED123"
    assert meta.hospital_name == "HSJ"
    assert meta.extra == {"crm": "42"}


def test_reference_image_path_is_unique_and_safe(tmp_path):
    first = reference_image_path(tmp_path, "MED/001 ../x")
    second = reference_image_path(tmp_path, "MED/001 ../x")
    assert first != second
    assert first.parent == tmp_path
    assert "/" not in first.name and first.suffix == ".png"


def _manifest(tmp_path, entries):
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


def test_load_manifest_resolves_relative_paths(tmp_path, signature_files):
    path = _manifest(tmp_path, [
        {"imagePath": "raw/wave.png", "doctorInfo": {"name": "Dr. A", "licenseNumber": "A1"}},
    ])
    entries = load_manifest(path)
    assert entries[0]["imagePath"] == tmp_path / "raw" / "wave.png"


def test_load_manifest_rejects_non_array(tmp_path):
    path = tmp_path / "manifest.json"
    path.write_text('{"imagePath": "x.png"}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_manifest(path)


def test_train_from_manifest_collects_failures(tmp_path, json_store, signature_files):
    path = _manifest(tmp_path, [
        {"imagePath": "raw/wave.png", "doctorInfo": {"name": "Dr. A", "licenseNumber": "A1"}},
        {"imagePath": "raw/missing.png", "doctorInfo": {"name": "Dr. B", "licenseNumber": "B1"}},
        {"imagePath": "raw/text.png", "name": "Dr. C", "id": "C1", "email": "c@example.org"},
    ])

    summary = train_from_manifest(path, json_store)

    assert summary.total == 3
    assert summary.success_count == 2
    assert len(summary.failed) == 1
    assert "missing.png" in summary.failed[0][0]
    stored = json_store.load_all()
    assert [r.id for r in stored] == ["A1", "C1"]
    assert stored[1].email == "c@example.org"


def test_train_append_reports_duplicates(json_store, signature_files):
    entries = [
        {"imagePath": signature_files["MED001"], "doctorInfo": {"name": "Dr. A", "id": "A1"}},
        {"imagePath": signature_files["MED002"], "doctorInfo": {"name": "Dr. A again", "id": "A1"}},
    ]
    summary = train(entries, json_store)
    assert summary.success_count == 1
    assert len(summary.failed) == 1


def test_train_replace_swaps_whole_set(enrolled_store, signature_files):
    old_images = [r.reference_image_path for r in enrolled_store.load_all()]

    entries = [
        {"imagePath": signature_files["MED003"], "doctorInfo": {"name": "Dr. New", "id": "NEW1"}},
        {"imagePath": signature_files["MED001"], "doctorInfo": {"name": "Dr. Ana Costa", "id": "MED001"}},
    ]
    summary = train(entries, enrolled_store, replace=True)

    assert summary.success_count == 2
    assert [r.id for r in enrolled_store.load_all()] == ["NEW1", "MED001"]
    assert not any(path.exists() for path in old_images)
    assert all(r.reference_image_path.exists() for r in enrolled_store.load_all())


def test_train_replace_skips_duplicate_in_batch(json_store, signature_files):
    entries = [
        {"imagePath": signature_files["MED001"], "doctorInfo": {"name": "Dr. A", "id": "A1"}},
        {"imagePath": signature_files["MED002"], "doctorInfo": {"name": "Dr. B", "id": "A1"}},
    ]
    summary = train(entries, json_store, replace=True)

    assert summary.success_count == 1
    assert [r.display_name for r in json_store.load_all()] == ["Dr. A"]
