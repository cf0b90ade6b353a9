import json

import pytest

from rxsignature.cli import main


@pytest.fixture
def store_args(tmp_path):
    return ["--backend", "json", "--store", str(tmp_path / "store" / "trained-signatures.json")]


def _enroll_all(store_args, signature_files):
    for index, (reference_id, path) in enumerate(signature_files.items()):
        assert main(store_args + ["enroll", str(path), "--id", reference_id, "--name", f"Dr. {index}"]) == 0


def test_enroll_list_and_verify(store_args, signature_files, capsys):
    _enroll_all(store_args, signature_files)
    capsys.readouterr()

    assert main(store_args + ["list"]) == 0
    listing = capsys.readouterr().out
    assert "MED001" in listing and "MED003" in listing

    assert main(store_args + ["verify", str(signature_files["MED002"]), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["verified"] is True
    assert payload["matchedDoctor"]["id"] == "MED002"


def test_verify_rejection_exit_code(store_args, signature_files, noise_file, capsys):
    _enroll_all(store_args, signature_files)
    assert main(store_args + ["verify", str(noise_file)]) == 2
    assert "REJECT" in capsys.readouterr().out


def test_verify_without_references(store_args, signature_files):
    with pytest.raises(SystemExit) as excinfo:
        main(store_args + ["verify", str(signature_files["MED001"])])
    assert "Enroll references first" in str(excinfo.value.code)


def test_enroll_duplicate_exits(store_args, signature_files):
    path = str(signature_files["MED001"])
    assert main(store_args + ["enroll", path, "--id", "X", "--name", "Dr. X"]) == 0
    with pytest.raises(SystemExit):
        main(store_args + ["enroll", path, "--id", "X", "--name", "Dr. X"])


def test_train_manifest(store_args, signature_files, tmp_path, capsys):
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps([
        {"imagePath": str(path), "doctorInfo": {"name": f"Dr. {reference_id}", "licenseNumber": reference_id}}
        for reference_id, path in signature_files.items()
    ]))
    assert main(store_args + ["train", str(manifest), "--replace"]) == 0
    assert "Trained 3/3" in capsys.readouterr().out


def test_fingerprint_command(signature_files, capsys):
    assert main(["fingerprint", str(signature_files["MED001"])]) == 0
    assert len(capsys.readouterr().out.strip()) == 64


def test_extract_command(tmp_path, capsys):
    import numpy as np
    from conftest import write_png

    prescription = write_png(tmp_path / "rx.png", np.full((800, 1000), 255, dtype=np.uint8))
    output = tmp_path / "sig.png"
    assert main(["extract", str(prescription), str(output)]) == 0
    assert output.exists()


def test_invalid_threshold(store_args, signature_files):
    _enroll_all(store_args, signature_files)
    with pytest.raises(SystemExit):
        main(store_args + ["verify", str(signature_files["MED001"]), "--threshold", "150"])


def test_corrupt_store_exits_with_error(tmp_path, signature_files):
    store = tmp_path / "broken.json"
    store.write_text("{not json")
    for command in (["list"], ["verify", str(signature_files["MED001"])]):
        with pytest.raises(SystemExit) as excinfo:
            main(["--backend", "json", "--store", str(store)] + command)
        assert str(excinfo.value.code).startswith("[error]")
