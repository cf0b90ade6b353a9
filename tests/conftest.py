import os
import tempfile

# Must be set before rxsignature.config is imported
os.environ.setdefault("RXSIG_LOG_DIR", tempfile.mkdtemp(prefix="rxsignature-logs-"))
os.environ["RXSIG_VERBOSE"] = "0"

import cv2
import numpy as np
import pytest

from rxsignature.enrollment import enroll
from rxsignature.models import EnrollmentMetadata
from rxsignature.storage import JsonReferenceStore

SIGNATURE_SIZE = (400, 150)  # (width, height), well below the full-document size


def draw_signature(kind: str, size=SIGNATURE_SIZE) -> np.ndarray:
    """Draw a synthetic pen signature on white paper (greyscale uint8)."""
    width, height = size
    image = np.full((height, width), 255, dtype=np.uint8)

    if kind == "wave":
        xs = np.arange(20, width - 20)
        ys = (height / 2 + 35 * np.sin(xs / 18.0)).astype(np.int32)
        cv2.polylines(image, [np.stack([xs, ys], axis=1).astype(np.int32)], False, 0, 3)
        cv2.ellipse(image, (70, 75), (40, 25), 0, 0, 360, 0, 3)
    elif kind == "zigzag":
        points = [(30 + i * 35, 40 if i % 2 == 0 else 115) for i in range(10)]
        cv2.polylines(image, [np.array(points, dtype=np.int32)], False, 0, 4)
        cv2.line(image, (30, 130), (370, 130), 0, 2)
    elif kind == "text":
        cv2.putText(image, "Dr. Silva", (15, 100), cv2.FONT_HERSHEY_SCRIPT_COMPLEX, 2.0, 0, 3)
    else:
        raise ValueError(kind)
    return image


def write_png(path, image):
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    path.write_bytes(encoded.tobytes())
    return path


@pytest.fixture
def signature_files(tmp_path):
    """Three distinct raw signature images: {reference id: path}."""
    raw_dir = tmp_path / "raw"
    raw_dir.mkdir()
    return {
        "MED001": write_png(raw_dir / "wave.png", draw_signature("wave")),
        "MED002": write_png(raw_dir / "zigzag.png", draw_signature("zigzag")),
        "MED003": write_png(raw_dir / "text.png", draw_signature("text")),
    }


@pytest.fixture
def json_store(tmp_path):
    return JsonReferenceStore(tmp_path / "store" / "trained-signatures.json")


@pytest.fixture
def enrolled_store(json_store, signature_files):
    names = {"MED001": "Dr. Ana Costa", "MED002": "Dr. Rui Lopes", "MED003": "Dr. Joana Silva"}
    for reference_id, path in signature_files.items():
        enroll(path, EnrollmentMetadata(id=reference_id, name=names[reference_id]), json_store)
    return json_store


@pytest.fixture
def noise_file(tmp_path):
    """Blocky black/white noise, nothing like a signature."""
    rng = np.random.default_rng(1234)
    blocks = rng.integers(0, 2, size=(20, 50), dtype=np.uint8) * 255
    image = np.kron(blocks, np.ones((8, 8), dtype=np.uint8))
    return write_png(tmp_path / "noise.png", image)
