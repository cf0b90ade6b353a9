import cv2
import numpy as np
import pytest

from rxsignature import preprocessing
from rxsignature.exceptions import DecodeError, ImageTooLargeError
from rxsignature.models import DocumentType
from rxsignature.preprocessing import (
    binarize, classify_dimensions, decode_image_bytes, extract_signature_region,
    extract_signature_to_file, letterbox, load_image, normalize_candidate, preprocess,
    scratch_image, signature_region_box, stretch_contrast,
)

from conftest import draw_signature, write_png


@pytest.mark.parametrize("width,height,expected", [
    (600, 600, DocumentType.FULL_DOCUMENT),
    (1000, 800, DocumentType.FULL_DOCUMENT),
    (599, 800, DocumentType.SIGNATURE_ONLY),
    (800, 599, DocumentType.SIGNATURE_ONLY),
    (400, 150, DocumentType.SIGNATURE_ONLY),
])
def test_classify_dimensions(width, height, expected):
    assert classify_dimensions(width, height) is expected


def test_signature_region_box_is_bottom_right():
    assert signature_region_box(1000, 800) == (700, 640, 300, 160)


def test_extract_region_crops_full_document():
    page = np.full((800, 1000), 255, dtype=np.uint8)
    page[640:, 700:] = 0
    crop = extract_signature_region(page)
    assert crop.shape == (160, 300)
    assert not crop.any()


def test_extract_region_leaves_signature_only_images_alone():
    image = draw_signature("wave")
    assert extract_signature_region(image) is image


def test_letterbox_centres_on_white():
    square = np.zeros((100, 100), dtype=np.uint8)
    canvas = letterbox(square)
    assert canvas.shape == (200, 500)
    assert (canvas[:, 150:350] == 0).all()
    assert (canvas[:, :150] == 255).all()
    assert (canvas[:, 350:] == 255).all()


def test_stretch_contrast_leaves_flat_image_unchanged():
    flat = np.full((10, 10), 200, dtype=np.uint8)
    assert (stretch_contrast(flat) == 200).all()


def test_stretch_contrast_spans_full_range():
    image = np.array([[50, 100], [150, 150]], dtype=np.uint8)
    stretched = stretch_contrast(image)
    assert stretched.min() == 0
    assert stretched.max() == 255


def test_binarize_threshold_is_exclusive_below():
    image = np.array([[0, 127, 128, 255]], dtype=np.uint8)
    assert binarize(image).tolist() == [[0, 0, 255, 255]]


def test_preprocess_produces_binary_canvas():
    colour = cv2.cvtColor(draw_signature("zigzag"), cv2.COLOR_GRAY2BGR)
    processed = preprocess(colour)
    assert processed.shape == (200, 500)
    assert processed.dtype == np.uint8
    assert set(np.unique(processed)) <= {0, 255}
    assert (processed == 0).any()


def test_preprocess_is_deterministic():
    image = draw_signature("text")
    assert np.array_equal(preprocess(image), preprocess(image))


def test_normalize_candidate_reports_document_type():
    page = np.full((800, 1000), 255, dtype=np.uint8)
    page[640:, 700:] = cv2.resize(draw_signature("wave"), (300, 160))
    document_type, crop = normalize_candidate(page)
    assert document_type is DocumentType.FULL_DOCUMENT
    assert crop.shape == (200, 500)


def test_decode_rejects_empty_bytes():
    with pytest.raises(DecodeError):
        decode_image_bytes(b"")


def test_decode_rejects_garbage():
    with pytest.raises(DecodeError):
        decode_image_bytes(b"definitely not an image", source="garbage.png")


def test_decode_flattens_transparency_onto_white():
    bgra = np.zeros((20, 30, 4), dtype=np.uint8)  # fully transparent black
    ok, encoded = cv2.imencode(".png", bgra)
    assert ok
    image = decode_image_bytes(encoded.tobytes())
    assert image.shape == (20, 30, 3)
    assert (image == 255).all()


def test_load_image_missing_file(tmp_path):
    with pytest.raises(DecodeError):
        load_image(tmp_path / "missing.png")


def test_load_image_zero_byte_file(tmp_path):
    empty = tmp_path / "empty.png"
    empty.write_bytes(b"")
    with pytest.raises(DecodeError):
        load_image(empty)


def test_load_image_enforces_byte_cap(tmp_path, monkeypatch):
    path = write_png(tmp_path / "sig.png", draw_signature("wave"))
    monkeypatch.setattr(preprocessing, "MAX_IMAGE_BYTES", 10)
    with pytest.raises(ImageTooLargeError):
        load_image(path)


def test_decode_enforces_pixel_cap(monkeypatch):
    ok, encoded = cv2.imencode(".png", draw_signature("wave"))
    assert ok
    monkeypatch.setattr(preprocessing, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(ImageTooLargeError):
        decode_image_bytes(encoded.tobytes())


def test_scratch_image_is_removed_even_on_error():
    with pytest.raises(RuntimeError):
        with scratch_image(draw_signature("wave")) as path:
            assert path.exists()
            raise RuntimeError("boom")
    assert not path.exists()


def test_extract_signature_to_file(tmp_path):
    page = np.full((800, 1000), 255, dtype=np.uint8)
    page[640:, 700:] = cv2.resize(draw_signature("zigzag"), (300, 160))
    source = write_png(tmp_path / "prescription.png", page)

    output = extract_signature_to_file(source, tmp_path / "out" / "signature.png")

    assert output.exists()
    assert load_image(output).shape[:2] == (200, 500)


def test_pixel_cap_is_checked_before_decoding(monkeypatch):
    ok, encoded = cv2.imencode(".png", np.full((100, 100), 255, dtype=np.uint8))
    assert ok

    def refuse_to_decode(*args, **kwargs):
        raise AssertionError("image was decoded")

    monkeypatch.setattr(preprocessing, "MAX_IMAGE_PIXELS", 1000)
    monkeypatch.setattr(preprocessing.cv2, "imdecode", refuse_to_decode)
    with pytest.raises(ImageTooLargeError):
        decode_image_bytes(encoded.tobytes(), source="bomb.png")
