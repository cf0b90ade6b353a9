"""Preprocessing module for rxsignature

This module contains all image handling that happens before scoring:
- Image loading/decoding with size caps
- Document classification (full prescription vs. isolated signature)
- Signature region extraction (bottom-right crop)
- Canonical preprocessing (letterbox, greyscale, contrast stretch, binarize)
- Scratch files for intermediate images

Enrollment and verification both go through preprocess(); it is the single
code path that defines what a reference image and a candidate look like.
"""

from __future__ import annotations
import io
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union
import cv2
import numpy as np
from PIL import Image

from rxsignature.config import (
    MAX_IMAGE_BYTES, MAX_IMAGE_PIXELS,
    FULL_DOCUMENT_MIN_SIDE, SIGNATURE_REGION_WIDTH_FRACTION, SIGNATURE_REGION_HEIGHT_FRACTION,
    CANVAS_WIDTH, CANVAS_HEIGHT, CANVAS_BACKGROUND, BINARIZATION_THRESHOLD,
    SHRINK_INTERPOLATION, ENLARGE_INTERPOLATION, SIGNATURE_IMAGE_EXTENSION,
)
from rxsignature.exceptions import DecodeError, ImageTooLargeError
from rxsignature.models import DocumentType

PathLike = Union[str, Path]


# ---------------------------------------------------------------------------
# Loading


def decode_image_bytes(data: bytes, source: str = "<bytes>") -> np.ndarray:
    """Decode an encoded image (PNG, JPEG, ...) into a uint8 array.

    Alpha is composited onto white and 16-bit images are scaled to 8 bits,
    so the result is either HxW (greyscale) or HxWx3 (BGR) uint8.

    Args:
        data: Encoded image bytes
        source: Label used in error messages

    Returns:
        Decoded image

    Raises:
        DecodeError: If the bytes are empty or not a decodable image
        ImageTooLargeError: If the encoded or decoded size exceeds the caps
    """
    if not data:
        raise DecodeError(f"Empty image: {source}")
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageTooLargeError(
            f"Image {source} is {len(data)} bytes, limit is {MAX_IMAGE_BYTES}"
        )

    dimensions = _header_dimensions(data, source)
    if dimensions is not None and dimensions[0] * dimensions[1] > MAX_IMAGE_PIXELS:
        raise ImageTooLargeError(
            f"Image {source} is {dimensions[0]}x{dimensions[1]} pixels, limit is {MAX_IMAGE_PIXELS}"
        )

    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    except cv2.error as exc:
        raise DecodeError(f"Unable to decode image {source}: {exc}") from exc
    if image is None or image.size == 0:
        raise DecodeError(f"Unable to decode image: {source}")

    h, w = image.shape[:2]
    if h * w > MAX_IMAGE_PIXELS:
        raise ImageTooLargeError(
            f"Image {source} is {w}x{h} pixels, limit is {MAX_IMAGE_PIXELS}"
        )

    return _to_uint8_bgr_or_grey(image)


def _header_dimensions(data: bytes, source: str) -> Optional[Tuple[int, int]]:
    """(width, height) read from the image header, without decoding pixels.

    Returns None for formats Pillow does not recognise; cv2 then has the last word.
    """
    try:
        with Image.open(io.BytesIO(data)) as header:
            return header.size
    except Image.DecompressionBombError as exc:
        raise ImageTooLargeError(f"Image {source} is too large: {exc}") from exc
    except OSError:
        return None


def load_image(path: PathLike) -> np.ndarray:
    """Load an image file.

    Args:
        path: Path to image file

    Returns:
        Decoded image (uint8, greyscale or BGR)

    Raises:
        DecodeError: If the file is missing, unreadable or not an image
        ImageTooLargeError: If the file exceeds the size caps
    """
    path = Path(path)
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise DecodeError(f"Unable to read image {path}: {exc}") from exc

    # Checked before reading so oversized uploads never reach memory
    if size > MAX_IMAGE_BYTES:
        raise ImageTooLargeError(f"Image {path} is {size} bytes, limit is {MAX_IMAGE_BYTES}")

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Unable to read image {path}: {exc}") from exc

    return decode_image_bytes(data, source=str(path))


def _to_uint8_bgr_or_grey(image: np.ndarray) -> np.ndarray:
    if image.dtype == np.uint16:
        image = (image / 257.0).round().astype(np.uint8)
    elif image.dtype != np.uint8:
        image = cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)

    if image.ndim == 3 and image.shape[2] == 4:
        # Transparent signature scans: flatten onto white paper
        alpha = image[:, :, 3:4].astype(np.float32) / 255.0
        bgr = image[:, :, :3].astype(np.float32)
        image = (bgr * alpha + 255.0 * (1.0 - alpha)).round().astype(np.uint8)
    elif image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]

    return image


def to_greyscale(image: np.ndarray) -> np.ndarray:
    """Return a single-channel uint8 view of the image."""
    if image.ndim == 2:
        return image
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def resize_exact(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize ignoring aspect ratio (force-fill)."""
    h, w = image.shape[:2]
    if (w, h) == (width, height):
        return image
    interpolation = SHRINK_INTERPOLATION if width * height < w * h else ENLARGE_INTERPOLATION
    return cv2.resize(image, (width, height), interpolation=interpolation)


def stretch_contrast(image: np.ndarray) -> np.ndarray:
    """Linearly stretch intensities so min -> 0 and max -> 255.

    A flat image is returned unchanged (there is no range to stretch).
    """
    lo = float(image.min())
    hi = float(image.max())
    if hi <= lo:
        return image.copy()
    stretched = (image.astype(np.float32) - lo) * (255.0 / (hi - lo))
    return np.clip(stretched.round(), 0, 255).astype(np.uint8)


# ---------------------------------------------------------------------------
# Region Extractor


def classify_dimensions(width: int, height: int) -> DocumentType:
    """Classify by size alone: small images are isolated signature crops.

    Full prescriptions are scans/photos; signatures are small crops.
    """
    if width < FULL_DOCUMENT_MIN_SIDE or height < FULL_DOCUMENT_MIN_SIDE:
        return DocumentType.SIGNATURE_ONLY
    return DocumentType.FULL_DOCUMENT


def classify_document_type(image: np.ndarray) -> DocumentType:
    """Decide whether an image is a full prescription or just a signature."""
    h, w = image.shape[:2]
    return classify_dimensions(w, h)


def signature_region_box(width: int, height: int) -> Tuple[int, int, int, int]:
    """Bottom-right signature box of a full document.

    Returns:
        (left, top, region_width, region_height)
    """
    region_width = max(1, int(width * SIGNATURE_REGION_WIDTH_FRACTION))
    region_height = max(1, int(height * SIGNATURE_REGION_HEIGHT_FRACTION))
    return width - region_width, height - region_height, region_width, region_height


def extract_signature_region(image: np.ndarray) -> np.ndarray:
    """Crop the signature area out of a full document.

    SIGNATURE_ONLY images are returned unchanged.
    """
    if classify_document_type(image) is DocumentType.SIGNATURE_ONLY:
        return image

    h, w = image.shape[:2]
    left, top, region_width, region_height = signature_region_box(w, h)
    return image[top:top + region_height, left:left + region_width].copy()


def letterbox(image: np.ndarray,
              width: int = CANVAS_WIDTH,
              height: int = CANVAS_HEIGHT,
              background: int = CANVAS_BACKGROUND) -> np.ndarray:
    """Fit an image inside a fixed canvas, preserving aspect ratio.

    The scaled image is centred and the remaining area is filled with
    ``background``.
    """
    h, w = image.shape[:2]
    scale = min(width / w, height / h)
    new_w = min(width, max(1, int(round(w * scale))))
    new_h = min(height, max(1, int(round(h * scale))))
    interpolation = SHRINK_INTERPOLATION if scale < 1.0 else ENLARGE_INTERPOLATION
    resized = cv2.resize(image, (new_w, new_h), interpolation=interpolation)

    if image.ndim == 2:
        canvas = np.full((height, width), background, dtype=np.uint8)
    else:
        canvas = np.full((height, width, image.shape[2]), background, dtype=np.uint8)

    x0 = (width - new_w) // 2
    y0 = (height - new_h) // 2
    canvas[y0:y0 + new_h, x0:x0 + new_w] = resized
    return canvas


def binarize(image: np.ndarray, threshold: int = BINARIZATION_THRESHOLD) -> np.ndarray:
    """Pixels below ``threshold`` become 0, the rest 255."""
    return np.where(image < threshold, 0, 255).astype(np.uint8)


def preprocess(image: np.ndarray) -> np.ndarray:
    """Normalize a signature image into the canonical representation.

    Pipeline:
    1. Letterbox onto a 500x200 white canvas (aspect ratio preserved)
    2. Greyscale
    3. Contrast stretch (min/max to 0-255)
    4. Binarize at 128

    Args:
        image: Decoded signature image (greyscale or BGR)

    Returns:
        uint8 array of shape (CANVAS_HEIGHT, CANVAS_WIDTH) holding only 0 and 255
    """
    canvas = letterbox(image)
    grey = to_greyscale(canvas)
    return binarize(stretch_contrast(grey))


def normalize_candidate(image: np.ndarray) -> Tuple[DocumentType, np.ndarray]:
    """Classify, crop and preprocess an uploaded image.

    Returns:
        (document_type, preprocessed signature crop)
    """
    document_type = classify_document_type(image)
    region = extract_signature_region(image)
    return document_type, preprocess(region)


# ---------------------------------------------------------------------------
# Writing / scratch files


def save_image(image: np.ndarray, path: PathLike) -> Path:
    """Write an image, creating parent directories.

    Raises:
        OSError: If the image cannot be encoded or written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ok, encoded = cv2.imencode(path.suffix or SIGNATURE_IMAGE_EXTENSION, image)
    if not ok:
        raise OSError(f"Unable to encode image for {path}")
    path.write_bytes(encoded.tobytes())
    return path


@contextmanager
def scratch_image(image: np.ndarray, suffix: str = SIGNATURE_IMAGE_EXTENSION) -> Iterator[Path]:
    """Write an image to a temporary file that is removed on exit.

    The file is deleted even when the body raises.
    """
    temp = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
    temp.close()
    try:
        save_image(image, temp.name)
        yield Path(temp.name)
    finally:
        try:
            os.unlink(temp.name)
        except FileNotFoundError:
            pass


def extract_signature_to_file(prescription_path: PathLike, output_path: PathLike) -> Path:
    """Crop the signature out of a prescription and save it as training data.

    The crop is letterboxed to the canonical canvas but not binarized, so the
    result can be fed to enrollment like any raw signature image.

    Raises:
        DecodeError: If the prescription cannot be decoded
    """
    image = load_image(prescription_path)
    region = extract_signature_region(image)
    return save_image(letterbox(region), output_path)
