"""Fingerprinting module for rxsignature

Perceptual (average) hash of a signature image and the distance/confidence
functions built on it:
- compute_fingerprint: 16x16 mean-threshold hash as 64 lowercase hex chars
- hamming_distance: bit-level distance between two fingerprints
- hash_confidence: piecewise-linear distance -> confidence policy

The hash encodes relative brightness structure, so it tolerates small
translations and noise.
"""

from __future__ import annotations
import string
from pathlib import Path
from typing import Sequence, Union
import numpy as np

from rxsignature.config import (
    FINGERPRINT_SIZE, FINGERPRINT_HEX_LENGTH, DEFAULT_HASH_CONFIDENCE_TABLE, HashConfidenceBand
)
from rxsignature.exceptions import LengthMismatchError
from rxsignature.preprocessing import load_image, resize_exact, to_greyscale

_HEX_DIGITS = frozenset(string.hexdigits)


def compute_fingerprint(image: np.ndarray) -> str:
    """Compute the perceptual hash of an image.

    Algorithm:
    1. Resize to 16x16 ignoring aspect ratio
    2. Greyscale
    3. Mean intensity over all 256 pixels
    4. Bit i = 1 iff pixel i (row-major) is strictly brighter than the mean
    5. Pack bits MSB-first and hex-encode

    Args:
        image: Decoded image (greyscale or BGR)

    Returns:
        64 lowercase hex characters
    """
    small = to_greyscale(resize_exact(image, FINGERPRINT_SIZE, FINGERPRINT_SIZE))
    pixels = small.astype(np.float64).ravel()
    bits = pixels > pixels.mean()
    return np.packbits(bits).tobytes().hex().rjust(FINGERPRINT_HEX_LENGTH, "0")


def fingerprint_file(path: Union[str, Path]) -> str:
    """Load an image file and compute its fingerprint."""
    return compute_fingerprint(load_image(path))


def hamming_distance(hash_a: str, hash_b: str) -> int:
    """Count differing bits between two hex fingerprints.

    Args:
        hash_a: Hex fingerprint
        hash_b: Hex fingerprint of the same length

    Returns:
        Number of differing bits

    Raises:
        LengthMismatchError: If the fingerprints differ in length
        ValueError: If either string is not hexadecimal
    """
    if len(hash_a) != len(hash_b):
        raise LengthMismatchError(
            f"Fingerprints must be of equal length (got {len(hash_a)} and {len(hash_b)})"
        )
    if not hash_a:
        return 0
    # Bare hex digits only: no "0x" prefix, underscores or whitespace
    if not (set(hash_a) | set(hash_b)) <= _HEX_DIGITS:
        raise ValueError(f"Fingerprints must be hexadecimal (got {hash_a!r} and {hash_b!r})")
    return bin(int(hash_a, 16) ^ int(hash_b, 16)).count("1")


def hash_confidence(distance: int,
                    table: Sequence[HashConfidenceBand] = DEFAULT_HASH_CONFIDENCE_TABLE) -> float:
    """Map a Hamming distance onto a 0-100 confidence.

    The first band whose inclusive upper bound covers ``distance`` applies
    ``base - (distance - offset) * slope``. The result is clamped to [0, 100].
    """
    if distance < 0:
        raise ValueError(f"Distance must be non-negative, got {distance}")

    for band in table:
        if band.upper is None or distance <= band.upper:
            score = band.base - (distance - band.offset) * band.slope
            return float(min(100.0, max(0.0, score)))

    return 0.0
