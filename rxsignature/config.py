"""Configuration file for rxsignature

This module contains all configurable parameters for the prescription signature
verification core.

Modify these values to tune the system behavior without changing the core code.
Values marked (env) can also be overridden with RXSIG_* environment variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import cv2

# ============================================================================
# FILE PATHS
# ============================================================================

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ============================================================================
# INPUT LIMITS
# ============================================================================

# Uploads above either cap are rejected before any processing
MAX_IMAGE_BYTES: int = 20 * 1024 * 1024  # 20MB on disk
MAX_IMAGE_PIXELS: int = 40_000_000  # ~40 megapixels once decoded

# ============================================================================
# REGION EXTRACTION
# ============================================================================

# Images narrower or shorter than this are treated as an isolated signature
# crop; anything at least this large on both sides is a full prescription scan.
FULL_DOCUMENT_MIN_SIDE: int = 600

# Signatures sit bottom-right on prescription pads
SIGNATURE_REGION_WIDTH_FRACTION: float = 0.3
SIGNATURE_REGION_HEIGHT_FRACTION: float = 0.2

# ============================================================================
# PREPROCESSING
# ============================================================================

# Canonical signature canvas (width, height), letterboxed on white
CANVAS_WIDTH: int = 500
CANVAS_HEIGHT: int = 200
CANVAS_BACKGROUND: int = 255

# Luminance threshold: below -> black, at/above -> white
BINARIZATION_THRESHOLD: int = 128

# Interpolation used whenever an image is shrunk / enlarged
SHRINK_INTERPOLATION: int = cv2.INTER_AREA
ENLARGE_INTERPOLATION: int = cv2.INTER_LINEAR

# ============================================================================
# FINGERPRINT (perceptual average hash)
# ============================================================================

FINGERPRINT_SIZE: int = 16  # 16x16 grid -> 256 bits
FINGERPRINT_BITS: int = FINGERPRINT_SIZE * FINGERPRINT_SIZE
FINGERPRINT_HEX_LENGTH: int = FINGERPRINT_BITS // 4  # 64 hex chars


@dataclass(frozen=True)
class HashConfidenceBand:
    """One linear piece of the hash-distance -> confidence mapping.

    A distance d falling in this band maps to ``base - (d - offset) * slope``.
    ``upper`` is the inclusive upper distance bound; None marks the open last band.
    """
    upper: Optional[int]
    base: float
    slope: float
    offset: int


# Tuned for a 256-bit hash:
# 0-10: very similar (95-100), 11-20: similar (85-94),
# 21-30: somewhat similar (70-84), 31+: different (<70)
DEFAULT_HASH_CONFIDENCE_TABLE: Tuple[HashConfidenceBand, ...] = (
    HashConfidenceBand(upper=10, base=100.0, slope=0.5, offset=0),
    HashConfidenceBand(upper=20, base=95.0, slope=1.0, offset=10),
    HashConfidenceBand(upper=30, base=85.0, slope=1.5, offset=20),
    HashConfidenceBand(upper=None, base=70.0, slope=2.0, offset=30),
)

# ============================================================================
# PIXEL SIMILARITY
# ============================================================================

PIXEL_GRID_SIZE: int = 200  # Both images forced to 200x200
MAX_PIXEL_MSE: float = 255.0 * 255.0  # 65025

# ============================================================================
# MATCHING CONFIGURATION
# ============================================================================

# Hash vs pixel weighting (must sum to 1.0). Pixel agreement is the more
# reliable signal for short, stylized handwriting.
HASH_WEIGHT: float = float(os.environ.get("RXSIG_HASH_WEIGHT", "0.2"))  # (env)
PIXEL_WEIGHT: float = float(os.environ.get("RXSIG_PIXEL_WEIGHT", "0.8"))  # (env)

# Acceptance threshold on the 0-100 combined confidence
STRICT_MATCH_THRESHOLD: float = float(os.environ.get("RXSIG_MATCH_THRESHOLD", "78"))  # (env)

# Below this many enrolled references the verdict is still produced, with a warning
MINIMUM_REFERENCES_RECOMMENDED: int = 3

MATCH_METHOD: str = "strict_perceptual_hash_and_pixel_similarity"

# ============================================================================
# MULTIPROCESSING
# ============================================================================

# Reference sets at least this large are scored in a ProcessPool
PARALLEL_MIN_REFERENCES: int = 20
MAX_WORKERS: int = int(os.environ.get("RXSIG_MAX_WORKERS", "1"))  # (env) 1 = always sequential

# Worker timeout
VERIFY_TIMEOUT: float = 30.0  # seconds per reference comparison

# ============================================================================
# REFERENCE STORE
# ============================================================================

# "json" (flat JSON array) or "database" (SQLCipher)
STORE_BACKEND: str = os.environ.get("RXSIG_STORE_BACKEND", "json")  # (env)
STORE_PATH = Path(os.environ.get("RXSIG_STORE_PATH", PROJECT_ROOT / "trained-signatures.json"))  # (env)
DB_PATH = Path(os.environ.get("RXSIG_DB_PATH", PROJECT_ROOT / "reference_signatures.db"))  # (env)
DB_KEY_FILE = PROJECT_ROOT / ".db_key"
SIGNATURE_IMAGE_DIRNAME: str = "signatures"  # next to the store file
SIGNATURE_IMAGE_EXTENSION: str = ".png"

# ============================================================================
# LOGGING
# ============================================================================

LOG_DIR = Path(os.environ.get("RXSIG_LOG_DIR", PROJECT_ROOT / "logs"))  # (env)
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
LOG_BACKUP_COUNT = 5  # Keep 5 backup files
VERBOSE: bool = os.environ.get("RXSIG_VERBOSE", "1") not in ("0", "false", "False", "")  # (env)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_config():
    """Validate configuration consistency."""
    errors = []

    weight_sum = HASH_WEIGHT + PIXEL_WEIGHT
    if not (0.99 <= weight_sum <= 1.01):
        errors.append(f"HASH_WEIGHT + PIXEL_WEIGHT must sum to 1.0 (got {weight_sum})")

    if not (0.0 <= STRICT_MATCH_THRESHOLD <= 100.0):
        errors.append(f"STRICT_MATCH_THRESHOLD must be in [0, 100] (got {STRICT_MATCH_THRESHOLD})")

    if FINGERPRINT_HEX_LENGTH * 4 != FINGERPRINT_BITS:
        errors.append(f"FINGERPRINT_SIZE must give a bit count divisible by 4 (got {FINGERPRINT_BITS})")

    if STORE_BACKEND not in ("json", "database"):
        errors.append(f"STORE_BACKEND must be 'json' or 'database' (got {STORE_BACKEND!r})")

    if MAX_WORKERS < 1:
        errors.append(f"MAX_WORKERS must be >= 1 (got {MAX_WORKERS})")

    errors.extend(validate_hash_table(DEFAULT_HASH_CONFIDENCE_TABLE))

    if errors:
        raise ValueError("Configuration validation failed:\n" + "\n".join(errors))


def validate_hash_table(table) -> list:
    """Return a list of problems with a hash confidence table (empty if valid)."""
    errors = []
    if not table:
        return ["hash confidence table must not be empty"]
    bounds = [band.upper for band in table]
    if bounds[-1] is not None:
        errors.append("last hash confidence band must be open-ended (upper=None)")
    closed = bounds[:-1]
    if any(b is None for b in closed):
        errors.append("only the last hash confidence band may be open-ended")
    elif closed != sorted(closed) or len(set(closed)) != len(closed):
        errors.append(f"hash confidence band bounds must be strictly ascending (got {closed})")
    return errors


# Run validation on import
validate_config()
