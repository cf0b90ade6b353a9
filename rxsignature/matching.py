"""Matching module for rxsignature

This module contains:
- pixel_similarity: MSE-based pixel agreement on a normalized 200x200 grid
- compare: weighted hash + pixel confidence between two preprocessed images
- SignatureMatcher: one-to-many verification against an enrolled reference set
- verify_against_set: functional entry point around SignatureMatcher

"""

from __future__ import annotations
import math
from typing import List, Optional, Sequence, Tuple
import numpy as np

from rxsignature.config import (
    PIXEL_GRID_SIZE, MAX_PIXEL_MSE, MATCH_METHOD, MINIMUM_REFERENCES_RECOMMENDED
)
from rxsignature.exceptions import EmptyReferenceSetError
from rxsignature.fingerprinting import compute_fingerprint, hamming_distance, hash_confidence
from rxsignature.logger import log_comparison, log_error, log_verification, log_warning
from rxsignature.models import (
    MatchedReference, ReferenceSignature, SimilarityResult, VerificationSettings, VerificationVerdict
)
from rxsignature.preprocessing import load_image, normalize_candidate, resize_exact, stretch_contrast, to_greyscale

# (reference, result or None, error message or None)
ScoredReference = Tuple[ReferenceSignature, Optional[SimilarityResult], Optional[str]]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Scoring primitives


def pixel_grid(image: np.ndarray, size: int = PIXEL_GRID_SIZE) -> np.ndarray:
    """Force-resize to size x size, greyscale and contrast-stretch."""
    return stretch_contrast(to_greyscale(resize_exact(image, size, size)))


def pixel_similarity(image_a: np.ndarray, image_b: np.ndarray) -> int:
    """Pixel-level similarity between two images.

    Both images are forced to 200x200, converted to greyscale and
    contrast-normalized; the mean squared error over all pixel pairs is then
    mapped to ``round((1 - min(MSE / 65025, 1)) * 100)``.

    Returns:
        Integer similarity in [0, 100]
    """
    grid_a = pixel_grid(image_a).astype(np.float64)
    grid_b = pixel_grid(image_b).astype(np.float64)
    mse = float(np.mean((grid_a - grid_b) ** 2))
    return round_half_up((1.0 - min(mse / MAX_PIXEL_MSE, 1.0)) * 100.0)


def compare(image_a: np.ndarray,
            image_b: np.ndarray,
            settings: Optional[VerificationSettings] = None,
            *,
            fingerprint_a: Optional[str] = None,
            fingerprint_b: Optional[str] = None) -> SimilarityResult:
    """Score two preprocessed images against each other.

    confidence = round(hash_confidence * hash_weight + pixel_similarity * pixel_weight)

    Args:
        image_a: First image (typically the reference)
        image_b: Second image (typically the candidate crop)
        settings: Scoring policy (defaults if None)
        fingerprint_a: Precomputed fingerprint of image_a, if known
        fingerprint_b: Precomputed fingerprint of image_b, if known

    Returns:
        SimilarityResult with the combined confidence and its components
    """
    if settings is None:
        settings = VerificationSettings()

    hash_a = fingerprint_a or compute_fingerprint(image_a)
    hash_b = fingerprint_b or compute_fingerprint(image_b)
    distance = hamming_distance(hash_a, hash_b)
    hash_score = hash_confidence(distance, settings.hash_table)
    pixel_score = pixel_similarity(image_a, image_b)

    confidence = round_half_up(hash_score * settings.hash_weight + pixel_score * settings.pixel_weight)
    confidence = max(0, min(100, confidence))

    return SimilarityResult(
        confidence=confidence,
        is_match=confidence >= settings.threshold,
        hash_confidence=hash_score,
        pixel_similarity=pixel_score,
        distance=distance,
        method=MATCH_METHOD,
    )


# ---------------------------------------------------------------------------
# SignatureMatcher Class


class SignatureMatcher:
    """One-to-many signature verification against an enrolled reference set.

    Every reference is scored (no early exit), so the reported match is the
    true best and the cost does not depend on enrollment order. References that
    fail to score are logged and skipped.

    Attributes:
        references: Enrolled reference signatures
        settings: Scoring policy
    """

    def __init__(self,
                 references: Sequence[ReferenceSignature],
                 settings: Optional[VerificationSettings] = None) -> None:
        self.references = list(references)
        self.settings = settings or VerificationSettings()

    def score_reference(self, reference: ReferenceSignature, candidate: np.ndarray,
                        candidate_fingerprint: Optional[str] = None) -> SimilarityResult:
        """Compare a preprocessed candidate against one reference.

        The reference is hashed from its image; the stored fingerprint is
        only checked against it.

        Raises:
            DecodeError: If the reference image cannot be loaded
        """
        reference_image = load_image(reference.reference_image_path)
        reference_fingerprint = compute_fingerprint(reference_image)
        if reference_fingerprint != reference.fingerprint:
            log_warning(
                f"Stored fingerprint of reference {reference.id} does not match its image "
                f"(stored={reference.fingerprint}, computed={reference_fingerprint})"
            )
        return compare(
            reference_image,
            candidate,
            self.settings,
            fingerprint_a=reference_fingerprint,
            fingerprint_b=candidate_fingerprint,
        )

    def use_parallel(self) -> bool:
        return (self.settings.max_workers > 1
                and len(self.references) >= self.settings.parallel_min_references)

    def score_all(self, candidate: np.ndarray) -> List[ScoredReference]:
        """Score a preprocessed candidate against every reference, in order."""
        if self.use_parallel():
            from rxsignature.worker import score_references_parallel
            return score_references_parallel(self.references, candidate, self.settings)

        candidate_fingerprint = compute_fingerprint(candidate)
        outcomes: List[ScoredReference] = []
        for reference in self.references:
            try:
                result = self.score_reference(reference, candidate, candidate_fingerprint)
            except Exception as exc:
                log_error(exc, context="score_reference", reference_id=reference.id)
                outcomes.append((reference, None, str(exc)))
                continue
            log_comparison(reference.id, result.confidence, result.is_match, {
                "hash": f"{result.hash_confidence:.1f}",
                "pixel": result.pixel_similarity,
                "distance": result.distance,
            })
            outcomes.append((reference, result, None))
        return outcomes

    def verify_preprocessed(self, candidate: np.ndarray, document_type=None) -> VerificationVerdict:
        """Verify an already preprocessed candidate crop.

        Raises:
            EmptyReferenceSetError: If there is nothing to compare against
        """
        if not self.references:
            raise EmptyReferenceSetError("No reference signatures enrolled; nothing to verify against")

        if len(self.references) < MINIMUM_REFERENCES_RECOMMENDED:
            log_warning(
                f"Only {len(self.references)} reference signatures enrolled "
                f"(recommended: {MINIMUM_REFERENCES_RECOMMENDED})"
            )

        threshold = self.settings.threshold
        best: Optional[Tuple[ReferenceSignature, SimilarityResult]] = None
        scores: List[Tuple[str, int]] = []
        skipped: List[str] = []

        for reference, result, _ in self.score_all(candidate):
            if result is None:
                skipped.append(reference.id)
                continue
            scores.append((reference.id, result.confidence))
            # Strictly greater: ties keep the earliest reference
            if best is None or result.confidence > best[1].confidence:
                best = (reference, result)

        if best is None:
            log_verification("REJECTED", 0, None, {"threshold": threshold, "skipped": len(skipped)})
            return VerificationVerdict(
                verified=False,
                confidence=0,
                matched_reference=None,
                detail="No reference signature could be scored against the candidate",
                threshold=threshold,
                method=MATCH_METHOD,
                document_type=document_type,
                scores=tuple(scores),
                skipped=tuple(skipped),
            )

        reference, result = best
        matched = MatchedReference(id=reference.id, name=reference.display_name)
        verified = result.confidence >= threshold

        if verified:
            detail = f"Signature matched with {result.confidence}% confidence (threshold: {threshold:g}%)"
        else:
            detail = (
                f"Signature does not match any enrolled reference. "
                f"Best match: {result.confidence}% (required: {threshold:g}%+)"
            )

        log_verification("ACCEPTED" if verified else "REJECTED", result.confidence, reference.id, {
            "threshold": f"{threshold:g}",
            "scored": len(scores),
            "skipped": len(skipped),
            "document_type": document_type.value if document_type else None,
        })

        return VerificationVerdict(
            verified=verified,
            confidence=result.confidence,
            matched_reference=matched,
            detail=detail,
            threshold=threshold,
            method=result.method,
            document_type=document_type,
            scores=tuple(scores),
            skipped=tuple(skipped),
        )

    def verify(self, candidate_image: np.ndarray) -> VerificationVerdict:
        """Classify, crop, preprocess and verify a decoded upload.

        Raises:
            EmptyReferenceSetError: If there is nothing to compare against
        """
        if not self.references:
            raise EmptyReferenceSetError("No reference signatures enrolled; nothing to verify against")

        document_type, candidate = normalize_candidate(candidate_image)
        return self.verify_preprocessed(candidate, document_type)


def verify_against_set(candidate_image: np.ndarray,
                       reference_set: Sequence[ReferenceSignature],
                       settings: Optional[VerificationSettings] = None) -> VerificationVerdict:
    """Verify a decoded upload against every reference and pick the best.

    Raises:
        EmptyReferenceSetError: If reference_set is empty
    """
    return SignatureMatcher(reference_set, settings).verify(candidate_image)
