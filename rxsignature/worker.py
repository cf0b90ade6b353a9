"""
Worker Functions for ProcessPool
Isolated worker functions for scoring a candidate against large reference sets.

These functions are designed to run in separate processes via ProcessPoolExecutor.
The candidate crop is handed over as a scratch PNG (path), the reference as its
serialized dict, so nothing unpicklable crosses the process boundary.

MULTIPROCESSING STRATEGY:
=========================

- Small reference sets (< PARALLEL_MIN_REFERENCES, the normal single-digit case):
  sequential scoring in SignatureMatcher, no pool overhead.
- Large reference sets with max_workers > 1: one task per reference, results
  collected in reference order, then the caller max-reduces. Outcome is the
  same as sequential scoring, including tie-breaks.
- Each task is bounded by settings.timeout; a task that times out or fails
  is reported as a skipped reference.

"""

from concurrent.futures import ProcessPoolExecutor, TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Dict, List, Sequence

import numpy as np

from rxsignature.logger import log_comparison, log_error
from rxsignature.models import ReferenceSignature, VerificationSettings
from rxsignature.models_serialization import reference_from_dict, reference_to_dict
from rxsignature.preprocessing import scratch_image


def worker_score_reference(
    reference_dict: Dict[str, Any],
    candidate_path: str,
    candidate_fingerprint: str,
    settings: VerificationSettings
) -> Dict[str, Any]:
    """
    Worker function to score one reference against the candidate crop.

    Args:
        reference_dict: Serialized ReferenceSignature (absolute image path)
        candidate_path: Path to the preprocessed candidate PNG
        candidate_fingerprint: Fingerprint of the candidate crop
        settings: Scoring policy

    Returns:
        {
            'success': bool,
            'reference_id': str,
            'result': SimilarityResult or None,
            'error': Optional[str]
        }
    """
    reference_id = reference_dict.get('id', '')
    try:
        from rxsignature.matching import SignatureMatcher
        from rxsignature.preprocessing import load_image, to_greyscale

        reference = reference_from_dict(reference_dict)
        candidate = to_greyscale(load_image(Path(candidate_path)))

        matcher = SignatureMatcher([reference], settings)
        result = matcher.score_reference(reference, candidate, candidate_fingerprint)

        return {
            'success': True,
            'reference_id': reference_id,
            'result': result,
            'error': None
        }

    except Exception as e:
        return {
            'success': False,
            'reference_id': reference_id,
            'result': None,
            'error': f"{type(e).__name__}: {e}"
        }


def score_references_parallel(
    references: Sequence[ReferenceSignature],
    candidate: np.ndarray,
    settings: VerificationSettings
) -> List[tuple]:
    """
    Score a preprocessed candidate against every reference in a ProcessPool.

    Args:
        references: Reference set (order is preserved in the output)
        candidate: Preprocessed candidate crop
        settings: Scoring policy (max_workers, timeout)

    Returns:
        List of (reference, SimilarityResult or None, error or None) in reference order
    """
    from rxsignature.fingerprinting import compute_fingerprint

    candidate_fingerprint = compute_fingerprint(candidate)
    num_workers = min(settings.max_workers, len(references))
    outcomes: List[tuple] = []

    with scratch_image(candidate) as candidate_path:
        executor = ProcessPoolExecutor(max_workers=num_workers)
        try:
            futures = [
                executor.submit(
                    worker_score_reference,
                    reference_to_dict(reference),
                    str(candidate_path),
                    candidate_fingerprint,
                    settings,
                )
                for reference in references
            ]

            for reference, future in zip(references, futures):
                try:
                    payload = future.result(timeout=settings.timeout)
                except FutureTimeoutError as e:
                    future.cancel()
                    log_error(e, context="score_references_parallel (timeout)", reference_id=reference.id)
                    outcomes.append((reference, None, f"timed out after {settings.timeout}s"))
                    continue
                except Exception as e:
                    log_error(e, context="score_references_parallel", reference_id=reference.id)
                    outcomes.append((reference, None, str(e)))
                    continue

                if not payload['success']:
                    log_error(RuntimeError(payload['error']), context="worker_score_reference",
                              reference_id=reference.id)
                    outcomes.append((reference, None, payload['error']))
                    continue

                result = payload['result']
                log_comparison(reference.id, result.confidence, result.is_match, {
                    "hash": f"{result.hash_confidence:.1f}",
                    "pixel": result.pixel_similarity,
                    "distance": result.distance,
                })
                outcomes.append((reference, result, None))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    return outcomes
