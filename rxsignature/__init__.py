"""
rxsignature - Prescription Signature Verification
Perceptual-hash + pixel-similarity matching of prescription signatures against
a small set of enrolled doctor signatures.
"""

from .exceptions import (
    SignatureVerificationError, DecodeError, ImageTooLargeError, EmptyReferenceSetError,
    LengthMismatchError, DuplicateIdentifierError, StoreError,
)
from .models import (
    DocumentType, ReferenceSignature, MatchedReference, SimilarityResult,
    VerificationVerdict, VerificationSettings, EnrollmentMetadata,
)
from .signature_verifier import (
    verify_prescription_signature, enroll_reference_signature, load_reference_set,
)

__version__ = "1.0.0"
__all__ = [
    'verify_prescription_signature', 'enroll_reference_signature', 'load_reference_set',
    'DocumentType', 'ReferenceSignature', 'MatchedReference', 'SimilarityResult',
    'VerificationVerdict', 'VerificationSettings', 'EnrollmentMetadata',
    'SignatureVerificationError', 'DecodeError', 'ImageTooLargeError', 'EmptyReferenceSetError',
    'LengthMismatchError', 'DuplicateIdentifierError', 'StoreError',
]
