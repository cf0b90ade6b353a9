"""Exception hierarchy for rxsignature.

Every error raised on purpose by the package derives from
SignatureVerificationError so callers can map the whole family at once.
"""


class SignatureVerificationError(Exception):
    """Base class for all rxsignature errors."""


class DecodeError(SignatureVerificationError):
    """Image could not be read or decoded. Aborts the operation."""


class ImageTooLargeError(DecodeError):
    """Image exceeds the configured byte or pixel cap."""


class EmptyReferenceSetError(SignatureVerificationError):
    """Verification was requested against an empty reference set.

    This is a misconfiguration, distinct from a genuine non-match.
    """


class LengthMismatchError(SignatureVerificationError, ValueError):
    """Two fingerprints of different length were compared."""


class DuplicateIdentifierError(SignatureVerificationError):
    """A reference signature with this identifier is already enrolled."""

    def __init__(self, identifier: str):
        super().__init__(f"Reference signature already enrolled: {identifier}")
        self.identifier = identifier


class StoreError(SignatureVerificationError):
    """The reference-set store is unreadable, corrupt or not writable."""
