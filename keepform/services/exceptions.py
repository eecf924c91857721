# keepform/services/exceptions.py
"""
Shared exception types.

This module has no imports from the rest of the package so that models,
processors and services can all depend on it.
"""


class KeepformError(Exception):
    """Base class for all Keepform errors."""

    pass


class UnsupportedFormatError(KeepformError):
    """Raised when a file extension is not one of the recognized kinds."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Unsupported file format: {filename}")


class FormatMismatchError(KeepformError):
    """Raised by a codec when the byte stream belongs to another family."""

    pass


class ConversionError(KeepformError):
    """Raised when legacy/modern conversion through the office suite fails."""

    pass


class DocumentSerializationError(KeepformError):
    """Raised when the translated document cannot be written back to bytes."""

    pass


class TranslationBackendError(KeepformError):
    """Raised when the translation backend fails or answers malformed."""

    pass


class TranslationAlignmentError(KeepformError):
    """Raised when a batch keeps coming back with the wrong item count."""

    def __init__(self, expected: int, actual: int, attempts: int):
        self.expected = expected
        self.actual = actual
        self.attempts = attempts
        super().__init__(
            f"Translation count mismatch: expected {expected}, got {actual} "
            f"after {attempts} attempts"
        )
