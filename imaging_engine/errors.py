"""
errors.py - Exception types for the few hard failures in the engine.

Most problems (a corrupt file, an image without pixel data, an uncertain
identity verdict) are returned as result objects and collected.  Only the
conditions below are raised.
"""


class ImagingError(Exception):
    """Base class for all imaging engine errors."""


class StructuralParseError(ImagingError):
    """The binary container could not be decoded as a DICOM dataset."""


class StorageError(ImagingError):
    """A byte-store write failed after every retry attempt."""


class BatchExhaustedError(ImagingError):
    """Every file in an upload batch failed to parse or store."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class StudyNotFoundError(ImagingError, LookupError):
    """No stored study matches the requested identifier."""
