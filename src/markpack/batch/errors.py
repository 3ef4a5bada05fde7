"""Exception hierarchy for batch conversion."""

from __future__ import annotations

__all__ = [
    "MarkpackError",
    "ValidationError",
    "InvalidInputShapeError",
    "UnsupportedTypeError",
    "BatchValidationError",
    "CredentialRequiredError",
    "ConversionFailure",
    "ConversionTimeoutError",
    "ConversionCancelledError",
    "EmptyConversionError",
    "ArchiveAssemblyError",
    "BatchCancelledError",
    "TranscriptionError",
    "ServiceClosedError",
    "BatchConfigError",
]


class MarkpackError(RuntimeError):
    """Base class for errors raised by the batch pipeline."""


class ValidationError(MarkpackError):
    """Raised when a request is malformed or cannot be converted at all."""


class InvalidInputShapeError(ValidationError):
    """Raised when content has the wrong runtime shape for its converter."""


class UnsupportedTypeError(ValidationError):
    """Raised when no converter is registered for a request."""


class BatchValidationError(ValidationError):
    """Raised when the batch itself cannot be formed (empty or malformed)."""


class CredentialRequiredError(MarkpackError):
    """Raised when an item needs a credential and none was supplied."""


class ConversionFailure(MarkpackError):
    """Raised by converters; always downgraded to a failed result."""


class ConversionTimeoutError(ConversionFailure):
    """Raised when a converter exceeds the per-item timeout."""


class ConversionCancelledError(ConversionFailure):
    """Raised when an item is abandoned because the batch was cancelled."""


class EmptyConversionError(ConversionFailure):
    """Raised when a converter returns no Markdown."""


class ArchiveAssemblyError(MarkpackError):
    """Raised when the archive cannot be serialized."""


class BatchCancelledError(MarkpackError):
    """Raised when a batch is cancelled; no archive is produced."""


class TranscriptionError(ConversionFailure):
    """Raised when the transcription service rejects or fails a request."""


class ServiceClosedError(MarkpackError):
    """Raised when a closed transcription service is used."""


class BatchConfigError(MarkpackError):
    """Raised when configuration parsing or validation fails."""
