"""Public APIs for batch conversion into a Markdown archive."""

from __future__ import annotations

from .archive import build_archive
from .categories import classify, requires_credential
from .config import (
    BatchConfig,
    ConfigOverrides,
    LoadResult,
    TranscriptionSettings,
    load_config,
)
from .converters import build_default_registry
from .errors import (
    ArchiveAssemblyError,
    BatchCancelledError,
    BatchConfigError,
    BatchValidationError,
    ConversionFailure,
    CredentialRequiredError,
    InvalidInputShapeError,
    MarkpackError,
    UnsupportedTypeError,
    ValidationError,
)
from .models import (
    Category,
    ConversionOptions,
    ConversionRequest,
    ConversionResult,
    ConverterOutput,
    ImageAsset,
    ItemKind,
    PageResult,
)
from .orchestrator import convert_many, convert_one
from .pipeline import BatchArchive, BatchItem, convert_batch
from .registry import ConversionContext, ConverterRegistry
from .service import TranscriptionService

__all__ = [
    "build_archive",
    "classify",
    "requires_credential",
    "BatchConfig",
    "ConfigOverrides",
    "LoadResult",
    "TranscriptionSettings",
    "load_config",
    "build_default_registry",
    "ArchiveAssemblyError",
    "BatchCancelledError",
    "BatchConfigError",
    "BatchValidationError",
    "ConversionFailure",
    "CredentialRequiredError",
    "InvalidInputShapeError",
    "MarkpackError",
    "UnsupportedTypeError",
    "ValidationError",
    "Category",
    "ConversionOptions",
    "ConversionRequest",
    "ConversionResult",
    "ConverterOutput",
    "ImageAsset",
    "ItemKind",
    "PageResult",
    "convert_many",
    "convert_one",
    "BatchArchive",
    "BatchItem",
    "convert_batch",
    "ConversionContext",
    "ConverterRegistry",
    "TranscriptionService",
]
