"""Document normalization pipeline."""

from .service import (
    DocumentNormalizer,
    IngestionError,
    LangChainDocumentNormalizer,
    NormalizerConfig,
    UnsupportedDocumentError,
    classify,
    normalize_path,
    strip_rtf,
)

__all__ = [
    "DocumentNormalizer",
    "IngestionError",
    "LangChainDocumentNormalizer",
    "NormalizerConfig",
    "UnsupportedDocumentError",
    "classify",
    "normalize_path",
    "strip_rtf",
]
