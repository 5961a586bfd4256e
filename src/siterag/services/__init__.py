"""Service layer orchestrations for SiteRAG."""

from .chat import APOLOGY_ANSWER, ChatReply, ChatService
from .citations import extract_citation
from .generation import (
    UNAVAILABLE_ANSWER,
    GenerationBackend,
    GenerationConfig,
    GenerationError,
    OpenAIGenerator,
    TemplateGenerator,
    UnrecognizedOutputError,
    build_generator,
)

__all__ = [
    "APOLOGY_ANSWER",
    "ChatReply",
    "ChatService",
    "GenerationBackend",
    "GenerationConfig",
    "GenerationError",
    "OpenAIGenerator",
    "TemplateGenerator",
    "UNAVAILABLE_ANSWER",
    "UnrecognizedOutputError",
    "build_generator",
    "extract_citation",
]
