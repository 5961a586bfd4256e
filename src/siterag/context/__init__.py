"""Context caching and prompt assembly."""

from .assembler import AssembledContext, AssemblerConfig, ContextAssembler
from .cache import ContextCache
from .templates import DEFAULT_TEMPLATE, render_template

__all__ = [
    "AssembledContext",
    "AssemblerConfig",
    "ContextAssembler",
    "ContextCache",
    "DEFAULT_TEMPLATE",
    "render_template",
]
