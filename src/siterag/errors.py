"""Exceptions shared between the generation backends and the streaming transport."""


class GenerationError(RuntimeError):
    """Raised when the language-model backend fails or is unreachable."""


class UnrecognizedOutputError(GenerationError):
    """Raised when the backend returns an envelope we do not know how to read."""
