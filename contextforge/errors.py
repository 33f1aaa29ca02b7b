"""Exception types raised by the context assembly engine."""

from __future__ import annotations


class ContextForgeError(Exception):
    """Base class for all ContextForge errors."""


class ConfigurationError(ContextForgeError, ValueError):
    """Invalid build configuration (unknown method, strategy or option)."""


class InputShapeError(ContextForgeError, TypeError):
    """Input record has the wrong shape (character, message fields)."""


class CacheOperationError(ContextForgeError):
    """A compressor failed while reading or writing the result cache."""
