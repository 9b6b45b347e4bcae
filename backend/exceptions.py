"""Typed exception hierarchy. Every error NeuralForge can raise."""

from typing import Optional


class NeuralForgeError(Exception):
    """Base exception for all NeuralForge errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(NeuralForgeError):
    """A required credential or setting is missing. Raised before any network call."""
    pass


class GenerationError(NeuralForgeError):
    """The generation endpoint failed or returned nothing usable."""
    pass


class ParsingError(GenerationError):
    """The model reply did not contain a parseable `projects` payload."""
    def __init__(self, message: str, raw_text: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.raw_text = raw_text


class PublishError(NeuralForgeError):
    """Creating the repository or committing files to it failed.

    The message is shown to the user as-is.
    """
    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
