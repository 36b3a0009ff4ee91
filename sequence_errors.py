# sequence_errors.py

from typing import Any, Dict, List, Optional


class SequenceError(Exception):
    """Base class for every error raised while loading or running a sequence."""


class ConfigError(SequenceError):
    """The config document failed validation. `issues` holds every problem found."""

    def __init__(self, message: str, issues: Optional[List[Any]] = None):
        super().__init__(message)
        self.issues = issues or []


class ResponseReferenceError(SequenceError):
    """A `{{ .responses.ID.path }}` placeholder could not be resolved."""


class ResponseValidationError(SequenceError):
    """A response failed a validation rule. `results` carries every rule result computed so far."""

    def __init__(self, message: str, results: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.results = results or []


class TransportError(SequenceError):
    """The HTTP call did not produce a response (timeout, DNS or connection failure)."""

    def __init__(self, message: str, duration: float = 0.0):
        super().__init__(message)
        self.duration = duration


class InputUnavailableError(SequenceError):
    """A node needs user input but no collector can supply it."""
