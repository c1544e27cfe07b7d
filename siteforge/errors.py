from __future__ import annotations

from typing import Any, Dict, List, Optional


class SiteforgeError(Exception):
    """Base class for every error raised by the site pipeline."""


class GenerationParseError(SiteforgeError):
    """The LLM response could not be turned into a JSON object.

    ``raw_text`` keeps the offending response for diagnosis.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class InvalidGenerationError(SiteforgeError):
    """The parsed response is missing the ``data``/``config`` envelope."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class LLMUnavailableError(SiteforgeError):
    """No credentials are configured for the model provider."""


class LLMRequestError(SiteforgeError):
    """The model provider answered with a transport or HTTP error."""


class ConfigEvaluationError(SiteforgeError):
    """A module-source config could not be turned into a live object."""

    def __init__(self, message: str, location: str = "config") -> None:
        super().__init__(message)
        self.location = location


class JSSyntaxError(SiteforgeError):
    def __init__(self, message: str, position: int = -1) -> None:
        super().__init__(message)
        self.position = position


class JSRuntimeError(SiteforgeError):
    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


class SandboxError(SiteforgeError):
    """A sandbox provider operation failed."""
