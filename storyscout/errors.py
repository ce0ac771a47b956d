"""Exception types shared across the pipeline."""

from __future__ import annotations

from typing import List, Sequence, Tuple


class PipelineError(Exception):
    """Base class for storyscout errors."""


class ConfigError(PipelineError):
    """Raised when settings fail validation."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("Configuration errors: " + "; ".join(self.errors))


class SelectorExhaustedError(PipelineError):
    """Every candidate in a selector chain failed.

    `errors` keeps one `(selector, error)` pair per attempted candidate so the
    caller can see why each fallback was rejected.
    """

    def __init__(self, action: str, errors: Sequence[Tuple[str, BaseException]]):
        self.action = action
        self.errors: List[Tuple[str, BaseException]] = list(errors)
        tried = ", ".join(sel for sel, _ in self.errors) or "<none>"
        super().__init__(f"Unable to {action} selectors: {tried}")


class ResponseContractError(PipelineError):
    """The AI service answered, but not with something we can store."""


class ResponseParseError(ResponseContractError):
    """Content is empty or not JSON."""


class ResponseValidationError(ResponseContractError):
    """Content is JSON but violates the declared schema."""

    def __init__(self, message: str, errors: Sequence[str] = ()):
        self.errors = list(errors)
        super().__init__(message if not self.errors else f"{message}: " + "; ".join(self.errors))
