# json_errors.py
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


class MatrixResponseError(Exception):
    """Base class for every error raised while turning an AI response into a matrix."""


class FormatError(MatrixResponseError):
    """The normalized response text does not look like JSON at all."""


class StrategyFailure:
    """One failed parsing attempt, kept for reporting."""

    def __init__(self, strategy_index: int, strategy_name: str, message: str,
                 position: Optional[int] = None):
        self.strategy_index = strategy_index
        self.strategy_name = strategy_name
        self.message = message
        self.position = position

    def to_dict(self):
        return {
            "strategy_index": self.strategy_index,
            "strategy_name": self.strategy_name,
            "message": self.message,
            "position": self.position,
        }

    def __repr__(self):
        return f"StrategyFailure({self.strategy_index}, {self.strategy_name!r}, {self.message!r})"


class CompositeParseError(MatrixResponseError):
    """
    Raised when every repair strategy failed to produce parseable JSON.
    Carries all underlying failures plus the diagnostic fact set of the text.
    """

    def __init__(self, failures: List[StrategyFailure], diagnostics, text_length: int = 0):
        self.failures = list(failures)
        self.diagnostics = diagnostics
        self.text_length = text_length
        primary = self.failures[0].message if self.failures else "no strategies were attempted"
        super().__init__(
            f"All JSON parsing strategies failed ({len(self.failures)} attempts). "
            f"Direct parse error: {primary}"
        )

    @property
    def primary_failure(self) -> Optional[StrategyFailure]:
        return self.failures[0] if self.failures else None


class SchemaError(MatrixResponseError):
    """The parsed value lacks a field the matrix schema requires."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"AI response missing required field: {field}")


class GenerationFailedError(MatrixResponseError):
    """The upstream AI generation call reported failure or returned nothing usable."""

    def __init__(self, message: str, upstream_error: Optional[str] = None):
        super().__init__(message)
        self.upstream_error = upstream_error


class CellDefaultingWarning(UserWarning):
    """A cell was missing a field and received a default value. Never aborts the pipeline."""
