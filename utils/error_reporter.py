# error_reporter.py
import logging
from typing import Optional

from models.matrix_models import ErrorReport
from utils.json_debug_utils import ParseDiagnostics, suggest_json_fixes
from utils.json_errors import (
    CompositeParseError,
    FormatError,
    GenerationFailedError,
    SchemaError,
)

logger = logging.getLogger(__name__)

TRUNCATED_RESPONSE = "truncated-response"
MALFORMED_QUOTING = "malformed-quoting"
MISSING_BRACKETS = "missing-brackets"
NON_JSON_RESPONSE = "non-JSON-response"
MISSING_FIELDS = "missing-fields"
GENERATION_FAILED = "generation-failed"
UNKNOWN = "unknown"

HINTS = {
    TRUNCATED_RESPONSE: (
        "The AI response was incomplete. This may be due to token limits. "
        "Please try with a smaller configuration or increase the max tokens setting."
    ),
    MALFORMED_QUOTING: (
        "The AI response contains malformed JSON with unescaped quotes or incomplete strings. "
        "This is a common AI generation issue."
    ),
    MISSING_BRACKETS: (
        "The AI response is missing closing brackets/braces. "
        "This usually happens when the response is truncated."
    ),
    NON_JSON_RESPONSE: "The AI did not return valid JSON format. Please check your AI configuration and try again.",
    MISSING_FIELDS: "The AI response is missing required fields. Please try again.",
    UNKNOWN: (
        "The AI response could not be parsed even after multiple repair attempts. "
        "The response may be severely malformed."
    ),
}

FALLBACK_SUGGESTION = "Generate a basic matrix template instead"
TOKEN_SUGGESTION = "Increase the max tokens setting in the AI configuration"


def _is_truncated(error: CompositeParseError, diagnostics: ParseDiagnostics) -> bool:
    if diagnostics.unclosed_string and diagnostics.missing_closers:
        return True
    primary = error.primary_failure
    if primary is None or primary.position is None or not diagnostics.missing_closers:
        return False
    # The parser ran out of text rather than hitting a bad token.
    return primary.position >= error.text_length - 1


def _categorize_parse_failure(error: CompositeParseError) -> str:
    diagnostics = error.diagnostics or ParseDiagnostics()
    primary_message = error.primary_failure.message.lower() if error.primary_failure else ""

    if _is_truncated(error, diagnostics):
        return TRUNCATED_RESPONSE
    if ("unterminated string" in primary_message
            or "enclosed in double quotes" in primary_message
            or diagnostics.single_quotes
            or diagnostics.unmatched_quotes):
        return MALFORMED_QUOTING
    if diagnostics.missing_closers:
        return MISSING_BRACKETS
    return UNKNOWN


def classify_error(exc: Exception) -> ErrorReport:
    """
    Turn a pipeline failure into a user-facing report.

    Args:
        exc (Exception): FormatError, CompositeParseError, SchemaError or GenerationFailedError

    Returns:
        ErrorReport: Category, fixed remediation hint and diagnostic-driven suggestions
    """
    if isinstance(exc, GenerationFailedError):
        return describe_generation_failure(exc.upstream_error or str(exc))

    suggestions = []
    if isinstance(exc, FormatError):
        category = NON_JSON_RESPONSE
    elif isinstance(exc, SchemaError):
        category = MISSING_FIELDS
    elif isinstance(exc, CompositeParseError):
        category = _categorize_parse_failure(exc)
        if exc.diagnostics is not None:
            primary_message = exc.primary_failure.message if exc.primary_failure else ""
            suggestions.extend(suggest_json_fixes(exc.diagnostics, primary_message))
    else:
        category = UNKNOWN

    suggest_token_increase = category == TRUNCATED_RESPONSE
    if suggest_token_increase:
        suggestions.insert(0, TOKEN_SUGGESTION)
    suggestions.append(FALLBACK_SUGGESTION)

    logger.warning(f"Classified response failure as {category}: {exc}")
    return ErrorReport(
        category=category,
        message=f"Failed to parse AI response. {HINTS[category]}",
        hint=HINTS[category],
        suggestions=suggestions,
        suggest_token_increase=suggest_token_increase,
        fallback_available=True,
    )


def describe_generation_failure(error: Optional[str]) -> ErrorReport:
    """Classify an upstream generation error string (API key, model, service, network, timeout)."""
    error = error or ""
    lowered = error.lower()

    if "api key" in lowered:
        hint = "Invalid API key. Please check your AI configuration."
    elif "not found" in lowered or "404" in lowered:
        hint = "AI model not found. Please check your model configuration."
    elif "not running" in lowered or "localhost" in lowered:
        hint = "AI service not running. Please ensure your AI service is started."
    elif "fetch" in lowered or "network" in lowered:
        hint = "Network error. Please check your internet connection and AI service."
    elif "timeout" in lowered or "timed out" in lowered:
        hint = "Request timed out. Please try again or check your AI service."
    elif error:
        hint = f"AI generation failed: {error}"
    else:
        hint = "Failed to generate matrix. Please check your AI configuration."

    logger.warning(f"Upstream generation failed: {error or '<no error message>'}")
    return ErrorReport(
        category=GENERATION_FAILED,
        message=hint,
        hint=hint,
        suggestions=[FALLBACK_SUGGESTION],
        suggest_token_increase=False,
        fallback_available=True,
    )
