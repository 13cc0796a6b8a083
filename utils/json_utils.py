# json_utils.py
import re
import logging
from typing import Dict, Any, Optional, List, Tuple

from utils.json_errors import FormatError, SchemaError

logger = logging.getLogger(__name__)

# --- Constants for JSON parsing ---
JSON_OBJECT_START = '{'
JSON_OBJECT_END = '}'
JSON_ARRAY_START = '['
JSON_ARRAY_END = ']'
JSON_STRING_DELIMITER = '"'
JSON_SINGLE_QUOTE = "'"
JSON_ESCAPE_CHAR = '\\'

CLOSER_FOR = {JSON_OBJECT_START: JSON_OBJECT_END, JSON_ARRAY_START: JSON_ARRAY_END}
OPENER_FOR = {JSON_OBJECT_END: JSON_OBJECT_START, JSON_ARRAY_END: JSON_ARRAY_START}

# Characters that may legally follow the closing quote of a key or value
STRING_TERMINATORS = (',', '}', ']', ':')

_FENCE_BLOCK_RE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\r?\n?([\s\S]*?)\s*```")
_LEADING_FENCE_RE = re.compile(r"^```[ \t]*[A-Za-z0-9_+-]*[ \t]*\r?\n?")
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")
_KEY_BEFORE_RE = re.compile(r'"((?:\\.|[^"\\])*)"\s*:\s*$')
_KEY_LOOKBACK = 300


# --- InputNormalizer ---

def extract_json_from_markdown(response_text: str) -> Optional[str]:
    """
    Extracts content from a markdown code block.
    Tries ```json ... ``` first, then a generic ``` ... ``` whose content looks like JSON.
    """
    if not response_text:
        return None

    for match in _FENCE_BLOCK_RE.finditer(response_text):
        language, content = match.group(1).lower(), match.group(2).strip()
        if language == "json" and content:
            logger.debug("Extracted JSON from '```json' markdown code block.")
            return content

    for match in _FENCE_BLOCK_RE.finditer(response_text):
        content = match.group(2).strip()
        if content.startswith(JSON_OBJECT_START) or content.startswith(JSON_ARRAY_START):
            logger.debug("Extracted JSON-like content from generic '```' markdown code block.")
            return content

    logger.debug("No complete markdown code block with JSON content found.")
    return None


def normalize_response_text(response_text: str) -> str:
    """
    Strip fencing and surrounding whitespace from a raw AI response.

    A fence that lost its closing marker to truncation is still removed.
    Raises FormatError if what remains does not start with '{' or '['.
    """
    if response_text is None or not str(response_text).strip():
        raise FormatError("AI response is empty")

    cleaned = str(response_text).strip()

    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
        cleaned = _TRAILING_FENCE_RE.sub("", cleaned).strip()
    elif "```" in cleaned:
        fenced = extract_json_from_markdown(cleaned)
        if fenced:
            cleaned = fenced

    if not (cleaned.startswith(JSON_OBJECT_START) or cleaned.startswith(JSON_ARRAY_START)):
        logger.warning(f"Response does not start with a JSON structure: {cleaned[:80]!r}")
        raise FormatError("AI response is not in JSON format")

    logger.debug(f"Normalized response text (original len: {len(response_text)}, normalized len: {len(cleaned)})")
    return cleaned


# --- Structure scanning ---

class OpenContainer:
    """An object or array that has been opened but not yet closed."""

    def __init__(self, char: str, index: int, key: Optional[str] = None):
        self.char = char
        self.index = index
        self.key = key
        self.children = 0  # completed nested objects/arrays

    def __repr__(self):
        return f"OpenContainer({self.char!r}, index={self.index}, key={self.key!r}, children={self.children})"


class ScanState:
    def __init__(self, stack: List[OpenContainer], in_string: bool, string_start: int, escape_pending: bool):
        self.stack = stack
        self.in_string = in_string
        self.string_start = string_start
        self.escape_pending = escape_pending

    @property
    def top(self) -> Optional[OpenContainer]:
        return self.stack[-1] if self.stack else None

    @property
    def is_complete(self) -> bool:
        return not self.stack and not self.in_string

    def find(self, key: str) -> Optional[OpenContainer]:
        for container in reversed(self.stack):
            if container.key == key:
                return container
        return None


def _key_before(text: str, index: int) -> Optional[str]:
    """Name of the key whose value starts at `index`, if the value follows a `"key":`."""
    window = text[max(0, index - _KEY_LOOKBACK):index]
    match = _KEY_BEFORE_RE.search(window)
    return match.group(1) if match else None


def scan_json_structure(text: str) -> ScanState:
    """
    Walk the text once, tracking string state and the stack of open containers.
    Mismatched closers are ignored; only a closer matching the innermost opener pops it.
    """
    stack: List[OpenContainer] = []
    in_string = False
    escape_pending = False
    string_start = -1

    for i, char in enumerate(text):
        if in_string:
            if escape_pending:
                escape_pending = False
            elif char == JSON_ESCAPE_CHAR:
                escape_pending = True
            elif char == JSON_STRING_DELIMITER:
                in_string = False
            continue

        if char == JSON_STRING_DELIMITER:
            in_string = True
            string_start = i
        elif char == JSON_OBJECT_START or char == JSON_ARRAY_START:
            stack.append(OpenContainer(char, i, _key_before(text, i)))
        elif char == JSON_OBJECT_END or char == JSON_ARRAY_END:
            if stack and stack[-1].char == OPENER_FOR[char]:
                stack.pop()
                if stack:
                    stack[-1].children += 1

    return ScanState(stack, in_string, string_start if in_string else -1, escape_pending)


def _find_balanced_structure_indices(text: str, start_char_index: int) -> Optional[Tuple[int, int]]:
    """
    Finds the start and end indices of a balanced JSON structure (object or array)
    starting from `start_char_index`.
    Returns (start_index, end_index_inclusive) or None if not balanced or not found.
    """
    if start_char_index >= len(text):
        return None

    open_char = text[start_char_index]
    if open_char not in CLOSER_FOR:
        return None
    close_char = CLOSER_FOR[open_char]

    balance = 0
    in_string = False
    escape_pending = False

    for i in range(start_char_index, len(text)):
        char = text[i]
        if in_string:
            if escape_pending:
                escape_pending = False
            elif char == JSON_ESCAPE_CHAR:
                escape_pending = True
            elif char == JSON_STRING_DELIMITER:
                in_string = False
            continue

        if char == JSON_STRING_DELIMITER:
            in_string = True
        elif char == open_char:
            balance += 1
        elif char == close_char:
            balance -= 1
            if balance == 0:
                return start_char_index, i

    return None  # Unbalanced (likely truncated or malformed within the structure)


def _next_significant_char(text: str, index: int) -> Tuple[Optional[str], bool]:
    """First non-whitespace char after `index`, and whether a newline was crossed to reach it."""
    crossed_newline = False
    j = index + 1
    while j < len(text):
        char = text[j]
        if char == '\n':
            crossed_newline = True
        elif not char.isspace():
            return char, crossed_newline
        j += 1
    return None, crossed_newline


def _closes_string(text: str, index: int) -> bool:
    """Heuristic: does the quote at `index` end the current string rather than sit inside it?"""
    next_char, crossed_newline = _next_significant_char(text, index)
    if next_char is None or next_char in STRING_TERMINATORS:
        return True
    # A value followed by a key on the next line is missing its comma, but the quote still closes.
    return crossed_newline and next_char == JSON_STRING_DELIMITER


# --- Text repair transforms ---
# Each transform is pure: text in, text out, never reads shared state.

def normalize_quotes(text: str) -> str:
    """
    Convert single-quoted strings to double-quoted ones and escape double quotes
    that appear nested inside string values. Apostrophes inside double-quoted
    strings are left alone.
    """
    out: List[str] = []
    in_double = False
    in_single = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if in_double:
            if char == JSON_ESCAPE_CHAR and i + 1 < length:
                out.append(text[i:i + 2])
                i += 2
                continue
            if char == JSON_STRING_DELIMITER:
                if _closes_string(text, i):
                    in_double = False
                    out.append(char)
                else:
                    out.append('\\"')
            else:
                out.append(char)
        elif in_single:
            if char == JSON_ESCAPE_CHAR and i + 1 < length:
                escaped = text[i + 1]
                out.append(escaped if escaped == JSON_SINGLE_QUOTE else text[i:i + 2])
                i += 2
                continue
            if char == JSON_SINGLE_QUOTE and _closes_string(text, i):
                in_single = False
                out.append(JSON_STRING_DELIMITER)
            elif char == JSON_STRING_DELIMITER:
                out.append('\\"')
            else:
                out.append(char)
        else:
            if char == JSON_STRING_DELIMITER:
                in_double = True
                out.append(char)
            elif char == JSON_SINGLE_QUOTE:
                in_single = True
                out.append(JSON_STRING_DELIMITER)
            else:
                out.append(char)
        i += 1

    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Remove commas that sit directly before a closing brace or bracket, outside strings."""
    out: List[str] = []
    in_string = False
    escape_pending = False

    for i, char in enumerate(text):
        if in_string:
            if escape_pending:
                escape_pending = False
            elif char == JSON_ESCAPE_CHAR:
                escape_pending = True
            elif char == JSON_STRING_DELIMITER:
                in_string = False
            out.append(char)
            continue

        if char == JSON_STRING_DELIMITER:
            in_string = True
        elif char == ',':
            next_char, _ = _next_significant_char(text, i)
            if next_char in (JSON_OBJECT_END, JSON_ARRAY_END):
                continue
        out.append(char)

    return "".join(out)


def close_dangling_string(text: str) -> str:
    """Close a string value left open at the very end of the text."""
    state = scan_json_structure(text)
    if not state.in_string:
        return text
    fixed = text[:-1] if state.escape_pending else text
    return fixed + JSON_STRING_DELIMITER


def extract_embedded_json(text: str) -> str:
    """
    Keep only the balanced structure that starts at the first '{' or '[',
    dropping any prose written after it.
    """
    starts = [idx for idx in (text.find(JSON_OBJECT_START), text.find(JSON_ARRAY_START)) if idx != -1]
    if not starts:
        raise ValueError("No JSON object found in response")
    indices = _find_balanced_structure_indices(text, min(starts))
    if not indices:
        raise ValueError("No balanced JSON structure found in response")
    start_idx, end_idx = indices
    return text[start_idx:end_idx + 1]


def close_unterminated_strings(text: str) -> str:
    """
    Close strings that run into a raw newline before their closing quote.

    The quote goes before a trailing comma that was meant as the separator, and a
    comma is inserted when the next line starts a new key. A string still open at
    the end of the text is closed there.
    """
    out: List[str] = []
    in_string = False
    escape_pending = False
    string_out_start = 0

    for i, char in enumerate(text):
        if in_string:
            if escape_pending:
                escape_pending = False
                out.append(char)
            elif char == JSON_ESCAPE_CHAR:
                escape_pending = True
                out.append(char)
            elif char == JSON_STRING_DELIMITER:
                in_string = False
                out.append(char)
            elif char == '\n':
                content = "".join(out[string_out_start:]).rstrip()
                del out[string_out_start:]
                if content.endswith(','):
                    out.append(content[:-1] + '",')
                else:
                    out.append(content + '"')
                    next_char, _ = _next_significant_char(text, i)
                    if next_char == JSON_STRING_DELIMITER:
                        out.append(',')
                out.append(char)
                in_string = False
            else:
                out.append(char)
            continue

        if char == JSON_STRING_DELIMITER:
            in_string = True
            out.append(char)
            string_out_start = len(out)
        else:
            out.append(char)

    if in_string:
        if escape_pending:
            out.pop()
        out.append(JSON_STRING_DELIMITER)

    return "".join(out)


def balance_closing_brackets_and_braces(json_str: str) -> str:
    """
    Appends missing closing braces {} and brackets [] to balance the string,
    innermost first. Does not remove extra closing characters or fix internal mismatches.
    """
    if not json_str:
        return ""

    state = scan_json_structure(json_str)
    closers = "".join(CLOSER_FOR[container.char] for container in reversed(state.stack))
    if closers:
        logger.debug(f"Balanced closing brackets/braces: appended {closers!r}")
    return json_str + closers


# --- SchemaValidator ---

def _select_matrix_candidate(parsed_json: Any) -> Any:
    """A list holding the document (a common LLM habit) is unwrapped to the document itself."""
    if not isinstance(parsed_json, list):
        return parsed_json

    dicts_in_list = [item for item in parsed_json if isinstance(item, dict)]
    for item_dict in dicts_in_list:
        if "matrix" in item_dict and "cells" in item_dict:
            logger.info("Found matrix document inside a top-level list.")
            return item_dict
    if len(dicts_in_list) == 1:
        logger.info("Parsed JSON is a list with a single dictionary. Using that dictionary.")
        return dicts_in_list[0]
    return parsed_json


def validate_matrix_payload(parsed_json: Any) -> Dict[str, Any]:
    """
    Checks the parsed value has a `matrix` object with a non-empty name and
    description, and a `cells` array. The number of cells is not checked here.
    Raises SchemaError naming the first missing field.
    """
    candidate = _select_matrix_candidate(parsed_json)

    if not isinstance(candidate, dict):
        raise SchemaError("matrix", f"AI response missing required matrix structure (got {type(parsed_json).__name__})")

    matrix = candidate.get("matrix")
    if not isinstance(matrix, dict):
        raise SchemaError("matrix", "AI response missing required matrix structure: matrix")

    cells = candidate.get("cells")
    if not isinstance(cells, list):
        raise SchemaError("cells", "AI response missing required matrix structure: cells")

    for field in ("name", "description"):
        value = matrix.get(field)
        if not isinstance(value, str) or not value.strip():
            raise SchemaError(f"matrix.{field}", f"AI response missing required matrix fields: matrix.{field}")

    logger.debug(f"Validation successful: matrix '{matrix.get('name')}' with {len(cells)} cells.")
    return candidate
