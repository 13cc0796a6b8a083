import json
import logging
import os
import re
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_TRAILING_COMMA_RE = re.compile(r',\s*[}\]]')
_LINE_COL_RE = re.compile(r'line (\d+) column (\d+)')
_CHAR_RE = re.compile(r'char (\d+)')


@dataclass
class ParseDiagnostics:
    """Structural facts about a response that could not be parsed."""

    length: int = 0
    lines: int = 0
    brace_balance: int = 0
    bracket_balance: int = 0
    structure_depth: int = 0
    unmatched_quotes: bool = False
    trailing_commas: int = 0
    single_quotes: bool = False
    escaped_quotes: bool = False
    unclosed_string: bool = False
    common_issues: List[str] = field(default_factory=list)

    @property
    def missing_closers(self) -> bool:
        return self.brace_balance > 0 or self.bracket_balance > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def save_problematic_json(response_text: str, error_msg: str, context: str = "",
                          diagnostics: Optional[ParseDiagnostics] = None,
                          failures: Optional[List[Dict[str, Any]]] = None) -> str:
    """
    Save an unparseable response to a temporary file for offline debugging

    Args:
        response_text (str): The response text that failed to parse
        error_msg (str): The error message from the failed parse
        context (str): Where the response came from
        diagnostics (ParseDiagnostics): Structural analysis of the text, if available
        failures (list): One entry per failed strategy, as produced by StrategyFailure.to_dict

    Returns:
        str: Path to the saved debug file, or "" when it could not be written
    """
    try:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        debug_path = os.path.join(tempfile.gettempdir(), f"matrix_debug_{timestamp}.json")

        debug_info = {
            "timestamp": datetime.now().isoformat(),
            "context": context,
            "error_message": error_msg,
            "response_length": len(response_text),
            "response_preview": response_text[:500] + "..." if len(response_text) > 500 else response_text,
            "response_suffix": "..." + response_text[-500:] if len(response_text) > 500 else "",
            "error_location": find_json_error_location(response_text, error_msg),
            "diagnostics": diagnostics.to_dict() if diagnostics else None,
            "failures": failures or [],
            "full_response": response_text
        }

        with open(debug_path, 'w', encoding='utf-8') as f:
            json.dump(debug_info, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved unparseable response debug info to: {debug_path}")
        return debug_path

    except OSError as e:
        logger.error(f"Failed to save response debug info: {str(e)}")
        return ""


def analyze_json_structure(json_str: str) -> ParseDiagnostics:
    """
    Analyze the structure of a potentially malformed JSON string

    Args:
        json_str (str): JSON string to analyze

    Returns:
        ParseDiagnostics: Balance counts, quoting facts and a list of readable issues
    """
    analysis = ParseDiagnostics(length=len(json_str), lines=len(json_str.split('\n')))

    brace_count = 0
    bracket_count = 0
    in_string = False
    escape_next = False
    max_depth = 0
    current_depth = 0

    for char in json_str:
        if escape_next:
            escape_next = False
            continue

        if char == '\\':
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == "'":
            analysis.single_quotes = True
        elif char == '{':
            brace_count += 1
            current_depth += 1
            max_depth = max(max_depth, current_depth)
        elif char == '}':
            brace_count -= 1
            current_depth -= 1
        elif char == '[':
            bracket_count += 1
            current_depth += 1
            max_depth = max(max_depth, current_depth)
        elif char == ']':
            bracket_count -= 1
            current_depth -= 1

    analysis.brace_balance = brace_count
    analysis.bracket_balance = bracket_count
    analysis.structure_depth = max_depth
    analysis.unclosed_string = in_string
    analysis.escaped_quotes = '\\"' in json_str
    analysis.trailing_commas = len(_TRAILING_COMMA_RE.findall(json_str))
    # Escaped quotes are not delimiters; an odd remainder means a string never closed.
    analysis.unmatched_quotes = (json_str.count('"') - json_str.count('\\"')) % 2 == 1

    if brace_count > 0:
        analysis.common_issues.append(f"Unbalanced braces: {brace_count} extra opening braces")
    elif brace_count < 0:
        analysis.common_issues.append(f"Unbalanced braces: {-brace_count} extra closing braces")
    if bracket_count > 0:
        analysis.common_issues.append(f"Unbalanced brackets: {bracket_count} extra opening brackets")
    elif bracket_count < 0:
        analysis.common_issues.append(f"Unbalanced brackets: {-bracket_count} extra closing brackets")
    if in_string:
        analysis.common_issues.append("Unclosed string at end of JSON")
    if analysis.unmatched_quotes and not in_string:
        analysis.common_issues.append("Unmatched double quotes")
    if analysis.trailing_commas:
        analysis.common_issues.append(f"{analysis.trailing_commas} trailing comma(s) before a closing delimiter")
    if analysis.single_quotes:
        analysis.common_issues.append("Single quotes used outside strings")

    lines = json_str.split('\n')
    for i, line in enumerate(lines[:-1]):
        line = line.strip()
        next_line = lines[i + 1].strip()

        if (line.endswith('}') or line.endswith(']')) and next_line.startswith(('{', '[')):
            analysis.common_issues.append(f"Possible missing comma after line {i + 1}")

        if line.endswith('"') and next_line.startswith('"'):
            analysis.common_issues.append(f"Possible missing comma after quoted string on line {i + 1}")

    return analysis


def find_json_error_location(json_str: str, error_msg: str) -> Dict[str, Any]:
    """
    Locate a parse error reported by the json module

    Args:
        json_str (str): JSON string with error
        error_msg (str): Error message from the parser, e.g. "... line 3 column 5 (char 40)"

    Returns:
        dict: Position, surrounding text and offending line where they can be found
    """
    result: Dict[str, Any] = {"error_context": error_msg}

    char_match = _CHAR_RE.search(error_msg)
    if char_match:
        char_pos = int(char_match.group(1))
        result["char_position"] = char_pos
        start = max(0, char_pos - 100)
        end = min(len(json_str), char_pos + 100)
        result["error_context_text"] = json_str[start:end]
        result["error_char"] = json_str[char_pos] if char_pos < len(json_str) else "EOF"
        result["estimated_line"] = json_str[:char_pos].count('\n') + 1

    line_col_match = _LINE_COL_RE.search(error_msg)
    if line_col_match:
        line_num = int(line_col_match.group(1))
        result["line_number"] = line_num
        result["column_number"] = int(line_col_match.group(2))

        lines = json_str.split('\n')
        if 0 <= line_num - 1 < len(lines):
            result["problematic_line"] = lines[line_num - 1]
            result["context_lines"] = lines[max(0, line_num - 3):min(len(lines), line_num + 2)]

    return result


def suggest_json_fixes(diagnostics: ParseDiagnostics, error_msg: str = "") -> List[str]:
    """
    Suggest specific fixes for a response that could not be parsed

    Args:
        diagnostics (ParseDiagnostics): Structural analysis of the text
        error_msg (str): Error message from the first parse attempt

    Returns:
        list: Human-readable suggestions, most specific first
    """
    suggestions = []
    error_msg = error_msg.lower()

    if "expecting ',' delimiter" in error_msg:
        suggestions.append("Add missing comma between JSON elements")
        line_match = _LINE_COL_RE.search(error_msg)
        if line_match:
            suggestions.append(f"Check line {line_match.group(1)} for missing comma")
    elif "expecting ':' delimiter" in error_msg:
        suggestions.append("Add missing colon after object key")
    elif "unterminated string" in error_msg:
        suggestions.append("Add missing closing quote for string")
    elif "expecting property name" in error_msg:
        suggestions.append("Object key should be quoted string")

    if diagnostics.brace_balance > 0:
        suggestions.append(f"Add {diagnostics.brace_balance} closing braces '}}'")
    elif diagnostics.brace_balance < 0:
        suggestions.append(f"Remove {-diagnostics.brace_balance} extra closing braces '}}'")

    if diagnostics.bracket_balance > 0:
        suggestions.append(f"Add {diagnostics.bracket_balance} closing brackets ']'")
    elif diagnostics.bracket_balance < 0:
        suggestions.append(f"Remove {-diagnostics.bracket_balance} extra closing brackets ']'")

    if diagnostics.trailing_commas:
        suggestions.append("Remove trailing commas before } or ]")
    if diagnostics.single_quotes:
        suggestions.append("Replace single-quoted strings with double quotes")
    if diagnostics.unmatched_quotes or diagnostics.unclosed_string:
        suggestions.append("Check for unescaped quotes within strings")

    return suggestions
