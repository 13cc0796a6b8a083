# repair_strategies.py
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.matrix_models import MAX_DIMENSION, is_supported_dimension, parse_matrix_type
from models.matrix_vocabulary import MatrixVocabulary, display_levels
from utils.cell_completer import CELL_FIELDS, build_cell, complete_cells_fragment
from utils.json_debug_utils import analyze_json_structure
from utils.json_errors import CompositeParseError, StrategyFailure
from utils.json_utils import (
    JSON_ARRAY_START,
    JSON_OBJECT_START,
    balance_closing_brackets_and_braces,
    close_dangling_string,
    close_unterminated_strings,
    extract_embedded_json,
    normalize_quotes,
    scan_json_structure,
    strip_trailing_commas,
)

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 5
DEFAULT_MAX_REPAIR_PASSES = 6

_MATRIX_TYPE_RE = re.compile(r'"matrix_type"\s*:\s*"([^"]*)"')
_LEVELS_RE = r'"{key}"\s*:\s*(\[[^\[\]]*\])'
_DANGLING_COLON_RE = re.compile(r'"((?:\\.|[^"\\])*)"\s*:\s*$')
_DANGLING_KEY_RE = re.compile(r'[{,]\s*"((?:\\.|[^"\\])*)"\s*$')
_PARTIAL_LITERAL_RE = re.compile(r'([:\[,]\s*)(t|tr|tru|f|fa|fal|fals|n|nu|nul)$')
_PARTIAL_NUMBER_RE = re.compile(r'([:\[,]\s*-?\d+)[.eE+-]+$')
_LITERALS = {"t": "true", "f": "false", "n": "null"}


class RepairTransform(Enum):
    QUOTE_NORMALIZE = "quote_normalize"
    TRAILING_COMMA = "trailing_comma"
    DANGLING_STRING = "dangling_string"
    EMBEDDED_JSON = "embedded_json"
    UNTERMINATED_STRINGS = "unterminated_strings"
    BRACKET_BALANCE = "bracket_balance"
    TRUNCATION_COMPLETE = "truncation_complete"
    TRAILING_ITEM = "trailing_item"


@dataclass(frozen=True)
class RepairContext:
    """What the schema-aware transforms may know besides the text itself."""

    dimension_hint: Optional[int] = None
    max_dimension: int = MAX_DIMENSION
    vocabulary: Optional[MatrixVocabulary] = None


@dataclass(frozen=True)
class RepairStrategy:
    name: str
    transforms: Tuple[RepairTransform, ...]


@dataclass
class ParseOutcome:
    strategy_index: int
    strategy_name: str
    value: Any
    transforms: List[str] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return bool(self.transforms)


# --- Schema-aware inference helpers ---

def infer_dimension(text: str, dimension_hint: Optional[int] = None, max_dimension: int = MAX_DIMENSION) -> int:
    """Grid size from "matrix_type", else from the risk_levels list, else the hint or default. Sizes above `max_dimension` are ignored."""
    match = _MATRIX_TYPE_RE.search(text)
    if match:
        dimension = parse_matrix_type(match.group(1), max_dimension)
        if dimension:
            return dimension

    levels = _extract_levels(text, "risk_levels")
    if levels and is_supported_dimension(len(levels), max_dimension):
        return len(levels)

    if is_supported_dimension(dimension_hint, max_dimension):
        return dimension_hint
    return min(DEFAULT_DIMENSION, max_dimension)


def _extract_levels(text: str, key: str) -> Optional[List[str]]:
    match = re.search(_LEVELS_RE.format(key=key), text)
    if not match:
        return None
    try:
        levels = json.loads(match.group(1))
    except ValueError:
        return None
    if isinstance(levels, list) and levels and all(isinstance(level, str) for level in levels):
        return levels
    return None


def infer_vocabulary(text: str, context: RepairContext) -> MatrixVocabulary:
    """Prefer the level names the response itself declared, so synthesized cells match them."""
    if context.vocabulary is not None:
        return context.vocabulary
    risk_levels = _extract_levels(text, "risk_levels")
    control_levels = _extract_levels(text, "control_effectiveness_levels")
    if risk_levels and control_levels:
        return MatrixVocabulary.from_levels(risk_levels, control_levels)
    return MatrixVocabulary()


def _running_cell_index(text: str) -> Optional[int]:
    cells = scan_json_structure(text).find("cells")
    if cells is None or cells.char != JSON_ARRAY_START:
        return None
    return cells.children


def _infer_value(key: str, text: str, dimension: int, vocabulary: MatrixVocabulary) -> str:
    """JSON text for the value of a key the response never finished writing."""
    index = _running_cell_index(text)
    if index is not None and key in CELL_FIELDS:
        return json.dumps(build_cell(index, dimension, vocabulary)[key], ensure_ascii=False)

    if key == "matrix_type":
        return json.dumps(f"{dimension}x{dimension}")
    if key == "risk_levels":
        return json.dumps(display_levels(dimension)[0])
    if key == "control_effectiveness_levels":
        return json.dumps(display_levels(dimension)[1])
    if key == "cells":
        return "[]"
    if key in ("name", "description", "color_code", "action_required", "risk_level", "control_effectiveness"):
        return '""'
    return "null"


def _string_is_key(text: str, string_start: int, container_char: Optional[str]) -> bool:
    if container_char != JSON_OBJECT_START:
        return False
    before = text[:string_start].rstrip()
    return before.endswith(JSON_OBJECT_START) or before.endswith(',')


def _strip_trailing_separator(text: str) -> str:
    fixed = text.rstrip()
    while fixed.endswith(','):
        fixed = fixed[:-1].rstrip()
    return fixed


def _complete_partial_literal(text: str) -> str:
    fixed = _PARTIAL_LITERAL_RE.sub(lambda m: m.group(1) + _LITERALS[m.group(2)[0]], text)
    return _PARTIAL_NUMBER_RE.sub(r"\1", fixed)


def _fill_dangling_key(text: str, dimension: int, vocabulary: MatrixVocabulary) -> str:
    colon_match = _DANGLING_COLON_RE.search(text)
    if colon_match:
        key = colon_match.group(1)
        logger.debug(f"Truncation completion: inferring value for dangling key '{key}'")
        return text + " " + _infer_value(key, text, dimension, vocabulary)

    state = scan_json_structure(text)
    key_match = _DANGLING_KEY_RE.search(text)
    if key_match and state.top is not None and state.top.char == JSON_OBJECT_START:
        key = key_match.group(1)
        logger.debug(f"Truncation completion: key '{key}' written without colon or value")
        return text + ": " + _infer_value(key, text, dimension, vocabulary)

    return text


def _complete_partial_cell(text: str, dimension: int, vocabulary: MatrixVocabulary) -> str:
    """Close a half-written cell, filling its missing fields from the synthesized cell at that index."""
    state = scan_json_structure(text)
    if len(state.stack) < 2:
        return text
    cell, parent = state.stack[-1], state.stack[-2]
    if cell.char != JSON_OBJECT_START or parent.key != "cells" or parent.char != JSON_ARRAY_START:
        return text

    partial = balance_closing_brackets_and_braces(_strip_trailing_separator(text[cell.index:]))
    head = text[:cell.index]
    try:
        item = json.loads(partial, strict=False)
    except ValueError:
        item = None

    if not isinstance(item, dict):
        logger.debug("Truncation completion: dropping unparseable partial cell")
        return _strip_trailing_separator(head)

    synthesized = build_cell(parent.children, dimension, vocabulary)
    for key in CELL_FIELDS:
        if key not in item or item[key] in (None, ""):
            item[key] = synthesized[key]
    return head + json.dumps(item, ensure_ascii=False)


def complete_truncated_matrix(text: str, context: RepairContext) -> str:
    """
    Finish a response that was cut off mid-structure: drop a partial key, supply
    the value of a dangling key, close a half-written cell, synthesize the rest of
    the grid and close every open container.
    """
    state = scan_json_structure(text)
    if state.is_complete:
        return text

    fixed = text
    if state.in_string:
        container_char = state.top.char if state.top else None
        if _string_is_key(fixed, state.string_start, container_char):
            fixed = fixed[:state.string_start]
        else:
            fixed = close_dangling_string(fixed)

    fixed = _complete_partial_literal(fixed.rstrip())
    dimension = infer_dimension(fixed, context.dimension_hint, context.max_dimension)
    vocabulary = infer_vocabulary(fixed, context)

    fixed = _fill_dangling_key(fixed, dimension, vocabulary)
    fixed = _strip_trailing_separator(fixed)
    fixed = _complete_partial_cell(fixed, dimension, vocabulary)

    state = scan_json_structure(fixed)
    cells = state.top if state.top is not None and state.top.key == "cells" else None
    if cells is not None and cells.char == JSON_ARRAY_START:
        fragment = fixed[cells.index + 1:]
        fixed = fixed[:cells.index + 1] + complete_cells_fragment(fragment, dimension, cells.children, vocabulary)
    elif '"cells"' not in fixed and state.stack and state.stack[0].char == JSON_OBJECT_START and '"matrix"' in fixed:
        # Cut off before the cells array began: close the metadata and start an empty grid.
        inner = "".join("}" if c.char == JSON_OBJECT_START else "]" for c in reversed(state.stack[1:]))
        fixed = _strip_trailing_separator(fixed + inner) + ', "cells": []'

    return balance_closing_brackets_and_braces(fixed)


def complete_trailing_item(text: str, context: RepairContext) -> str:
    """
    Complete or drop a final, partially written array item. The item is kept when it
    already carries both position fields, otherwise it is removed.
    """
    fixed = close_dangling_string(text).rstrip()
    state = scan_json_structure(fixed)
    if len(state.stack) >= 2 and state.stack[-1].char == JSON_OBJECT_START and state.stack[-2].char == JSON_ARRAY_START:
        item_start = state.stack[-1].index
        candidate = balance_closing_brackets_and_braces(_strip_trailing_separator(fixed[item_start:]))
        try:
            item = json.loads(candidate, strict=False)
        except ValueError:
            item = None
        if isinstance(item, dict) and "position_x" in item and "position_y" in item:
            logger.debug("Trailing item completion: completed the last array item")
            return fixed[:item_start] + candidate
        logger.debug("Trailing item completion: dropped the last array item")
        return _strip_trailing_separator(fixed[:item_start])
    return _strip_trailing_separator(fixed)


TRANSFORM_FUNCTIONS: Dict[RepairTransform, Callable[[str, RepairContext], str]] = {
    RepairTransform.QUOTE_NORMALIZE: lambda text, context: normalize_quotes(text),
    RepairTransform.TRAILING_COMMA: lambda text, context: strip_trailing_commas(text),
    RepairTransform.DANGLING_STRING: lambda text, context: close_dangling_string(text),
    RepairTransform.EMBEDDED_JSON: lambda text, context: extract_embedded_json(text),
    RepairTransform.UNTERMINATED_STRINGS: lambda text, context: close_unterminated_strings(text),
    RepairTransform.BRACKET_BALANCE: lambda text, context: balance_closing_brackets_and_braces(text),
    RepairTransform.TRUNCATION_COMPLETE: complete_truncated_matrix,
    RepairTransform.TRAILING_ITEM: complete_trailing_item,
}

# Ordered from least to most invasive. Each runs against the original text.
STRATEGIES: Tuple[RepairStrategy, ...] = (
    RepairStrategy("direct_parse", ()),
    RepairStrategy("quote_normalization", (RepairTransform.QUOTE_NORMALIZE,)),
    RepairStrategy("trailing_comma_repair", (RepairTransform.TRAILING_COMMA, RepairTransform.DANGLING_STRING)),
    RepairStrategy("embedded_json_extraction", (RepairTransform.EMBEDDED_JSON,)),
    RepairStrategy("bracket_balance", (RepairTransform.BRACKET_BALANCE,)),
    RepairStrategy("unterminated_string_scan", (RepairTransform.UNTERMINATED_STRINGS,)),
    RepairStrategy("generic_normalization", (
        RepairTransform.TRAILING_COMMA,
        RepairTransform.UNTERMINATED_STRINGS,
        RepairTransform.BRACKET_BALANCE,
    )),
    RepairStrategy("aggressive_normalization", (
        RepairTransform.QUOTE_NORMALIZE,
        RepairTransform.TRAILING_COMMA,
        RepairTransform.DANGLING_STRING,
        RepairTransform.BRACKET_BALANCE,
    )),
    RepairStrategy("truncation_completion", (RepairTransform.TRUNCATION_COMPLETE,)),
    RepairStrategy("trailing_item_completion", (RepairTransform.TRAILING_ITEM, RepairTransform.BRACKET_BALANCE)),
)

CUMULATIVE_STRATEGY_NAME = "cumulative_repair"

# Order of the fixed-point pass. Extraction goes last because it discards text.
CUMULATIVE_ORDER: Tuple[RepairTransform, ...] = (
    RepairTransform.QUOTE_NORMALIZE,
    RepairTransform.UNTERMINATED_STRINGS,
    RepairTransform.TRAILING_COMMA,
    RepairTransform.TRUNCATION_COMPLETE,
    RepairTransform.TRAILING_ITEM,
    RepairTransform.BRACKET_BALANCE,
    RepairTransform.EMBEDDED_JSON,
)


def _loads(text: str) -> Any:
    return json.loads(text, strict=False)


def apply_transforms(text: str, transforms: Tuple[RepairTransform, ...], context: RepairContext) -> Tuple[str, List[str]]:
    """Apply transforms in order, returning the text and the tags that actually changed it."""
    fixed = text
    applied: List[str] = []
    for transform in transforms:
        candidate = TRANSFORM_FUNCTIONS[transform](fixed, context)
        if candidate != fixed:
            applied.append(transform.value)
            fixed = candidate
    return fixed, applied


def _failure_from(index: int, name: str, exc: Exception) -> StrategyFailure:
    position = getattr(exc, "pos", None)
    message = str(exc) if isinstance(exc, ValueError) else f"{type(exc).__name__}: {exc}"
    return StrategyFailure(index, name, message, position)


def _cumulative_repair(text: str, context: RepairContext, max_passes: int) -> Tuple[Optional[ParseOutcome], Optional[StrategyFailure]]:
    """
    Apply every transform cumulatively, re-parsing after each change, until the text
    parses or a full pass changes nothing.
    """
    index = len(STRATEGIES) + 1
    current = text
    applied: List[str] = []
    last_failure: Optional[StrategyFailure] = None

    for pass_number in range(1, max_passes + 1):
        progressed = False
        for transform in CUMULATIVE_ORDER:
            try:
                candidate = TRANSFORM_FUNCTIONS[transform](current, context)
            except Exception as e:
                last_failure = _failure_from(index, CUMULATIVE_STRATEGY_NAME, e)
                continue
            if candidate == current:
                continue
            progressed = True
            current = candidate
            applied.append(transform.value)
            try:
                value = _loads(current)
            except ValueError as e:
                last_failure = _failure_from(index, CUMULATIVE_STRATEGY_NAME, e)
                continue
            logger.debug(f"Cumulative repair succeeded on pass {pass_number} after {applied}")
            return ParseOutcome(index, CUMULATIVE_STRATEGY_NAME, value, applied), None
        if not progressed:
            logger.debug(f"Cumulative repair reached a fixed point after {pass_number} pass(es)")
            break

    if last_failure is None:
        last_failure = StrategyFailure(index, CUMULATIVE_STRATEGY_NAME, "No transform changed the text")
    return None, last_failure


def parse_with_strategies(text: str,
                          dimension_hint: Optional[int] = None,
                          vocabulary: Optional[MatrixVocabulary] = None,
                          cumulative: bool = True,
                          max_passes: int = DEFAULT_MAX_REPAIR_PASSES,
                          max_dimension: int = MAX_DIMENSION) -> ParseOutcome:
    """
    Try each repair strategy against the normalized text and return the first value
    that parses. Raises CompositeParseError with every failure if none does.
    """
    context = RepairContext(dimension_hint=dimension_hint, vocabulary=vocabulary, max_dimension=max_dimension)
    failures: List[StrategyFailure] = []
    parsing_attempts_log: List[str] = []

    for index, strategy in enumerate(STRATEGIES, start=1):
        try:
            candidate, applied = apply_transforms(text, strategy.transforms, context)
            if strategy.transforms and not applied:
                parsing_attempts_log.append(f"{index}. {strategy.name}: SKIPPED (no change)")
                failures.append(StrategyFailure(index, strategy.name, "Strategy made no change to the text"))
                continue
            value = _loads(candidate)
        except Exception as e:
            failure = _failure_from(index, strategy.name, e)
            failures.append(failure)
            parsing_attempts_log.append(f"{index}. {strategy.name}: FAILED ({failure.message})")
            continue

        logger.info(f"JSON parsing succeeded with strategy {index} ({strategy.name})")
        if applied:
            logger.debug(f"Repairs applied: {applied}")
        return ParseOutcome(index, strategy.name, value, applied)

    if cumulative:
        outcome, failure = _cumulative_repair(text, context, max_passes)
        if outcome is not None:
            logger.info(f"JSON parsing succeeded with {CUMULATIVE_STRATEGY_NAME} ({outcome.transforms})")
            return outcome
        failures.append(failure)
        parsing_attempts_log.append(f"{failure.strategy_index}. {CUMULATIVE_STRATEGY_NAME}: FAILED ({failure.message})")

    diagnostics = analyze_json_structure(text)
    logger.debug("JSON extraction attempts summary:\n" + "\n".join(parsing_attempts_log))
    logger.error(f"All JSON parsing strategies failed. Identified issues: {diagnostics.common_issues}")
    raise CompositeParseError(failures, diagnostics, text_length=len(text))
