# cell_completer.py
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from models.matrix_vocabulary import MatrixVocabulary

logger = logging.getLogger(__name__)

CELL_FIELDS = (
    "position_x",
    "position_y",
    "risk_level",
    "control_effectiveness",
    "color_code",
    "description",
    "action_required",
)


def position_for_index(index: int, dimension: int) -> Tuple[int, int]:
    """Row-major, one-based (x, y) for a linear cell index."""
    size = max(1, dimension)
    return (index % size) + 1, (index // size) + 1


def color_for_position(x: int, y: int, dimension: int, vocabulary: MatrixVocabulary) -> str:
    if x <= 2 and y >= dimension - 1:
        return vocabulary.green  # low risk, effective controls
    if x >= dimension - 1 and y <= 2:
        return vocabulary.red  # high risk, weak controls
    return vocabulary.orange


def action_for_position(x: int, y: int, dimension: int, vocabulary: MatrixVocabulary) -> str:
    if x >= dimension - 1:
        return vocabulary.immediate_action
    if y <= 2:
        return vocabulary.improve_action
    return vocabulary.monitor_action


def build_cell_at(x: int, y: int, dimension: int,
                  vocabulary: Optional[MatrixVocabulary] = None) -> Dict[str, Any]:
    """Synthesize one cell for grid position (x, y). Never raises."""
    vocabulary = vocabulary or MatrixVocabulary()
    size = max(1, dimension)
    risk_level = vocabulary.risk_level_at(x, size)
    control_level = vocabulary.control_level_at(y, size)
    return {
        "position_x": x,
        "position_y": y,
        "risk_level": risk_level,
        "control_effectiveness": control_level,
        "color_code": color_for_position(x, y, size, vocabulary),
        "description": f"{risk_level} risk with {control_level} control effectiveness",
        "action_required": action_for_position(x, y, size, vocabulary),
    }


def build_cell(index: int, dimension: int,
               vocabulary: Optional[MatrixVocabulary] = None) -> Dict[str, Any]:
    x, y = position_for_index(index, dimension)
    return build_cell_at(x, y, dimension, vocabulary)


def complete_cells(existing: List[Any], dimension: int,
                   vocabulary: Optional[MatrixVocabulary] = None) -> List[Any]:
    """
    Return `existing` followed by synthesized cells up to dimension**2 entries.
    Cells are generated for linear indices len(existing) .. N*N - 1.
    """
    if dimension < 1:
        logger.warning(f"complete_cells: invalid grid dimension {dimension}, nothing to complete")
        return list(existing)

    total = dimension * dimension
    existing_count = len(existing)
    if existing_count >= total:
        return list(existing)

    missing = [build_cell(i, dimension, vocabulary) for i in range(existing_count, total)]
    logger.debug(f"complete_cells: synthesized {len(missing)} of {total} cells for {dimension}x{dimension} grid")
    return list(existing) + missing


def complete_cells_fragment(fragment: str, dimension: int, existing_count: int,
                            vocabulary: Optional[MatrixVocabulary] = None) -> str:
    """
    Append synthesized cells to the text of a partial `cells` array.

    `fragment` is everything after the array's opening bracket. The result is
    still missing the closing bracket; the caller balances delimiters afterwards.
    """
    if dimension < 1:
        return fragment

    total = dimension * dimension
    if existing_count >= total:
        return fragment

    missing = [
        json.dumps(build_cell(i, dimension, vocabulary), ensure_ascii=False)
        for i in range(existing_count, total)
    ]
    tail = fragment.rstrip()
    needs_comma = bool(tail) and not tail.endswith(",") and not tail.endswith("[")
    separator = "," if needs_comma else ""
    logger.debug(f"complete_cells_fragment: appending {len(missing)} cells after {existing_count} existing")
    return tail + separator + ",".join(missing)
