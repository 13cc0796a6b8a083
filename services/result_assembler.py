import logging
import warnings
from typing import Any, Dict, List, Optional, Tuple

from models.matrix_models import (
    MAX_DIMENSION,
    CellRecord,
    MatrixDescriptor,
    MatrixParseResult,
    is_supported_dimension,
    parse_matrix_type,
)
from models.matrix_vocabulary import ORANGE, MatrixVocabulary, display_levels
from utils.cell_completer import build_cell_at
from utils.json_errors import CellDefaultingWarning
from utils.repair_strategies import DEFAULT_DIMENSION, ParseOutcome

logger = logging.getLogger(__name__)

DEFAULT_RISK_LEVEL = "Medium"
DEFAULT_CONTROL_EFFECTIVENESS = "Partially Effective"
DEFAULT_CELL_DESCRIPTION = "Risk-control cell"
DEFAULT_ACTION = "Monitor"


class MatrixResultAssembler:
    """
    Maps a schema-valid payload into typed records and restores the N x N grid:
    lenient per-cell defaults, position normalization and gap filling
    """

    def __init__(self, default_dimension: int = DEFAULT_DIMENSION, max_dimension: int = MAX_DIMENSION):
        """
        Initialize the assembler

        Args:
            default_dimension (int): Grid size used when neither matrix_type nor the level lists give one
            max_dimension (int): Largest grid size accepted from a response
        """
        self.max_dimension = max(1, max_dimension)
        if not is_supported_dimension(default_dimension, self.max_dimension):
            fallback = min(DEFAULT_DIMENSION, self.max_dimension)
            logger.warning(f"Invalid default dimension {default_dimension}, falling back to {fallback}")
            default_dimension = fallback
        self.default_dimension = default_dimension
        self._warnings: List[str] = []

    def assemble(self, payload: Dict[str, Any], outcome: ParseOutcome) -> MatrixParseResult:
        """
        Build the final result from a validated payload

        Args:
            payload (dict): Value accepted by validate_matrix_payload
            outcome (ParseOutcome): Which strategy recovered the payload

        Returns:
            MatrixParseResult: Descriptor plus exactly dimension**2 cells, sorted row-major
        """
        self._warnings = []
        matrix = payload["matrix"]
        dimension = self.resolve_dimension(matrix)
        descriptor = self._build_descriptor(matrix, dimension)
        vocabulary = MatrixVocabulary.from_levels(descriptor.risk_levels, descriptor.control_effectiveness_levels)

        cells = self._build_cells(payload.get("cells") or [], dimension, vocabulary)
        logger.info(f"Assembled {dimension}x{dimension} matrix '{descriptor.name}' with {len(self._warnings)} warning(s)")

        return MatrixParseResult(
            matrix=descriptor,
            cells=cells,
            dimension=dimension,
            warnings=list(self._warnings),
            strategy_index=outcome.strategy_index,
            strategy_name=outcome.strategy_name,
            transforms=list(outcome.transforms),
        )

    def resolve_dimension(self, matrix: Dict[str, Any]) -> int:
        """Grid size from matrix_type, then the level-list lengths, then the configured default."""
        matrix_type = matrix.get("matrix_type")
        dimension = parse_matrix_type(matrix_type, self.max_dimension)
        if dimension:
            return dimension
        if matrix_type:
            self._warn(
                f"matrix_type '{matrix_type}' is unreadable or larger than "
                f"{self.max_dimension}x{self.max_dimension}, ignoring it"
            )

        for key in ("risk_levels", "control_effectiveness_levels"):
            levels = matrix.get(key)
            if isinstance(levels, list) and is_supported_dimension(len(levels), self.max_dimension):
                self._warn(f"matrix_type missing or unreadable, using the length of {key} ({len(levels)})")
                return len(levels)

        self._warn(f"Grid size could not be determined, using default {self.default_dimension}")
        return self.default_dimension

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)

    def _default_field(self, cell_label: str, field: str, default: str) -> str:
        message = f"{cell_label} missing {field}, defaulted to '{default}'"
        self._warn(message)
        # Defaulting must never abort assembly, whatever the caller's warning filters are.
        with warnings.catch_warnings():
            warnings.simplefilter("always", CellDefaultingWarning)
            warnings.warn(message, CellDefaultingWarning, stacklevel=3)
        return default

    def _build_descriptor(self, matrix: Dict[str, Any], dimension: int) -> MatrixDescriptor:
        default_risk, default_control = display_levels(dimension)
        risk_levels = self._sized_levels(matrix.get("risk_levels"), dimension, default_risk, "risk_levels")
        control_levels = self._sized_levels(
            matrix.get("control_effectiveness_levels"), dimension, default_control, "control_effectiveness_levels"
        )

        return MatrixDescriptor(
            name=str(matrix["name"]).strip(),
            description=str(matrix["description"]).strip(),
            matrix_type=f"{dimension}x{dimension}",
            risk_levels=risk_levels,
            control_effectiveness_levels=control_levels,
        )

    def _sized_levels(self, levels: Any, dimension: int, defaults: List[str], field: str) -> List[str]:
        if isinstance(levels, list) and len(levels) == dimension and all(_is_text(level) for level in levels):
            return [str(level).strip() for level in levels]
        self._warn(f"matrix.{field} does not list {dimension} levels, using defaults {defaults}")
        return defaults

    def _read_positions(self, raw_cells: List[Any], dimension: int) -> List[Tuple[Optional[int], Optional[int]]]:
        positions = [
            (_as_int(cell.get("position_x")), _as_int(cell.get("position_y")))
            for cell in raw_cells
        ]
        explicit = [value for pair in positions for value in pair if value is not None]
        # A zero-based grid: some coordinate is 0 and none reaches N.
        if explicit and min(explicit) == 0 and max(explicit) <= dimension - 1:
            self._warn("Cell positions are zero-based, shifting to one-based")
            positions = [
                (x + 1 if x is not None else None, y + 1 if y is not None else None)
                for x, y in positions
            ]
        return positions

    def _build_cells(self, raw_cells: Any, dimension: int, vocabulary: MatrixVocabulary) -> List[CellRecord]:
        if not isinstance(raw_cells, list):
            self._warn("cells is not an array, synthesizing the whole grid")
            raw_cells = []

        dict_cells = []
        for index, cell in enumerate(raw_cells):
            if isinstance(cell, dict):
                dict_cells.append(cell)
            else:
                self._warn(f"Cell {index} is not an object, dropped")

        positions = self._read_positions(dict_cells, dimension)
        placed: Dict[Tuple[int, int], Dict[str, Any]] = {}

        for index, (cell, (x, y)) in enumerate(zip(dict_cells, positions)):
            if x is None or y is None:
                default_x, default_y = (index % dimension) + 1, (index // dimension) + 1
                x = default_x if x is None else x
                y = default_y if y is None else y
                self._warn(f"Cell {index} missing position, placed at ({x}, {y})")

            if not (1 <= x <= dimension and 1 <= y <= dimension):
                self._warn(f"Cell {index} at ({x}, {y}) is outside the {dimension}x{dimension} grid, dropped")
                continue
            if (x, y) in placed:
                self._warn(f"Cell {index} duplicates position ({x}, {y}), dropped")
                continue

            placed[(x, y)] = self._normalize_cell(cell, x, y, f"Cell ({x}, {y})")

        missing = [
            (x, y)
            for y in range(1, dimension + 1)
            for x in range(1, dimension + 1)
            if (x, y) not in placed
        ]
        if missing:
            logger.info(f"Filling {len(missing)} missing cell(s) of the {dimension}x{dimension} grid")
        for x, y in missing:
            placed[(x, y)] = build_cell_at(x, y, dimension, vocabulary)

        ordered = sorted(placed.items(), key=lambda item: (item[0][1], item[0][0]))
        return [CellRecord(**cell) for _, cell in ordered]

    def _normalize_cell(self, cell: Dict[str, Any], x: int, y: int, label: str) -> Dict[str, Any]:
        def text(field: str, default: str, warn: bool) -> str:
            value = cell.get(field)
            if _is_text(value):
                return str(value).strip()
            if warn:
                return self._default_field(label, field, default)
            return default

        return {
            "position_x": x,
            "position_y": y,
            "risk_level": text("risk_level", DEFAULT_RISK_LEVEL, warn=True),
            "control_effectiveness": text("control_effectiveness", DEFAULT_CONTROL_EFFECTIVENESS, warn=True),
            "color_code": text("color_code", ORANGE, warn=False),
            "description": text("description", DEFAULT_CELL_DESCRIPTION, warn=False),
            "action_required": text("action_required", DEFAULT_ACTION, warn=False),
        }


def _is_text(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip() != ""


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None
