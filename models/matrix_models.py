from __future__ import annotations

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MATRIX_TYPE_PATTERN = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")
# Largest grid the engine will build; sizes above it are treated as unreadable.
MAX_DIMENSION = 10


class MatrixDescriptor(BaseModel):
    """Grid metadata recovered from the AI response. Identity is assigned downstream."""

    name: str
    description: str
    matrix_type: str
    risk_levels: List[str]
    control_effectiveness_levels: List[str]

    @field_validator("name", "description")
    def validate_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @model_validator(mode="after")
    def validate_level_lengths(self) -> "MatrixDescriptor":
        if len(self.risk_levels) != len(self.control_effectiveness_levels):
            raise ValueError(
                f"risk_levels ({len(self.risk_levels)}) and control_effectiveness_levels "
                f"({len(self.control_effectiveness_levels)}) must have the same length"
            )
        return self


class CellRecord(BaseModel):
    position_x: int = Field(ge=1)
    position_y: int = Field(ge=1)
    risk_level: str
    control_effectiveness: str
    color_code: str
    description: str
    action_required: str

    @property
    def position(self):
        return (self.position_x, self.position_y)


class MatrixParseResult(BaseModel):
    """Everything the persistence collaborator needs, plus how the text was recovered."""

    matrix: MatrixDescriptor
    cells: List[CellRecord]
    dimension: int
    warnings: List[str] = Field(default_factory=list)
    strategy_index: int
    strategy_name: str
    transforms: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_grid_is_complete(self) -> "MatrixParseResult":
        expected = self.dimension * self.dimension
        if len(self.cells) != expected:
            raise ValueError(f"expected {expected} cells for a {self.dimension}x{self.dimension} grid, got {len(self.cells)}")
        positions = {cell.position for cell in self.cells}
        if len(positions) != expected:
            raise ValueError("cell positions must be unique")
        for x, y in positions:
            if x > self.dimension or y > self.dimension:
                raise ValueError(f"cell position ({x}, {y}) outside the grid")
        return self

    @property
    def repaired(self) -> bool:
        return bool(self.transforms)


class GenerationResult(BaseModel):
    """Upstream AI service response: { success, content, error? }."""

    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


class ExistingRisk(BaseModel):
    title: str
    risk_level: str = ""


class ExistingControl(BaseModel):
    title: str
    control_type: str = ""


class MatrixGenerationRequest(BaseModel):
    industry: str = "Technology"
    business_size: str = "Medium (201-1000 employees)"
    risk_categories: List[str] = Field(default_factory=lambda: ["Operational Risk", "Technology Risk"])
    control_frameworks: List[str] = Field(default_factory=lambda: ["COSO", "ISO 27001"])
    matrix_size: Literal["3x3", "4x4", "5x5"] = "5x5"
    generation_focus: Literal["comprehensive", "focused", "minimal"] = "comprehensive"
    include_existing_risks: bool = True
    include_existing_controls: bool = True
    existing_risks: List[ExistingRisk] = Field(default_factory=list)
    existing_controls: List[ExistingControl] = Field(default_factory=list)
    custom_prompt: Optional[str] = None

    @property
    def dimension(self) -> int:
        return int(self.matrix_size.split("x")[0])


class ErrorReport(BaseModel):
    """User-facing description of why a response could not be turned into a matrix."""

    category: str
    message: str
    hint: str
    suggestions: List[str] = Field(default_factory=list)
    suggest_token_increase: bool = False
    fallback_available: bool = True


def parse_matrix_type(matrix_type: Optional[str], max_dimension: int = MAX_DIMENSION) -> Optional[int]:
    """Grid dimension from an 'NxN' string, or None when it cannot be read or exceeds `max_dimension`."""
    if not isinstance(matrix_type, str):
        return None
    match = MATRIX_TYPE_PATTERN.match(matrix_type)
    if not match:
        return None
    rows, cols = int(match.group(1)), int(match.group(2))
    if rows != cols or not is_supported_dimension(rows, max_dimension):
        return None
    return rows


def is_supported_dimension(dimension: Optional[int], max_dimension: int = MAX_DIMENSION) -> bool:
    return isinstance(dimension, int) and 1 <= dimension <= max_dimension
