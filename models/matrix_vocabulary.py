import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Ordered lowest -> highest risk. Grids wider than this list reuse the last entry.
DEFAULT_RISK_LEVELS = ["low", "medium", "high", "critical"]
# Ordered least -> most effective. A grid of size N uses the N most effective entries.
DEFAULT_CONTROL_LEVELS = ["inadequate", "weak", "adequate", "good", "excellent"]

GREEN = "#10b981"
RED = "#ef4444"
ORANGE = "#FFA500"

# Vocabularies shown to the model and used for descriptor defaults, keyed by grid size.
DISPLAY_LEVELS = {
    3: (
        ["Low", "Medium", "High"],
        ["Ineffective", "Partially Effective", "Effective"],
    ),
    4: (
        ["Low", "Medium", "High", "Critical"],
        ["Ineffective", "Partially Effective", "Effective", "Highly Effective"],
    ),
    5: (
        ["Very Low", "Low", "Medium", "High", "Critical"],
        ["Ineffective", "Weak", "Partially Effective", "Effective", "Highly Effective"],
    ),
}


class MatrixVocabulary(BaseModel):
    """
    Level names, colours and action phrases used to synthesize cells.

    Risk levels run from lowest to highest risk and are keyed by the x position.
    Control levels run from least to most effective and are keyed by the y position.
    """

    risk_levels: List[str] = Field(default_factory=lambda: list(DEFAULT_RISK_LEVELS))
    control_levels: List[str] = Field(default_factory=lambda: list(DEFAULT_CONTROL_LEVELS))
    green: str = GREEN
    red: str = RED
    orange: str = ORANGE
    immediate_action: str = "Immediate action required"
    improve_action: str = "Improve controls"
    monitor_action: str = "Monitor and review"

    @field_validator("risk_levels", "control_levels")
    def validate_not_empty(cls, v: List[str]) -> List[str]:
        cleaned = [str(level) for level in v if str(level).strip()]
        if not cleaned:
            raise ValueError("vocabulary level lists cannot be empty")
        return cleaned

    @classmethod
    def from_levels(cls, risk_levels: Optional[List[str]],
                    control_levels: Optional[List[str]]) -> "MatrixVocabulary":
        """Vocabulary taken from a matrix descriptor, falling back to defaults for empty lists."""
        kwargs = {}
        if risk_levels:
            kwargs["risk_levels"] = list(risk_levels)
        if control_levels:
            kwargs["control_levels"] = list(control_levels)
        return cls(**kwargs)

    def sized_risk_levels(self, dimension: int) -> List[str]:
        size = max(1, dimension)
        return self.risk_levels[:size]

    def sized_control_levels(self, dimension: int) -> List[str]:
        size = max(1, dimension)
        if size >= len(self.control_levels):
            return list(self.control_levels)
        return self.control_levels[-size:]

    def risk_level_at(self, x: int, dimension: int) -> str:
        levels = self.sized_risk_levels(dimension)
        return levels[_clamp(x - 1, len(levels))]

    def control_level_at(self, y: int, dimension: int) -> str:
        levels = self.sized_control_levels(dimension)
        return levels[_clamp(y - 1, len(levels))]


def _clamp(index: int, length: int) -> int:
    return max(0, min(index, length - 1))


def display_levels(dimension: int) -> Tuple[List[str], List[str]]:
    """Risk and control level names for an N x N grid, always exactly N long."""
    if dimension in DISPLAY_LEVELS:
        risk, control = DISPLAY_LEVELS[dimension]
        return list(risk), list(control)

    size = max(1, dimension)
    base_risk, base_control = DISPLAY_LEVELS[5]
    if size < 5:
        logger.debug(f"No display vocabulary for {size}x{size}, slicing the 5x5 vocabulary")
        return base_risk[:size], base_control[-size:]

    logger.debug(f"No display vocabulary for {size}x{size}, padding the 5x5 vocabulary")
    extra = [f"Level {i}" for i in range(6, size + 1)]
    return base_risk + extra, base_control + extra
