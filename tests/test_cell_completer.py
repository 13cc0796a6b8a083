import json

import pytest

from models.matrix_vocabulary import GREEN, ORANGE, RED, MatrixVocabulary
from utils.cell_completer import (
    build_cell,
    build_cell_at,
    complete_cells,
    complete_cells_fragment,
    position_for_index,
)


@pytest.mark.parametrize("dimension", [3, 4, 5])
def test_empty_grid_is_fully_covered(dimension):
    cells = complete_cells([], dimension)
    positions = {(cell["position_x"], cell["position_y"]) for cell in cells}

    assert len(cells) == dimension * dimension
    assert positions == {(x, y) for x in range(1, dimension + 1) for y in range(1, dimension + 1)}


def test_positions_are_row_major_and_one_based():
    assert position_for_index(0, 3) == (1, 1)
    assert position_for_index(2, 3) == (3, 1)
    assert position_for_index(3, 3) == (1, 2)
    assert position_for_index(8, 3) == (3, 3)


def test_colours_follow_risk_and_control_axes():
    assert build_cell_at(1, 3, 3)["color_code"] == GREEN
    assert build_cell_at(3, 1, 3)["color_code"] == RED
    assert build_cell_at(3, 3, 3)["color_code"] == ORANGE


def test_actions():
    assert build_cell_at(3, 3, 3)["action_required"] == "Immediate action required"
    assert build_cell_at(1, 1, 3)["action_required"] == "Improve controls"
    assert build_cell_at(1, 3, 3)["action_required"] == "Monitor and review"


def test_control_vocabulary_uses_most_effective_levels_for_small_grids():
    assert build_cell_at(1, 1, 5)["description"] == "low risk with inadequate control effectiveness"
    assert build_cell_at(1, 1, 3)["control_effectiveness"] == "adequate"
    assert build_cell_at(1, 3, 3)["control_effectiveness"] == "excellent"


def test_custom_vocabulary():
    vocabulary = MatrixVocabulary.from_levels(["Low", "Medium", "High"], ["Ineffective", "Partially Effective", "Effective"])
    cell = build_cell(4, 3, vocabulary)

    assert (cell["position_x"], cell["position_y"]) == (2, 2)
    assert cell["risk_level"] == "Medium"
    assert cell["control_effectiveness"] == "Partially Effective"


def test_existing_cells_are_kept_and_rest_synthesized():
    existing = [{"position_x": 1, "position_y": 1}, {"position_x": 2, "position_y": 1}]
    cells = complete_cells(existing, 3)

    assert len(cells) == 9
    assert cells[:2] == existing
    assert (cells[2]["position_x"], cells[2]["position_y"]) == (3, 1)


def test_invalid_dimension_returns_existing():
    assert complete_cells([{"a": 1}], 0) == [{"a": 1}]


def test_fragment_completion_places_commas():
    fragment = '{"position_x": 1, "position_y": 1}'
    completed = json.loads("[" + complete_cells_fragment(fragment, 2, 1) + "]")
    assert len(completed) == 4
    assert completed[0] == {"position_x": 1, "position_y": 1}

    from_empty = json.loads("[" + complete_cells_fragment("", 2, 0) + "]")
    assert len(from_empty) == 4

    after_comma = json.loads("[" + complete_cells_fragment(fragment + ", ", 2, 1) + "]")
    assert len(after_comma) == 4


def test_fragment_unchanged_when_grid_is_full():
    assert complete_cells_fragment("{}", 1, 1) == "{}"
