import warnings

import pytest

from models.matrix_vocabulary import ORANGE, display_levels
from services.result_assembler import MatrixResultAssembler
from utils.json_errors import CellDefaultingWarning
from utils.repair_strategies import ParseOutcome


def _outcome(payload):
    return ParseOutcome(1, "direct_parse", payload)


def _assemble(payload, default_dimension=5):
    return MatrixResultAssembler(default_dimension).assemble(payload, _outcome(payload))


def test_empty_cells_are_synthesized_in_row_major_order(matrix_metadata):
    result = _assemble({"matrix": matrix_metadata, "cells": []})

    assert result.dimension == 3
    assert [cell.position for cell in result.cells] == [
        (1, 1), (2, 1), (3, 1),
        (1, 2), (2, 2), (3, 2),
        (1, 3), (2, 3), (3, 3),
    ]
    assert result.cells[0].risk_level == "Low"
    assert result.cells[0].control_effectiveness == "Ineffective"
    assert result.strategy_name == "direct_parse"


def test_zero_based_positions_are_shifted(matrix_metadata, first_cell):
    cells = [dict(first_cell, position_x=0, position_y=0), dict(first_cell, position_x=2, position_y=2)]
    result = _assemble({"matrix": matrix_metadata, "cells": cells})
    positions = [cell.position for cell in result.cells]

    assert len(result.cells) == 9
    assert result.cells[positions.index((1, 1))].description == first_cell["description"]
    assert result.cells[positions.index((3, 3))].risk_level == first_cell["risk_level"]
    assert any("zero-based" in warning for warning in result.warnings)


def test_out_of_range_and_duplicate_cells_are_dropped(matrix_metadata, first_cell):
    cells = [
        first_cell,
        dict(first_cell, description="duplicate"),
        dict(first_cell, position_x=5, position_y=5),
    ]
    result = _assemble({"matrix": matrix_metadata, "cells": cells})

    assert len(result.cells) == 9
    assert result.cells[0].description == first_cell["description"]
    assert all(cell.description != "duplicate" for cell in result.cells)
    assert any("duplicates" in warning for warning in result.warnings)
    assert any("outside" in warning for warning in result.warnings)


def test_missing_levels_default_with_warning(matrix_metadata):
    cells = [{"position_x": 2, "position_y": 2, "description": "Partially controlled"}]
    with pytest.warns(CellDefaultingWarning):
        result = _assemble({"matrix": matrix_metadata, "cells": cells})

    cell = result.cells[4]
    assert cell.position == (2, 2)
    assert cell.risk_level == "Medium"
    assert cell.control_effectiveness == "Partially Effective"
    assert cell.color_code == ORANGE
    assert cell.action_required == "Monitor"
    assert cell.description == "Partially controlled"


def test_missing_positions_follow_array_index(matrix_metadata, first_cell):
    cell = dict(first_cell)
    del cell["position_x"]
    del cell["position_y"]
    result = _assemble({"matrix": matrix_metadata, "cells": [dict(first_cell), cell]})

    assert result.cells[1].position == (2, 1)
    assert result.cells[1].description == first_cell["description"]


def test_wrong_length_levels_are_replaced(matrix_metadata):
    metadata = dict(matrix_metadata, risk_levels=["Low", "High"])
    result = _assemble({"matrix": metadata, "cells": []})

    assert result.matrix.risk_levels == display_levels(3)[0]
    assert result.matrix.control_effectiveness_levels == matrix_metadata["control_effectiveness_levels"]
    assert any("risk_levels" in warning for warning in result.warnings)


def test_dimension_falls_back_to_level_lists_then_default():
    by_levels = _assemble({
        "matrix": {"name": "A", "description": "B", "risk_levels": ["a", "b", "c", "d"]},
        "cells": [],
    })
    assert by_levels.dimension == 4
    assert by_levels.matrix.matrix_type == "4x4"
    assert len(by_levels.cells) == 16

    by_default = _assemble({"matrix": {"name": "A", "description": "B"}, "cells": []}, default_dimension=3)
    assert by_default.dimension == 3
    assert len(by_default.cells) == 9


def test_oversized_sizes_are_ignored():
    result = _assemble({
        "matrix": {"name": "A", "description": "B", "matrix_type": "400x400", "risk_levels": ["level"] * 400},
        "cells": [],
    })

    assert result.dimension == 5
    assert len(result.cells) == 25
    assert any("400x400" in warning for warning in result.warnings)
    assert any("using default 5" in warning for warning in result.warnings)


def test_max_dimension_caps_the_default():
    assembler = MatrixResultAssembler(default_dimension=8, max_dimension=3)
    assert assembler.default_dimension == 3


def test_defaulting_never_raises_under_error_filters(matrix_metadata):
    cells = [{"position_x": 1, "position_y": 1, "description": "Weak", "control_effectiveness": "Ineffective"}]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        result = _assemble({"matrix": matrix_metadata, "cells": cells})

    assert result.cells[0].risk_level == "Medium"
    assert any("missing risk_level" in warning for warning in result.warnings)


def test_non_object_cells_are_ignored(matrix_metadata):
    result = _assemble({"matrix": matrix_metadata, "cells": ["junk", 42]})
    assert len(result.cells) == 9
    assert len([w for w in result.warnings if "not an object" in w]) == 2
