import json

import pytest

from models.matrix_models import GenerationResult
from models.matrix_response_analyzer import MatrixResponseAnalyzer
from utils.json_errors import CompositeParseError, FormatError, GenerationFailedError, MatrixResponseError, SchemaError


@pytest.fixture
def analyzer():
    return MatrixResponseAnalyzer()


def test_fenced_empty_grid_parses_directly(analyzer, empty_matrix_text):
    result = analyzer.parse_response(f"```json\n{empty_matrix_text}\n```")

    assert result.strategy_index == 1
    assert not result.repaired
    assert result.dimension == 3
    assert len(result.cells) == 9
    assert result.cells[0].position == (1, 1)
    assert result.matrix.name == "Operational Risk-Control Matrix"


def test_trailing_comma_in_cells(analyzer, one_cell_matrix_text):
    result = analyzer.parse_response(one_cell_matrix_text[:-2] + ",]}")

    assert result.strategy_name == "trailing_comma_repair"
    assert result.repaired
    assert len(result.cells) == 9


def test_missing_final_brace(analyzer, one_cell_matrix_text):
    result = analyzer.parse_response(one_cell_matrix_text[:-1])

    assert result.strategy_name == "bracket_balance"
    assert len(result.cells) == 9


def test_dimension_hint_applies_when_response_has_no_size(analyzer):
    text = json.dumps({"matrix": {"name": "A", "description": "B"}, "cells": []})
    result = analyzer.parse_response(text, dimension_hint=4)

    assert result.dimension == 4
    assert len(result.cells) == 16


def test_errors_propagate(analyzer):
    with pytest.raises(FormatError):
        analyzer.parse_response("I could not generate a matrix.")
    with pytest.raises(SchemaError):
        analyzer.parse_response('{"matrix": {"name": "A"}, "cells": []}')
    with pytest.raises(CompositeParseError):
        analyzer.parse_response('{"a": 1 "b": 2}')


def test_truncated_mid_string_raises_only_pipeline_errors(analyzer):
    with pytest.raises((CompositeParseError, SchemaError)):
        analyzer.parse_response('{"matrix": {"name": "Ab')


def test_every_prefix_yields_a_full_grid_or_a_pipeline_error(analyzer, one_cell_matrix_text):
    for cut in range(1, len(one_cell_matrix_text)):
        try:
            result = analyzer.parse_response(one_cell_matrix_text[:cut])
        except MatrixResponseError:
            continue
        assert len(result.cells) == result.dimension * result.dimension


def test_oversized_matrix_type_falls_back_to_default_grid(analyzer):
    text = '{"matrix":{"name":"a","description":"b","matrix_type":"400x400"},"cells":[]}'
    result = analyzer.parse_response(text)

    assert result.dimension == 5
    assert len(result.cells) == 25
    assert any("400x400" in warning for warning in result.warnings)


def test_oversized_dimension_hint_is_ignored(analyzer):
    result = analyzer.parse_response('{"matrix": {"name": "A", "description": "B"}, "cells": []}', dimension_hint=400)
    assert len(result.cells) == 25


def test_generation_result(analyzer, empty_matrix_text):
    result = analyzer.parse_generation_result({"success": True, "content": empty_matrix_text})
    assert len(result.cells) == 9

    with pytest.raises(GenerationFailedError) as excinfo:
        analyzer.parse_generation_result(GenerationResult(success=False, error="Invalid API key"))
    assert excinfo.value.upstream_error == "Invalid API key"

    with pytest.raises(GenerationFailedError):
        analyzer.parse_generation_result(GenerationResult(success=True, content="  "))


def test_settings_are_applied():
    analyzer = MatrixResponseAnalyzer.from_settings({"default_dimension": 4, "cumulative_repair": False, "max_repair_passes": 0})

    assert analyzer.default_dimension == 4
    assert analyzer.cumulative_repair is False
    assert analyzer.max_repair_passes == 1


def test_max_dimension_setting_limits_the_grid():
    analyzer = MatrixResponseAnalyzer.from_settings({"default_dimension": 3, "max_dimension": 4})
    result = analyzer.parse_response('{"matrix": {"name": "A", "description": "B", "matrix_type": "5x5"}, "cells": []}')

    assert analyzer.max_dimension == 4
    assert result.dimension == 3


def test_default_dimension_above_the_limit_is_capped():
    analyzer = MatrixResponseAnalyzer(default_dimension=8, max_dimension=4)
    assert analyzer.default_dimension == 4
