import json

import pytest

from app import app


@pytest.fixture
def matrix_metadata():
    return {
        "name": "Operational Risk-Control Matrix",
        "description": "A 3x3 matrix covering operational risks",
        "matrix_type": "3x3",
        "risk_levels": ["Low", "Medium", "High"],
        "control_effectiveness_levels": ["Ineffective", "Partially Effective", "Effective"],
    }


@pytest.fixture
def first_cell():
    return {
        "position_x": 1,
        "position_y": 1,
        "risk_level": "Low",
        "control_effectiveness": "Ineffective",
        "color_code": "#FFA500",
        "description": "Low risk with Ineffective control effectiveness",
        "action_required": "Improve controls",
    }


@pytest.fixture
def empty_matrix_text(matrix_metadata):
    return json.dumps({"matrix": matrix_metadata, "cells": []}, indent=2)


@pytest.fixture
def one_cell_matrix_text(matrix_metadata, first_cell):
    return json.dumps({"matrix": matrix_metadata, "cells": [first_cell]})


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setitem(app.config, "TESTING", True)
    monkeypatch.setitem(app.config["RCM_SETTINGS"], "debug_dumps", False)
    with app.test_client() as test_client:
        yield test_client
