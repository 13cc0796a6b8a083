import os
import sys
import logging
import traceback

from flask import Flask, jsonify, request
from pydantic import ValidationError

from config import configure_app, get_settings
from models.matrix_models import GenerationResult, MatrixGenerationRequest, parse_matrix_type
from models.matrix_response_analyzer import MatrixResponseAnalyzer
from services.matrix_prompt_builder import build_matrix_prompt
from utils.error_reporter import classify_error
from utils.json_debug_utils import save_problematic_json
from utils.json_errors import CompositeParseError, GenerationFailedError, MatrixResponseError

settings = get_settings()

# Configure logging
log_dir = os.path.dirname(settings["log_file"])
if log_dir:
    os.makedirs(log_dir, exist_ok=True)

logging.basicConfig(
    level=getattr(logging, settings["log_level"], logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings["log_file"]),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
configure_app(app, settings)

# Initialize the analyzer
analyzer = MatrixResponseAnalyzer.from_settings(app.config['RCM_SETTINGS'])


def _error_response(report, status):
    return jsonify({"success": False, "error": report.model_dump()}), status


@app.route('/api/health', methods=['GET'])
def health():
    rcm_settings = app.config['RCM_SETTINGS']
    return jsonify({
        "status": "ok",
        "default_dimension": rcm_settings["default_dimension"],
        "max_dimension": rcm_settings["max_dimension"],
        "cumulative_repair": rcm_settings["cumulative_repair"],
    })


@app.route('/api/risk-control-matrix/parse', methods=['POST'])
def parse_matrix_response():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        logger.warning("Parse request without a JSON object body")
        return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400

    try:
        generation_result = GenerationResult(
            success=body.get("success", True),
            content=body.get("content"),
            error=body.get("error"),
        )
    except ValidationError as e:
        logger.warning(f"Invalid parse request: {e}")
        return jsonify({"success": False, "error": f"Invalid request: {e.errors()[0]['msg']}"}), 400

    dimension_hint = parse_matrix_type(body.get("matrix_size"), analyzer.max_dimension)
    content_length = len(generation_result.content or "")
    logger.info(f"Received parse request ({content_length} characters, requested size {body.get('matrix_size')})")

    try:
        result = analyzer.parse_generation_result(generation_result, dimension_hint=dimension_hint)
    except GenerationFailedError as e:
        return _error_response(classify_error(e), 502)
    except MatrixResponseError as e:
        report = classify_error(e)
        if isinstance(e, CompositeParseError) and app.config['RCM_SETTINGS']["debug_dumps"]:
            error_msg = e.primary_failure.message if e.primary_failure else str(e)
            save_problematic_json(generation_result.content or "", error_msg,
                                  context="risk-control-matrix/parse", diagnostics=e.diagnostics,
                                  failures=[failure.to_dict() for failure in e.failures])
        return _error_response(report, 422)
    except Exception as e:
        logger.critical(f"Unhandled exception in parse endpoint: {str(e)}")
        logger.critical(traceback.format_exc())
        return jsonify({
            "success": False,
            "error": f"An unexpected error occurred: {str(e)}"
        }), 500

    return jsonify({
        "success": True,
        "matrix": result.matrix.model_dump(),
        "cells": [cell.model_dump() for cell in result.cells],
        "warnings": result.warnings,
        "strategy": {
            "index": result.strategy_index,
            "name": result.strategy_name,
            "transforms": result.transforms,
            "repaired": result.repaired,
        },
    })


@app.route('/api/risk-control-matrix/prompt', methods=['POST'])
def generation_prompt():
    body = request.get_json(silent=True) or {}
    try:
        generation_request = MatrixGenerationRequest(**body)
    except ValidationError as e:
        logger.warning(f"Invalid prompt request: {e}")
        return jsonify({"success": False, "error": f"Invalid request: {e.errors()[0]['msg']}"}), 400
    except TypeError:
        return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400

    return jsonify({"prompt": build_matrix_prompt(generation_request)})


if __name__ == '__main__':
    app.run(debug=True)
