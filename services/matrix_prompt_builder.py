import json
import logging

from models.matrix_models import MatrixGenerationRequest
from models.matrix_vocabulary import MatrixVocabulary, display_levels
from utils.cell_completer import build_cell

logger = logging.getLogger(__name__)


def _existing_items_text(request: MatrixGenerationRequest) -> str:
    text = ""
    if request.include_existing_risks and request.existing_risks:
        risks = ", ".join(f"{risk.title} ({risk.risk_level})" for risk in request.existing_risks)
        text += f"\nExisting Risks: {risks}"
    if request.include_existing_controls and request.existing_controls:
        controls = ", ".join(f"{control.title} ({control.control_type})" for control in request.existing_controls)
        text += f"\nExisting Controls: {controls}"
    return text


def build_matrix_prompt(request: MatrixGenerationRequest) -> str:
    """
    Build the prompt asking a model for a risk-control matrix as JSON

    Args:
        request (MatrixGenerationRequest): Industry, size, frameworks and the rest of the generation settings

    Returns:
        str: Prompt text, including the expected JSON structure
    """
    dimension = request.dimension
    risk_levels, control_levels = display_levels(dimension)
    vocabulary = MatrixVocabulary.from_levels(risk_levels, control_levels)
    risk_categories = ", ".join(request.risk_categories)
    control_frameworks = ", ".join(request.control_frameworks)
    risk_level_names = ", ".join(risk_levels)
    control_level_names = ", ".join(control_levels)

    example = {
        "matrix": {
            "name": f"Comprehensive Risk-Control Matrix for {request.industry}",
            "description": f"A {request.matrix_size} matrix covering {risk_categories} risks with {control_frameworks} frameworks",
            "matrix_type": request.matrix_size,
            "risk_levels": risk_levels,
            "control_effectiveness_levels": control_levels,
        },
        "cells": [build_cell(0, dimension, vocabulary)],
    }

    custom_text = f"\nAdditional Requirements: {request.custom_prompt}\n" if request.custom_prompt else ""

    prompt = f"""You are an expert in Risk Management and Control Frameworks. Generate a comprehensive Risk-Control Matrix based on the following parameters:

Industry: {request.industry}
Business Size: {request.business_size}
Risk Categories: {risk_categories}
Control Frameworks: {control_frameworks}
Matrix Size: {request.matrix_size} ({dimension}x{dimension})
Generation Focus: {request.generation_focus}{_existing_items_text(request)}

Requirements:
1. Create a {request.matrix_size} risk-control matrix with {dimension * dimension} cells
2. Use risk levels: {risk_level_names}
3. Use control effectiveness levels: {control_level_names}
4. position_x is the risk column (1 = {risk_levels[0]}, {dimension} = {risk_levels[-1]}); position_y is the control effectiveness row (1 = {control_levels[0]}, {dimension} = {control_levels[-1]}). Positions start at 1.
5. Generate appropriate color coding for each matrix cell (green for low risk/high effectiveness, red for high risk/low effectiveness)
6. Provide specific action requirements for each cell
7. Consider industry best practices and regulatory requirements for {request.industry}
8. Ensure the matrix is comprehensive and actionable
{custom_text}
IMPORTANT: Respond with ONLY valid JSON. Do not include any explanatory text before or after the JSON. The JSON must be complete and properly formatted.

Expected JSON structure:
{json.dumps(example, indent=2, ensure_ascii=False)}

Generate exactly {dimension * dimension} cells, one for each position in the {dimension}x{dimension} matrix."""

    logger.debug(f"Built {request.matrix_size} generation prompt ({len(prompt)} chars) for {request.industry}")
    return prompt
