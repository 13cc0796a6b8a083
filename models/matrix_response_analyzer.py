import logging
from typing import Any, Dict, Optional, Union

from models.matrix_models import MAX_DIMENSION, GenerationResult, MatrixParseResult, is_supported_dimension
from models.matrix_vocabulary import MatrixVocabulary
from services.result_assembler import MatrixResultAssembler
from utils.json_errors import GenerationFailedError
from utils.json_utils import normalize_response_text, validate_matrix_payload
from utils.repair_strategies import DEFAULT_DIMENSION, DEFAULT_MAX_REPAIR_PASSES, parse_with_strategies

logger = logging.getLogger(__name__)


class MatrixResponseAnalyzer:
    """Turns raw AI output into a validated, complete risk-control matrix"""

    def __init__(self, default_dimension: int = DEFAULT_DIMENSION, cumulative_repair: bool = True,
                 max_repair_passes: int = DEFAULT_MAX_REPAIR_PASSES,
                 vocabulary: Optional[MatrixVocabulary] = None, max_dimension: int = MAX_DIMENSION):
        """
        Initialize the analyzer

        Args:
            default_dimension (int): Grid size used when the response does not state one
            cumulative_repair (bool): Run the fixed-point repair pass after the ordered strategies fail
            max_repair_passes (int): Upper bound on cumulative repair passes
            vocabulary (MatrixVocabulary): Level names and colours for synthesized cells
            max_dimension (int): Largest grid size accepted from a response or a request
        """
        self.max_dimension = max(1, max_dimension)
        if not is_supported_dimension(default_dimension, self.max_dimension):
            fallback = min(DEFAULT_DIMENSION, self.max_dimension)
            logger.warning(f"Default dimension {default_dimension} is outside 1..{self.max_dimension}, using {fallback}")
            default_dimension = fallback
        self.default_dimension = default_dimension
        self.cumulative_repair = cumulative_repair
        self.max_repair_passes = max(1, max_repair_passes)
        self.vocabulary = vocabulary

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "MatrixResponseAnalyzer":
        return cls(
            default_dimension=settings.get("default_dimension", DEFAULT_DIMENSION),
            cumulative_repair=settings.get("cumulative_repair", True),
            max_repair_passes=settings.get("max_repair_passes", DEFAULT_MAX_REPAIR_PASSES),
            max_dimension=settings.get("max_dimension", MAX_DIMENSION),
        )

    def parse_response(self, response_text: str, dimension_hint: Optional[int] = None) -> MatrixParseResult:
        """
        Run the full pipeline: normalize, repair and parse, validate, assemble

        Args:
            response_text (str): Raw text returned by the model
            dimension_hint (int): Requested grid size, used when the text does not state one

        Returns:
            MatrixParseResult: Descriptor, exactly N*N cells and recovery metadata

        Raises:
            FormatError: The text is empty or not JSON
            CompositeParseError: No strategy produced parseable JSON
            SchemaError: The parsed value lacks the matrix structure
        """
        hint = self.default_dimension
        if dimension_hint is not None:
            if is_supported_dimension(dimension_hint, self.max_dimension):
                hint = dimension_hint
            else:
                logger.warning(f"Ignoring requested size {dimension_hint}, the limit is {self.max_dimension}")
        logger.info(f"Parsing AI response ({len(response_text or '')} chars, expected size {hint}x{hint})")

        normalized = normalize_response_text(response_text)
        outcome = parse_with_strategies(
            normalized,
            dimension_hint=hint,
            vocabulary=self.vocabulary,
            cumulative=self.cumulative_repair,
            max_passes=self.max_repair_passes,
            max_dimension=self.max_dimension,
        )
        if outcome.repaired:
            logger.info(f"Response repaired by {outcome.strategy_name} using {outcome.transforms}")

        payload = validate_matrix_payload(outcome.value)
        assembler = MatrixResultAssembler(default_dimension=hint, max_dimension=self.max_dimension)
        return assembler.assemble(payload, outcome)

    def parse_generation_result(self, result: Union[GenerationResult, Dict[str, Any]],
                                dimension_hint: Optional[int] = None) -> MatrixParseResult:
        """Parse the content of an upstream generation call, failing fast when the call itself failed."""
        if isinstance(result, dict):
            result = GenerationResult(**result)

        if not result.success:
            logger.error(f"AI generation reported failure: {result.error}")
            raise GenerationFailedError(result.error or "AI generation failed", upstream_error=result.error)
        if not result.content or not result.content.strip():
            logger.error("AI generation succeeded but returned no content")
            raise GenerationFailedError("AI generation returned no content", upstream_error=result.error)

        return self.parse_response(result.content, dimension_hint=dimension_hint)
