"""
AI evaluation service for free-text drill responses using OpenAI API
Scores each template criterion and returns structured feedback
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI, APIError, APITimeoutError

from casedrills.models.database import DrillAttempt, DrillTemplate
from casedrills.models.schemas import response_text
from casedrills.services.calculator import round_half_up
from casedrills.utils.constants import (
    CATEGORY_GUIDANCE,
    DEFAULT_MODEL_CONFIG,
    DRILL_EVALUATION_PROMPT,
    DRILL_EVALUATION_SYSTEM_PROMPT,
    DRILL_MODEL_CONFIGS,
)
from casedrills.utils.helpers import validate_json_response
from casedrills.utils.logger import logger


class AIEvaluationError(Exception):
    """Base class for AI collaborator failures; always retryable"""


class EvaluationTimeoutError(AIEvaluationError):
    """The model did not answer within the timeout"""


class UpstreamError(AIEvaluationError):
    """The model call failed or returned an unusable result"""


@dataclass(frozen=True)
class AIEvaluationResult:
    """Structured result returned by the AI collaborator"""

    overall_score: int
    criteria_scores: Dict[str, int]
    feedback: str
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)


class AIEvaluator(Protocol):
    """Contract the attempt state machine expects from an AI evaluator"""

    def evaluate(self, template: DrillTemplate, attempt: DrillAttempt, timeout_ms: int) -> AIEvaluationResult:
        ...


def weighted_overall_score(template: DrillTemplate, criteria_scores: Dict[str, int]) -> int:
    """Weighted mean of criterion scores using the template weights"""
    total_weight = math.fsum(criterion.weight for criterion in template.criteria)
    if total_weight <= 0:
        return 0
    total = math.fsum(criteria_scores[criterion.name] * criterion.weight for criterion in template.criteria)
    return round_half_up(total / total_weight)


def build_evaluation_prompt(template: DrillTemplate, attempt: DrillAttempt) -> str:
    """Render the evaluation prompt for a template and attempt"""
    criteria_lines = "\n".join(
        f"- {criterion.name} - {round(criterion.weight * 100)}% - {criterion.description or 'n/a'}"
        for criterion in template.criteria
    )
    criteria_keys = ", ".join(f'"{criterion.name}": <0-100>' for criterion in template.criteria)

    return DRILL_EVALUATION_PROMPT.format(
        category_label=template.category.value.replace("_", " ").lower(),
        drill_prompt=template.prompt or template.title,
        response=response_text(attempt.response) or "(no response submitted before time ran out)",
        criteria=criteria_lines,
        category_guidance=CATEGORY_GUIDANCE.get(template.category, ""),
        criteria_keys=criteria_keys,
    )


def parse_evaluation(template: DrillTemplate, content: Optional[str]) -> AIEvaluationResult:
    """
    Validate the model's JSON answer against the template criteria

    Raises:
        UpstreamError: If the answer is not JSON or a criterion score is missing or out of range
    """
    if not content:
        raise UpstreamError("Empty response from model")

    try:
        data = validate_json_response(content)
    except ValueError as e:
        raise UpstreamError(str(e)) from e

    raw_scores = data.get("criteria_scores")
    if not isinstance(raw_scores, dict):
        raise UpstreamError("Model response is missing criteria_scores")

    criteria_scores: Dict[str, int] = {}
    for criterion in template.criteria:
        value = raw_scores.get(criterion.name)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
            raise UpstreamError(f"Invalid score for criterion: {criterion.name}")
        criteria_scores[criterion.name] = round_half_up(value)

    def _string_list(key: str) -> List[str]:
        values = data.get(key) or []
        if not isinstance(values, list):
            return []
        return [str(item).strip() for item in values if str(item).strip()]

    feedback = data.get("feedback")
    return AIEvaluationResult(
        overall_score=weighted_overall_score(template, criteria_scores),
        criteria_scores=criteria_scores,
        feedback=feedback.strip() if isinstance(feedback, str) else "",
        strengths=_string_list("strengths"),
        improvements=_string_list("improvements"),
    )


class OpenAIDrillEvaluator:
    """Service for evaluating free-text drill responses with OpenAI"""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Any = None):
        """
        Initialize evaluator

        Args:
            api_key: OpenAI API key; ignored when ``client`` is given
            model: Chat completion model name
            client: Preconfigured OpenAI-compatible client
        """
        self.model = model
        self.client = client
        if self.client is None:
            self._initialize_openai_client(api_key)

    def _initialize_openai_client(self, api_key: Optional[str]):
        """Initialize OpenAI client"""
        try:
            if api_key and "your-openai" not in api_key:
                self.client = OpenAI(api_key=api_key)
                logger.info("OpenAI client initialized for drill evaluation")
            else:
                logger.warning("OpenAI API key not configured. Free-text drills cannot be evaluated.")
                self.client = None
        except Exception as e:
            logger.error(f"Error initializing OpenAI client: {str(e)}")
            self.client = None

    def evaluate(self, template: DrillTemplate, attempt: DrillAttempt, timeout_ms: int) -> AIEvaluationResult:
        """
        Evaluate one attempt with a single bounded model call

        Args:
            template: Drill template with weighted criteria
            attempt: Completed attempt carrying the response
            timeout_ms: Hard timeout for the call

        Returns:
            AIEvaluationResult with a weighted overall score

        Raises:
            EvaluationTimeoutError: If the call exceeded the timeout
            UpstreamError: If the call failed or the answer was unusable
        """
        if not self.client:
            raise UpstreamError("OpenAI client not configured")

        model_params = DRILL_MODEL_CONFIGS.get(template.category, DEFAULT_MODEL_CONFIG)
        prompt = build_evaluation_prompt(template, attempt)

        try:
            completion = self.client.with_options(
                timeout=timeout_ms / 1000,
                max_retries=0,
            ).chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": DRILL_EVALUATION_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                **model_params,
            )
        except APITimeoutError as e:
            raise EvaluationTimeoutError(f"Model call exceeded {timeout_ms}ms") from e
        except APIError as e:
            raise UpstreamError(f"Model call failed: {str(e)}") from e

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise UpstreamError("Invalid model response format") from e

        return parse_evaluation(template, content)
