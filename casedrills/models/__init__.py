"""
Models package - Database models and schemas
"""

from casedrills.models.database import (
    AnswerKey,
    DrillAttempt,
    DrillEvaluation,
    DrillTemplate,
    EvaluationCriterion,
    PerformanceMetrics,
)

from casedrills.models.schemas import (
    CalculationStepsResponse,
    CategoryProgress,
    DrillResponse,
    FreeTextResponse,
    NumericAnswerResponse,
    ProgressRecommendation,
    SubmitAttemptRequest,
    SubmittedResponse,
    TimerStatus,
    TimeUpRequest,
    TimeUpResponse,
    UserProgress,
    ValidateAnswerRequest,
)

__all__ = [
    # Database Models
    "AnswerKey",
    "DrillAttempt",
    "DrillEvaluation",
    "DrillTemplate",
    "EvaluationCriterion",
    "PerformanceMetrics",
    # Schemas
    "CalculationStepsResponse",
    "CategoryProgress",
    "DrillResponse",
    "FreeTextResponse",
    "NumericAnswerResponse",
    "ProgressRecommendation",
    "SubmitAttemptRequest",
    "SubmittedResponse",
    "TimerStatus",
    "TimeUpRequest",
    "TimeUpResponse",
    "UserProgress",
    "ValidateAnswerRequest",
]
