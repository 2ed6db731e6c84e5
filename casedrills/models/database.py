"""
Database models and table definitions
"""

import math
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict, computed_field, field_validator, model_validator

from casedrills.models.schemas import DrillResponse
from casedrills.utils.constants import (
    AttemptStatus,
    CALCULATION_OPERATORS,
    DrillCategory,
    DrillDifficulty,
    NUMERIC_CATEGORIES,
    PerformanceTier,
    WEIGHT_SUM_EPSILON,
)


class EvaluationCriterion(BaseModel):
    """One weighted evaluation criterion of a drill template"""
    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    weight: float = Field(..., gt=0, le=1)
    description: str = ""


class AnswerKey(BaseModel):
    """Correct answer and scoring rules for a deterministic drill"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    correct_answer: float
    # None falls back to the engine-wide tolerance
    tolerance_percent: Optional[float] = Field(default=None, gt=0)
    require_exact_match: bool = False
    max_digits: Optional[int] = Field(default=None, ge=1)
    decimal_places: Optional[int] = Field(default=None, ge=0)
    allowed_operators: Optional[List[str]] = None

    @field_validator("allowed_operators")
    @classmethod
    def validate_operators(cls, v):
        if v is not None:
            unknown = [op for op in v if op not in CALCULATION_OPERATORS]
            if unknown:
                raise ValueError(f"Unsupported operators: {unknown}")
        return v


class DrillTemplate(BaseModel):
    """Drill template model - read-only to the engine"""
    model_config = ConfigDict(frozen=True, from_attributes=True, extra="ignore", str_strip_whitespace=True)

    id: str
    title: str = ""
    category: DrillCategory
    difficulty: DrillDifficulty = DrillDifficulty.INTERMEDIATE
    prompt: str = ""
    time_limit_seconds: int = Field(..., gt=0)
    criteria: List[EvaluationCriterion] = Field(..., min_length=1)
    answer_key: Optional[AnswerKey] = None

    @model_validator(mode="after")
    def check_weights(self):
        """Criteria weights must sum to 1.0"""
        total = math.fsum(criterion.weight for criterion in self.criteria)
        if abs(total - 1.0) > WEIGHT_SUM_EPSILON:
            raise ValueError(f"Criteria weights must sum to 1.0, got {total:.6f}")
        names = [criterion.name for criterion in self.criteria]
        if len(set(names)) != len(names):
            raise ValueError("Criteria names must be unique")
        return self

    @property
    def is_deterministic(self) -> bool:
        """Scored by the numeric evaluator rather than the AI collaborator"""
        return self.category in NUMERIC_CATEGORIES and self.answer_key is not None


class PerformanceMetrics(BaseModel):
    """Timing and accuracy figures derived for one attempt"""
    model_config = ConfigDict(frozen=True)

    speed_score: int = Field(..., ge=0, le=100)
    accuracy_score: int = Field(..., ge=0, le=100)
    efficiency: int = Field(..., ge=0, le=100)
    performance: PerformanceTier
    within_target_time: bool = False
    meets_target_accuracy: bool = False


class DrillEvaluation(BaseModel):
    """Final scored-and-commented outcome of a completed attempt"""
    model_config = ConfigDict(frozen=True, from_attributes=True, extra="ignore")

    attempt_id: str
    score: int = Field(..., ge=0, le=100)
    feedback: str
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    evaluated_at: datetime
    metrics: Optional[PerformanceMetrics] = None
    criteria_scores: Optional[Dict[str, int]] = None


class DrillAttempt(BaseModel):
    """Drill attempt model - mutated only through the attempt state machine"""
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    user_id: str
    drill_id: str
    status: AttemptStatus = AttemptStatus.NOT_STARTED
    started_at: datetime
    completed_at: Optional[datetime] = None
    evaluated_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    response: Optional[DrillResponse] = None
    score: Optional[int] = Field(default=None, ge=0, le=100)
    criteria_scores: Optional[Dict[str, int]] = None
    evaluation: Optional[DrillEvaluation] = None
    version: int = Field(default=0, ge=0)

    @computed_field
    @property
    def time_spent_seconds(self) -> Optional[int]:
        """Whole seconds between start and completion"""
        if self.completed_at is None:
            return None
        return max(0, math.floor((self.completed_at - self.started_at).total_seconds()))
