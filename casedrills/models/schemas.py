"""
Pydantic schemas for drill response payloads and request/response validation
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from casedrills.utils.constants import AttemptStatus, DrillCategory, MasteryLevel, MasteryStatus, TimerBand


# ============================================
# Drill Response Payloads
# ============================================

class NumericAnswerResponse(BaseModel):
    """Single numeric answer typed by the candidate"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    kind: Literal["numeric"] = "numeric"
    answer: str = Field(..., min_length=1, max_length=64)


class CalculationStepsResponse(BaseModel):
    """Worked calculation, one line per step"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    kind: Literal["steps"] = "steps"
    steps: List[str] = Field(..., min_length=1, max_length=50)
    final_answer: Optional[str] = Field(default=None, max_length=64)


class FreeTextResponse(BaseModel):
    """Written answer for case prompts, brainstorming, sizing and synthesis"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, frozen=True)

    kind: Literal["free_text"] = "free_text"
    text: str = Field(..., min_length=1, max_length=8000)


class TimeUpResponse(BaseModel):
    """Marker stored when the deadline forces the submission"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["time_up"] = "time_up"
    time_up: Literal[True] = True
    partial: Optional[str] = Field(default=None, max_length=8000)


DrillResponse = Annotated[
    Union[NumericAnswerResponse, CalculationStepsResponse, FreeTextResponse, TimeUpResponse],
    Field(discriminator="kind"),
]

# Payloads a client may submit directly; time_up is produced by the engine
SubmittedResponse = Annotated[
    Union[NumericAnswerResponse, CalculationStepsResponse, FreeTextResponse],
    Field(discriminator="kind"),
]


# ============================================
# Request Schemas
# ============================================

class SubmitAttemptRequest(BaseModel):
    """Schema for submitting an attempt response"""
    model_config = ConfigDict(extra="forbid")

    response: SubmittedResponse


class TimeUpRequest(BaseModel):
    """Schema for the deadline signal sent by the client timer"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    partial: Optional[str] = Field(default=None, max_length=8000)


class ValidateAnswerRequest(BaseModel):
    """Schema for checking the format of a calculation answer"""
    model_config = ConfigDict(extra="forbid")

    answer: str = Field(..., max_length=256)


# ============================================
# Response Schemas
# ============================================

class TimerStatus(BaseModel):
    """Snapshot of an attempt's deadline for the client's polling timer"""
    model_config = ConfigDict(frozen=True)

    attempt_id: str
    status: AttemptStatus
    time_limit_seconds: int
    elapsed_seconds: int
    remaining_seconds: int
    is_expired: bool
    band: TimerBand


class CategoryProgress(BaseModel):
    """Average result for one drill category"""
    model_config = ConfigDict(frozen=True)

    category: DrillCategory
    evaluated_attempts: int
    average_score: int = Field(..., ge=0, le=100)
    best_score: int = Field(..., ge=0, le=100)
    status: MasteryStatus


class ProgressRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: DrillCategory
    suggestion: str
    target_score: int = Field(..., ge=0, le=100)


class UserProgress(BaseModel):
    """Progress across every evaluated attempt of one user"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    evaluated_attempts: int = 0
    average_score: Optional[int] = None
    mastery_level: Optional[MasteryLevel] = None
    categories: List[CategoryProgress] = Field(default_factory=list)
    strength_areas: List[DrillCategory] = Field(default_factory=list)
    improvement_areas: List[DrillCategory] = Field(default_factory=list)
    recommendations: List[ProgressRecommendation] = Field(default_factory=list)
    last_activity_at: Optional[datetime] = None


# ============================================
# Payload helpers
# ============================================

def response_text(response: Optional[DrillResponse]) -> str:
    """Flatten any response payload into the text sent for AI evaluation"""
    if response is None:
        return ""
    if isinstance(response, FreeTextResponse):
        return response.text
    if isinstance(response, NumericAnswerResponse):
        return response.answer
    if isinstance(response, CalculationStepsResponse):
        lines = list(response.steps)
        if response.final_answer:
            lines.append(f"Final answer: {response.final_answer}")
        return "\n".join(lines)
    return response.partial or ""


def numeric_answer_text(response: Optional[DrillResponse]) -> Optional[str]:
    """The numeric answer carried by a payload, if any"""
    if isinstance(response, NumericAnswerResponse):
        return response.answer
    if isinstance(response, CalculationStepsResponse):
        return response.final_answer or response.steps[-1]
    if isinstance(response, TimeUpResponse):
        return response.partial
    return None
