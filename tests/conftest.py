from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from casedrills.config import EngineConfig
from casedrills.models.database import AnswerKey, DrillTemplate, EvaluationCriterion
from casedrills.services.ai_evaluator import AIEvaluationResult
from casedrills.services.attempt_service import DrillAttemptService
from casedrills.services.attempt_store import InMemoryAttemptStore
from casedrills.utils.constants import DrillCategory, DrillDifficulty

START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


@dataclass
class FakeClock:
    t: datetime = START

    def now(self) -> datetime:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += timedelta(seconds=seconds)


@dataclass
class FakeAIEvaluator:
    """Replays scripted outcomes; the last one repeats once the script runs out"""

    outcomes: List[object] = field(default_factory=list)
    calls: int = 0
    timeouts: List[int] = field(default_factory=list)

    def evaluate(self, template, attempt, timeout_ms):
        self.calls += 1
        self.timeouts.append(timeout_ms)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def ai_result(overall: int = 80) -> AIEvaluationResult:
    return AIEvaluationResult(
        overall_score=overall,
        criteria_scores={"structure": overall, "assumptions": overall, "math": overall},
        feedback="Clear segmentation of the market.",
        strengths=["Structured approach"],
        improvements=["State assumptions explicitly"],
    )


def calculation_template() -> DrillTemplate:
    return DrillTemplate(
        id="calc-revenue",
        title="Annual revenue",
        category=DrillCategory.CALCULATIONS,
        difficulty=DrillDifficulty.BEGINNER,
        prompt="A retailer sells 2.4M units a day at $1. What is annual revenue, rounded to 365 days?",
        time_limit_seconds=300,
        criteria=[EvaluationCriterion(name="accuracy", weight=1.0)],
        answer_key=AnswerKey(correct_answer=876000000, tolerance_percent=1),
    )


def case_math_template() -> DrillTemplate:
    return DrillTemplate(
        id="case-math-breakeven",
        title="Break-even change",
        category=DrillCategory.CASE_MATH,
        prompt="By how many units does break-even volume change after the price cut?",
        time_limit_seconds=120,
        criteria=[
            EvaluationCriterion(name="setup", weight=0.4),
            EvaluationCriterion(name="accuracy", weight=0.6),
        ],
        answer_key=AnswerKey(correct_answer=0, tolerance_percent=5),
    )


def market_sizing_template() -> DrillTemplate:
    return DrillTemplate(
        id="sizing-coffee",
        title="Coffee market",
        category=DrillCategory.MARKET_SIZING,
        difficulty=DrillDifficulty.ADVANCED,
        prompt="Estimate the annual market for takeaway coffee in Germany.",
        time_limit_seconds=600,
        criteria=[
            EvaluationCriterion(name="structure", weight=0.4),
            EvaluationCriterion(name="assumptions", weight=0.3),
            EvaluationCriterion(name="math", weight=0.3),
        ],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore([calculation_template(), case_math_template(), market_sizing_template()])


@pytest.fixture
def ai_evaluator() -> FakeAIEvaluator:
    return FakeAIEvaluator(outcomes=[ai_result()])


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def service(store, ai_evaluator, config, clock, sleeps) -> DrillAttemptService:
    return DrillAttemptService(store, ai_evaluator, config, clock=clock, sleep=sleeps.append)
