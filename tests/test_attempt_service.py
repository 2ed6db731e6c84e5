from __future__ import annotations

import threading
import time

import pytest

from casedrills.config import EngineConfig
from casedrills.models.database import DrillAttempt
from casedrills.models.schemas import (
    CalculationStepsResponse,
    FreeTextResponse,
    NumericAnswerResponse,
    TimeUpResponse,
)
from casedrills.services import attempt_service as attempt_service_module
from casedrills.services.ai_evaluator import EvaluationTimeoutError, UpstreamError
from casedrills.services.attempt_service import DrillAttemptService
from casedrills.services.attempt_store import InMemoryAttemptStore
from casedrills.utils.constants import AttemptStatus, DrillCategory, DrillDifficulty, PerformanceTier, TimerBand
from casedrills.utils.error_handler import (
    AlreadyInProgressError,
    AttemptLimitError,
    ConflictError,
    EvaluationFailedError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from tests.conftest import (
    START,
    FakeAIEvaluator,
    ai_result,
    calculation_template,
    case_math_template,
    market_sizing_template,
)

USER = "user-1"
OTHER_USER = "user-2"


def _numeric(answer: str) -> NumericAnswerResponse:
    return NumericAnswerResponse(answer=answer)


# ============================================
# start
# ============================================

def test_start_creates_in_progress_attempt(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")

    assert attempt.status == AttemptStatus.IN_PROGRESS
    assert attempt.started_at == START
    assert attempt.user_id == USER
    assert attempt.drill_id == "calc-revenue"
    assert attempt.version == 1
    assert attempt.completed_at is None
    assert attempt.time_spent_seconds is None


def test_start_unknown_drill(service) -> None:
    with pytest.raises(NotFoundError):
        service.start(USER, "missing")


def test_second_start_for_same_drill_is_rejected(service) -> None:
    first = service.start(USER, "calc-revenue")

    with pytest.raises(AlreadyInProgressError) as exc_info:
        service.start(USER, "calc-revenue")

    assert exc_info.value.details["attempt_id"] == first.id
    assert exc_info.value.error_code == "ALREADY_IN_PROGRESS"


def test_other_user_can_start_same_drill(service) -> None:
    service.start(USER, "calc-revenue")

    assert service.start(OTHER_USER, "calc-revenue").user_id == OTHER_USER


def test_restart_after_completion_is_allowed(service) -> None:
    first = service.start(USER, "calc-revenue")
    service.submit(first.id, USER, _numeric("876000000"))

    second = service.start(USER, "calc-revenue")

    assert second.id != first.id


def test_attempt_limit(store, ai_evaluator, clock) -> None:
    service = DrillAttemptService(store, ai_evaluator, EngineConfig(max_concurrent_attempts=2), clock=clock)
    service.start(USER, "calc-revenue")
    service.start(USER, "sizing-coffee")

    with pytest.raises(AttemptLimitError) as exc_info:
        service.start(USER, "case-math-breakeven")

    assert exc_info.value.details["limit"] == 2


# ============================================
# submit
# ============================================

def test_submit_completes_attempt(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(59.9)

    completed = service.submit(attempt.id, USER, _numeric("876000000"))

    assert completed.status == AttemptStatus.COMPLETED
    assert completed.time_spent_seconds == 59
    assert completed.version == 2
    assert completed.response == _numeric("876000000")


def test_late_submission_is_accepted(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(400)

    completed = service.submit(attempt.id, USER, _numeric("876000000"))

    assert completed.status == AttemptStatus.COMPLETED
    assert completed.time_spent_seconds == 400


def test_submit_twice_is_invalid(service) -> None:
    attempt = service.start(USER, "calc-revenue")
    service.submit(attempt.id, USER, _numeric("1"))

    with pytest.raises(InvalidStateError) as exc_info:
        service.submit(attempt.id, USER, _numeric("2"))

    assert exc_info.value.details["current_status"] == "COMPLETED"


def test_submit_before_start_is_invalid(service, store) -> None:
    pending = store.create_attempt(DrillAttempt(
        id="attempt-pending",
        user_id=USER,
        drill_id="calc-revenue",
        started_at=START,
    ))
    assert pending.status == AttemptStatus.NOT_STARTED

    with pytest.raises(InvalidStateError) as exc_info:
        service.submit(pending.id, USER, _numeric("876000000"))

    assert exc_info.value.details["current_status"] == "NOT_STARTED"
    stored = store.get_attempt(pending.id)
    assert stored.status == AttemptStatus.NOT_STARTED
    assert stored.version == pending.version
    assert stored.response is None
    assert stored.completed_at is None


def test_submit_by_other_user_changes_nothing(service, store) -> None:
    attempt = service.start(USER, "calc-revenue")

    with pytest.raises(UnauthorizedError):
        service.submit(attempt.id, OTHER_USER, _numeric("876000000"))

    stored = store.get_attempt(attempt.id)
    assert stored.status == AttemptStatus.IN_PROGRESS
    assert stored.version == attempt.version
    assert stored.response is None


def test_free_text_is_rejected_for_numeric_drill(service, store) -> None:
    attempt = service.start(USER, "calc-revenue")

    with pytest.raises(ValidationError):
        service.submit(attempt.id, USER, FreeTextResponse(text="About 900 million"))

    assert store.get_attempt(attempt.id).status == AttemptStatus.IN_PROGRESS


def test_numeric_answer_is_rejected_for_free_text_drill(service) -> None:
    attempt = service.start(USER, "sizing-coffee")

    with pytest.raises(ValidationError):
        service.submit(attempt.id, USER, _numeric("42"))


def test_time_up_payload_cannot_be_submitted_directly(service) -> None:
    attempt = service.start(USER, "calc-revenue")

    with pytest.raises(ValidationError):
        service.submit(attempt.id, USER, TimeUpResponse(partial="8"))


def test_steps_are_accepted_for_every_category(service) -> None:
    calc = service.start(USER, "calc-revenue")
    sizing = service.start(USER, "sizing-coffee")
    steps = CalculationStepsResponse(steps=["2.4M x 365", "876,000,000"])

    assert service.submit(calc.id, USER, steps).status == AttemptStatus.COMPLETED
    assert service.submit(sizing.id, USER, steps).status == AttemptStatus.COMPLETED


def test_overlong_response_is_rejected(store, ai_evaluator, clock) -> None:
    service = DrillAttemptService(store, ai_evaluator, EngineConfig(max_response_length=10), clock=clock)
    attempt = service.start(USER, "sizing-coffee")

    with pytest.raises(ValidationError) as exc_info:
        service.submit(attempt.id, USER, FreeTextResponse(text="x" * 11))

    assert exc_info.value.details["max_length"] == 10


def test_concurrent_submits_apply_exactly_once(ai_evaluator, config, clock) -> None:
    class RacingStore(InMemoryAttemptStore):
        """Holds readers at a barrier so both see IN_PROGRESS before either writes"""

        barrier = None

        def get_attempt(self, attempt_id):
            attempt = super().get_attempt(attempt_id)
            if self.barrier is not None:
                self.barrier.wait(timeout=5)
            return attempt

    store = RacingStore([calculation_template()])
    service = DrillAttemptService(store, ai_evaluator, config, clock=clock)
    attempt = service.start(USER, "calc-revenue")
    store.barrier = threading.Barrier(2)

    outcomes = []

    def submit(answer: str) -> None:
        try:
            outcomes.append(service.submit(attempt.id, USER, _numeric(answer)))
        except (ConflictError, InvalidStateError) as e:
            outcomes.append(e)

    threads = [threading.Thread(target=submit, args=(answer,)) for answer in ("1", "2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    store.barrier = None
    successes = [o for o in outcomes if not isinstance(o, Exception)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)
    assert failures[0].details["retryable"] is True

    stored = store.get_attempt(attempt.id)
    assert stored.version == 2
    assert stored.response == successes[0].response


# ============================================
# time_up
# ============================================

def test_time_up_before_deadline_is_rejected(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(100)

    with pytest.raises(InvalidStateError) as exc_info:
        service.time_up(attempt.id, USER)

    assert exc_info.value.details["remaining_seconds"] == 200


def test_time_up_keeps_partial_work(service, clock) -> None:
    attempt = service.start(USER, "sizing-coffee")
    clock.advance(600)

    completed = service.time_up(attempt.id, USER, partial="Population 83M, 30% drink takeaway")

    assert completed.status == AttemptStatus.COMPLETED
    assert completed.response == TimeUpResponse(partial="Population 83M, 30% drink takeaway")
    assert completed.time_spent_seconds == 600


def test_time_up_then_evaluate_end_to_end(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(301)

    assert service.timer_status(attempt.id, USER).is_expired is True

    completed = service.time_up(attempt.id, USER)
    assert completed.response == TimeUpResponse(partial=None)

    evaluated = service.evaluate(attempt.id, USER)

    assert evaluated.status == AttemptStatus.EVALUATED
    assert 0 <= evaluated.score <= 100
    assert evaluated.score == 0
    assert evaluated.evaluation.metrics.speed_score == 0


# ============================================
# evaluate
# ============================================

def test_numeric_evaluation_exact_answer(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(60)
    service.submit(attempt.id, USER, _numeric("876000000"))
    clock.advance(5)

    evaluated = service.evaluate(attempt.id, USER)

    assert evaluated.status == AttemptStatus.EVALUATED
    assert evaluated.score == 100
    assert evaluated.evaluated_at == clock.now()
    assert evaluated.version == 3
    assert evaluated.criteria_scores == {"accuracy": 100, "speed": 80}

    evaluation = evaluated.evaluation
    assert evaluation.attempt_id == attempt.id
    assert evaluation.metrics.efficiency == 90
    assert evaluation.metrics.performance == PerformanceTier.EXCELLENT
    assert evaluation.strengths == [
        "Excellent accuracy in calculation",
        "Strong balance of speed and accuracy",
    ]
    assert evaluation.feedback == "Excellent performance with 100% accuracy and 80% speed efficiency."


def test_numeric_evaluation_ten_percent_off(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(60)
    service.submit(attempt.id, USER, _numeric("963600000"))

    evaluated = service.evaluate(attempt.id, USER)

    assert evaluated.score == 0
    assert "Review calculation methodology for better accuracy" in evaluated.evaluation.improvements
    assert evaluated.evaluation.metrics.performance == PerformanceTier.NEEDS_IMPROVEMENT


def test_numeric_evaluation_uses_final_step(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(30)
    service.submit(attempt.id, USER, CalculationStepsResponse(steps=["2.4M x 365", "876,000,000"]))

    assert service.evaluate(attempt.id, USER).score == 100


def test_case_math_zero_answer(service, clock) -> None:
    attempt = service.start(USER, "case-math-breakeven")
    clock.advance(12)
    service.submit(attempt.id, USER, _numeric("1"))

    evaluated = service.evaluate(attempt.id, USER)

    assert evaluated.score == 80
    assert "Applied case math principles effectively" in evaluated.evaluation.strengths
    assert "Good approximation within acceptable range" in evaluated.evaluation.strengths


def test_engine_tolerance_applies_when_template_has_none(store, ai_evaluator, clock) -> None:
    template = calculation_template()
    store.add_template(template.model_copy(update={
        "id": "calc-default-tolerance",
        "answer_key": template.answer_key.model_copy(update={"tolerance_percent": None}),
    }))
    service = DrillAttemptService(store, ai_evaluator, EngineConfig(tolerance_percent=10), clock=clock)
    attempt = service.start(USER, "calc-default-tolerance")
    service.submit(attempt.id, USER, _numeric("867240000"))  # 1% low

    assert service.evaluate(attempt.id, USER).score == 90


def test_ai_evaluation(service, ai_evaluator, clock, config) -> None:
    attempt = service.start(USER, "sizing-coffee")
    clock.advance(120)
    service.submit(attempt.id, USER, FreeTextResponse(text="Segment by city size, then cups per day"))

    evaluated = service.evaluate(attempt.id, USER)

    assert ai_evaluator.calls == 1
    assert ai_evaluator.timeouts == [config.ai_timeout_ms]
    assert evaluated.status == AttemptStatus.EVALUATED
    assert evaluated.score == 80
    assert evaluated.criteria_scores == {"structure": 80, "assumptions": 80, "math": 80}

    evaluation = evaluated.evaluation
    assert evaluation.metrics.speed_score == 60
    assert evaluation.metrics.efficiency == 70
    assert evaluation.metrics.performance == PerformanceTier.SATISFACTORY
    assert evaluation.feedback == (
        "Satisfactory performance with 80% accuracy and 60% speed efficiency. "
        "Clear segmentation of the market."
    )
    assert evaluation.strengths[0] == "Structured approach"
    assert evaluation.improvements == [
        "State assumptions explicitly",
        "Practice mental math techniques for faster calculations",
    ]


def test_ai_evaluation_retries_with_linear_backoff(store, config, clock, sleeps) -> None:
    ai = FakeAIEvaluator(outcomes=[EvaluationTimeoutError("slow"), UpstreamError("bad json"), ai_result(90)])
    service = DrillAttemptService(store, ai, config, clock=clock, sleep=sleeps.append)
    attempt = service.start(USER, "sizing-coffee")
    service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    evaluated = service.evaluate(attempt.id, USER)

    assert ai.calls == 3
    assert sleeps == [0.1, 0.2]
    assert evaluated.score == 90


def test_ai_evaluation_failure_leaves_attempt_completed(store, config, clock, sleeps) -> None:
    ai = FakeAIEvaluator(outcomes=[UpstreamError("model unavailable")])
    service = DrillAttemptService(store, ai, config, clock=clock, sleep=sleeps.append)
    attempt = service.start(USER, "sizing-coffee")
    completed = service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    with pytest.raises(EvaluationFailedError) as exc_info:
        service.evaluate(attempt.id, USER)

    assert ai.calls == config.ai_max_retries + 1 == 4
    assert sleeps == [0.1, 0.2, 0.3]
    assert exc_info.value.details["attempts"] == 4
    assert exc_info.value.status_code == 502
    assert exc_info.value.details["last_error"] == "model unavailable"

    stored = store.get_attempt(attempt.id)
    assert stored.status == AttemptStatus.COMPLETED
    assert stored.version == completed.version
    assert stored.evaluation is None
    assert stored.score is None


def test_zero_retries_makes_a_single_call(store, clock, sleeps) -> None:
    ai = FakeAIEvaluator(outcomes=[UpstreamError("model unavailable")])
    service = DrillAttemptService(store, ai, EngineConfig(ai_max_retries=0), clock=clock, sleep=sleeps.append)
    attempt = service.start(USER, "sizing-coffee")
    service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    with pytest.raises(EvaluationFailedError):
        service.evaluate(attempt.id, USER)

    assert ai.calls == 1
    assert sleeps == []


def test_evaluated_at_is_stamped_after_the_ai_answers(store, config, clock) -> None:
    class SlowModel(FakeAIEvaluator):
        def evaluate(self, template, attempt, timeout_ms):
            clock.advance(45)
            return super().evaluate(template, attempt, timeout_ms)

    service = DrillAttemptService(store, SlowModel(outcomes=[ai_result()]), config, clock=clock)
    attempt = service.start(USER, "sizing-coffee")
    clock.advance(60)
    service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    evaluated = service.evaluate(attempt.id, USER)

    assert evaluated.evaluated_at == START.replace(minute=1, second=45)
    assert evaluated.evaluation.evaluated_at == evaluated.evaluated_at


def test_missing_ai_evaluator_fails_evaluation(store, config, clock) -> None:
    service = DrillAttemptService(store, None, config, clock=clock)
    attempt = service.start(USER, "sizing-coffee")
    service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    with pytest.raises(EvaluationFailedError):
        service.evaluate(attempt.id, USER)

    assert store.get_attempt(attempt.id).status == AttemptStatus.COMPLETED


def test_slow_ai_evaluation_logs_budget_warning(store, clock, monkeypatch) -> None:
    class SlowEvaluator:
        def evaluate(self, template, attempt, timeout_ms):
            time.sleep(0.02)
            return ai_result()

    warnings = []
    monkeypatch.setattr(attempt_service_module.logger, "warning", lambda msg, *a, **kw: warnings.append(msg))

    service = DrillAttemptService(store, SlowEvaluator(), EngineConfig(ai_soft_budget_ms=1), clock=clock)
    attempt = service.start(USER, "sizing-coffee")
    service.submit(attempt.id, USER, FreeTextResponse(text="An answer"))

    assert service.evaluate(attempt.id, USER).status == AttemptStatus.EVALUATED
    assert any("budget" in message for message in warnings)


def test_evaluate_requires_completed(service) -> None:
    attempt = service.start(USER, "calc-revenue")

    with pytest.raises(InvalidStateError):
        service.evaluate(attempt.id, USER)


def test_evaluate_twice_is_invalid(service) -> None:
    attempt = service.start(USER, "calc-revenue")
    service.submit(attempt.id, USER, _numeric("876000000"))
    service.evaluate(attempt.id, USER)

    with pytest.raises(InvalidStateError):
        service.evaluate(attempt.id, USER)


def test_evaluate_by_other_user_is_rejected(service, store) -> None:
    attempt = service.start(USER, "calc-revenue")
    service.submit(attempt.id, USER, _numeric("876000000"))

    with pytest.raises(UnauthorizedError):
        service.evaluate(attempt.id, OTHER_USER)

    assert store.get_attempt(attempt.id).status == AttemptStatus.COMPLETED


# ============================================
# abandon
# ============================================

def test_abandon(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(10)

    abandoned = service.abandon(attempt.id, USER)

    assert abandoned.status == AttemptStatus.ABANDONED
    assert abandoned.abandoned_at == clock.now()
    with pytest.raises(InvalidStateError):
        service.submit(attempt.id, USER, _numeric("1"))
    with pytest.raises(InvalidStateError):
        service.abandon(attempt.id, USER)


def test_abandoned_attempt_frees_the_drill(service) -> None:
    attempt = service.start(USER, "calc-revenue")
    service.abandon(attempt.id, USER)

    assert service.start(USER, "calc-revenue").status == AttemptStatus.IN_PROGRESS


# ============================================
# reads
# ============================================

def test_timer_status_bands(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")

    assert service.timer_status(attempt.id, USER).band == TimerBand.NORMAL

    clock.advance(250)
    status = service.timer_status(attempt.id, USER)
    assert status.elapsed_seconds == 250
    assert status.remaining_seconds == 50
    assert status.band == TimerBand.WARNING
    assert status.is_expired is False

    clock.advance(30)
    assert service.timer_status(attempt.id, USER).band == TimerBand.CRITICAL


def test_timer_stops_at_completion(service, clock) -> None:
    attempt = service.start(USER, "calc-revenue")
    clock.advance(100)
    service.submit(attempt.id, USER, _numeric("1"))
    clock.advance(1000)

    status = service.timer_status(attempt.id, USER)

    assert status.status == AttemptStatus.COMPLETED
    assert status.elapsed_seconds == 100
    assert status.remaining_seconds == 200


def test_get_evaluation(service) -> None:
    attempt = service.start(USER, "calc-revenue")
    service.submit(attempt.id, USER, _numeric("876000000"))

    with pytest.raises(InvalidStateError):
        service.get_evaluation(attempt.id, USER)

    service.evaluate(attempt.id, USER)
    assert service.get_evaluation(attempt.id, USER).score == 100


def test_list_attempts_filters_and_orders(service, clock) -> None:
    first = service.start(USER, "calc-revenue")
    clock.advance(5)
    second = service.start(USER, "sizing-coffee")
    service.submit(first.id, USER, _numeric("1"))
    service.start(OTHER_USER, "calc-revenue")

    attempts = service.list_attempts(USER)
    assert [a.id for a in attempts] == [second.id, first.id]

    completed = service.list_attempts(USER, status=AttemptStatus.COMPLETED)
    assert [a.id for a in completed] == [first.id]

    by_drill = service.list_attempts(USER, drill_id="sizing-coffee")
    assert [a.id for a in by_drill] == [second.id]


def test_get_attempt_ownership(service) -> None:
    attempt = service.start(USER, "calc-revenue")

    assert service.get_attempt(attempt.id, USER).id == attempt.id
    with pytest.raises(UnauthorizedError):
        service.get_attempt(attempt.id, OTHER_USER)
    with pytest.raises(NotFoundError):
        service.get_attempt("missing", USER)


def test_template_reads(service) -> None:
    assert {t.id for t in service.list_templates()} == {
        calculation_template().id,
        case_math_template().id,
        market_sizing_template().id,
    }
    assert [t.id for t in service.list_templates(category=DrillCategory.CASE_MATH)] == ["case-math-breakeven"]
    assert [t.id for t in service.list_templates(difficulty=DrillDifficulty.ADVANCED)] == ["sizing-coffee"]
    assert service.get_template("calc-revenue").title == "Annual revenue"


def test_validate_answer_uses_answer_key_constraints(store, ai_evaluator, config, clock) -> None:
    template = calculation_template()
    store.add_template(template.model_copy(update={
        "id": "calc-constrained",
        "answer_key": template.answer_key.model_copy(update={"decimal_places": 1, "allowed_operators": ["*"]}),
    }))
    service = DrillAttemptService(store, ai_evaluator, config, clock=clock)

    assert service.validate_answer("calc-constrained", "2.4 * 365") is True
    assert service.validate_answer("calc-constrained", "2.45 * 365") is False
    assert service.validate_answer("calc-constrained", "2.4 + 365") is False
    assert service.validate_answer("sizing-coffee", "12 + 3") is True
