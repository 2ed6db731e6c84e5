"""
Attempt state machine for timed drills

Moves an attempt NOT_STARTED -> IN_PROGRESS -> COMPLETED -> EVALUATED, or
IN_PROGRESS -> ABANDONED. Every transition builds a new record and persists it
with a compare-and-swap on ``version``, so a transition is either fully applied
or not applied at all.
"""

import time
import uuid
from typing import Callable, List, Optional

from casedrills.config import EngineConfig
from casedrills.models.database import DrillAttempt, DrillEvaluation, DrillTemplate
from casedrills.models.schemas import (
    DrillResponse,
    FreeTextResponse,
    NumericAnswerResponse,
    TimerStatus,
    TimeUpResponse,
    UserProgress,
    numeric_answer_text,
    response_text,
)
from casedrills.services.ai_evaluator import AIEvaluationError, AIEvaluationResult, AIEvaluator
from casedrills.services.attempt_store import AttemptStore
from casedrills.services.calculator import evaluate_calculation, validate_calculation
from casedrills.services.feedback_service import build_evaluation
from casedrills.services.metrics import calculate_metrics
from casedrills.services.progress import summarize_progress
from casedrills.services.timer import DrillTimer
from casedrills.utils.clock import Clock, SystemClock
from casedrills.utils.constants import (
    AttemptStatus,
    DrillCategory,
    DrillDifficulty,
    ERROR_MESSAGES,
    NUMERIC_CATEGORIES,
)
from casedrills.utils.error_handler import (
    AlreadyInProgressError,
    AttemptLimitError,
    EvaluationFailedError,
    InvalidStateError,
    UnauthorizedError,
    ValidationError,
)
from casedrills.utils.logger import logger


class DrillAttemptService:
    """Service owning every state transition of a drill attempt"""

    def __init__(
        self,
        store: AttemptStore,
        ai_evaluator: Optional[AIEvaluator],
        config: EngineConfig,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the state machine

        Args:
            store: Storage collaborator with compare-and-swap saves
            ai_evaluator: Collaborator for non-deterministic drills; None disables them
            config: Immutable engine configuration
            clock: Time source, injectable for tests
            sleep: Backoff between AI retries, injectable for tests
        """
        self.store = store
        self.ai_evaluator = ai_evaluator
        self.config = config
        self.clock = clock or SystemClock()
        self._sleep = sleep

    # ============================================
    # Transitions
    # ============================================

    def start(self, user_id: str, drill_id: str) -> DrillAttempt:
        """
        Start a new attempt for a drill

        Raises:
            NotFoundError: If the drill does not exist
            AlreadyInProgressError: If the user already has this drill in progress
            AttemptLimitError: If the user has too many attempts in progress
        """
        template = self.store.get_template(drill_id)

        active = self.store.find_attempts(user_id, status=AttemptStatus.IN_PROGRESS)
        for existing in active:
            if existing.drill_id == drill_id:
                raise AlreadyInProgressError(existing.id, drill_id)
        if len(active) >= self.config.max_concurrent_attempts:
            raise AttemptLimitError(self.config.max_concurrent_attempts)

        attempt = DrillAttempt(
            id=str(uuid.uuid4()),
            user_id=user_id,
            drill_id=template.id,
            status=AttemptStatus.IN_PROGRESS,
            started_at=self.clock.now(),
        )
        created = self.store.create_attempt(attempt)

        logger.info(
            f"Drill attempt started ({template.category.value}, {template.time_limit_seconds}s)",
            extra={"attempt_id": created.id, "user_id": user_id, "drill_id": drill_id}
        )
        return created

    def submit(self, attempt_id: str, user_id: str, response: DrillResponse) -> DrillAttempt:
        """
        Submit a response and complete the attempt

        Late submissions are accepted; the extra time counts against the speed score.

        Raises:
            UnauthorizedError: If the attempt belongs to another user
            InvalidStateError: If the attempt is not in progress
            ValidationError: If the payload does not fit the drill category
        """
        attempt = self._get_owned(attempt_id, user_id)
        self._require_status(attempt, AttemptStatus.IN_PROGRESS, "submit")
        template = self.store.get_template(attempt.drill_id)

        if isinstance(response, TimeUpResponse):
            raise ValidationError(
                "Time-up responses are recorded by the time-up operation",
                details={"kind": response.kind}
            )
        self._validate_response(template, response)

        now = self.clock.now()
        if DrillTimer(attempt.started_at, template.time_limit_seconds).is_expired(now):
            logger.info(
                "Late submission accepted after the time limit",
                extra={"attempt_id": attempt.id, "user_id": user_id}
            )

        return self._complete(attempt, response, now, "submit")

    def time_up(self, attempt_id: str, user_id: str, partial: Optional[str] = None) -> DrillAttempt:
        """
        Force the submission of an attempt whose deadline has passed

        Raises:
            InvalidStateError: If the attempt is not in progress or still has time left
        """
        attempt = self._get_owned(attempt_id, user_id)
        self._require_status(attempt, AttemptStatus.IN_PROGRESS, "time_up")
        template = self.store.get_template(attempt.drill_id)

        now = self.clock.now()
        timer = DrillTimer(attempt.started_at, template.time_limit_seconds)
        if not timer.is_expired(now):
            raise InvalidStateError(
                attempt.status.value,
                "time_up",
                message=ERROR_MESSAGES["TIME_REMAINING"],
                details={"remaining_seconds": timer.remaining_seconds(now)}
            )

        if partial is not None and len(partial) > self.config.max_response_length:
            raise ValidationError(
                f"Response exceeds {self.config.max_response_length} characters",
                details={"max_length": self.config.max_response_length}
            )

        return self._complete(attempt, TimeUpResponse(partial=partial or None), now, "time_up")

    def evaluate(self, attempt_id: str, user_id: str) -> DrillAttempt:
        """
        Score a completed attempt and attach its evaluation

        Deterministic drills go through the numeric evaluator; all others go to
        the AI collaborator, retried with linear backoff.

        Raises:
            InvalidStateError: If the attempt is not completed
            EvaluationFailedError: If the AI collaborator failed on every try;
                the attempt stays COMPLETED
            ConflictError: If the attempt changed while it was being evaluated
        """
        attempt = self._get_owned(attempt_id, user_id)
        self._require_status(attempt, AttemptStatus.COMPLETED, "evaluate")
        template = self.store.get_template(attempt.drill_id)

        if template.is_deterministic:
            now = self.clock.now()
            score, criteria_scores, evaluation = self._evaluate_numeric(template, attempt, now)
        else:
            result = self._call_ai_evaluator(template, attempt)
            # Stamped after the model answers, retries included
            now = self.clock.now()
            score, criteria_scores, evaluation = self._evaluate_with_ai(template, attempt, result, now)

        updated = attempt.model_copy(update={
            "status": AttemptStatus.EVALUATED,
            "score": score,
            "criteria_scores": criteria_scores,
            "evaluation": evaluation,
            "evaluated_at": now,
        })
        saved = self.store.save_attempt(updated, expected_version=attempt.version)

        logger.info(
            f"Drill attempt evaluated: score={score}, tier={evaluation.metrics.performance.value}",
            extra={"attempt_id": attempt.id, "user_id": user_id, "drill_id": attempt.drill_id}
        )
        return saved

    def abandon(self, attempt_id: str, user_id: str) -> DrillAttempt:
        """Abandon an attempt that is still in progress"""
        attempt = self._get_owned(attempt_id, user_id)
        self._require_status(attempt, AttemptStatus.IN_PROGRESS, "abandon")

        updated = attempt.model_copy(update={
            "status": AttemptStatus.ABANDONED,
            "abandoned_at": self.clock.now(),
        })
        saved = self.store.save_attempt(updated, expected_version=attempt.version)

        logger.info("Drill attempt abandoned", extra={"attempt_id": attempt.id, "user_id": user_id})
        return saved

    # ============================================
    # Reads
    # ============================================

    def get_attempt(self, attempt_id: str, user_id: str) -> DrillAttempt:
        return self._get_owned(attempt_id, user_id)

    def list_attempts(
        self,
        user_id: str,
        status: Optional[AttemptStatus] = None,
        drill_id: Optional[str] = None,
    ) -> List[DrillAttempt]:
        return self.store.find_attempts(user_id, status=status, drill_id=drill_id)

    def timer_status(self, attempt_id: str, user_id: str) -> TimerStatus:
        """
        Deadline snapshot for the client's polling timer

        The clock stops at completion or abandonment, so finished attempts
        report the time they actually used.
        """
        attempt = self._get_owned(attempt_id, user_id)
        template = self.store.get_template(attempt.drill_id)
        timer = DrillTimer(attempt.started_at, template.time_limit_seconds)
        now = attempt.completed_at or attempt.abandoned_at or self.clock.now()

        return TimerStatus(
            attempt_id=attempt.id,
            status=attempt.status,
            time_limit_seconds=template.time_limit_seconds,
            elapsed_seconds=timer.elapsed_seconds(now),
            remaining_seconds=timer.remaining_seconds(now),
            is_expired=timer.is_expired(now),
            band=timer.band(now),
        )

    def get_evaluation(self, attempt_id: str, user_id: str) -> DrillEvaluation:
        attempt = self._get_owned(attempt_id, user_id)
        self._require_status(attempt, AttemptStatus.EVALUATED, "get_evaluation")
        return attempt.evaluation

    def list_templates(
        self,
        category: Optional[DrillCategory] = None,
        difficulty: Optional[DrillDifficulty] = None,
    ) -> List[DrillTemplate]:
        return self.store.list_templates(category=category, difficulty=difficulty)

    def get_template(self, drill_id: str) -> DrillTemplate:
        return self.store.get_template(drill_id)

    def progress(self, user_id: str) -> UserProgress:
        """Average score, mastery status and suggestions per drill category"""
        attempts = self.store.find_attempts(user_id, status=AttemptStatus.EVALUATED)
        drill_categories = {template.id: template.category for template in self.store.list_templates()}
        summary = summarize_progress(user_id, attempts, drill_categories)

        logger.info(
            f"Progress computed over {summary.evaluated_attempts} evaluated attempts",
            extra={"user_id": user_id}
        )
        return summary

    def validate_answer(self, drill_id: str, answer: str) -> bool:
        """Check an answer's format against the drill's input constraints"""
        template = self.store.get_template(drill_id)
        key = template.answer_key
        if key is None:
            return validate_calculation(answer)
        return validate_calculation(
            answer,
            max_digits=key.max_digits,
            decimal_places=key.decimal_places,
            allowed_operators=key.allowed_operators,
        )

    # ============================================
    # Internals
    # ============================================

    def _get_owned(self, attempt_id: str, user_id: str) -> DrillAttempt:
        attempt = self.store.get_attempt(attempt_id)
        if attempt.user_id != user_id:
            logger.warning(
                "Rejected access to another user's attempt",
                extra={"attempt_id": attempt_id, "user_id": user_id}
            )
            raise UnauthorizedError(details={"attempt_id": attempt_id})
        return attempt

    @staticmethod
    def _require_status(attempt: DrillAttempt, expected: AttemptStatus, operation: str) -> None:
        if attempt.status != expected:
            raise InvalidStateError(
                attempt.status.value,
                operation,
                details={"attempt_id": attempt.id, "expected_status": expected.value}
            )

    def _validate_response(self, template: DrillTemplate, response: DrillResponse) -> None:
        numeric = template.category in NUMERIC_CATEGORIES
        if isinstance(response, NumericAnswerResponse) and not numeric:
            raise ValidationError(
                f"Numeric answers are not accepted for {template.category.value} drills",
                details={"kind": response.kind, "category": template.category.value}
            )
        if isinstance(response, FreeTextResponse) and numeric:
            raise ValidationError(
                f"{template.category.value} drills expect a numeric answer or calculation steps",
                details={"kind": response.kind, "category": template.category.value}
            )

        length = len(response_text(response))
        if length > self.config.max_response_length:
            raise ValidationError(
                f"Response exceeds {self.config.max_response_length} characters",
                details={"length": length, "max_length": self.config.max_response_length}
            )

    def _complete(self, attempt: DrillAttempt, response: DrillResponse, now, operation: str) -> DrillAttempt:
        updated = attempt.model_copy(update={
            "status": AttemptStatus.COMPLETED,
            "response": response,
            "completed_at": now,
        })
        saved = self.store.save_attempt(updated, expected_version=attempt.version)

        logger.info(
            f"Drill attempt completed via {operation} in {saved.time_spent_seconds}s",
            extra={"attempt_id": attempt.id, "user_id": attempt.user_id}
        )
        return saved

    def _metrics(self, attempt: DrillAttempt, accuracy_score: int):
        return calculate_metrics(
            attempt.time_spent_seconds or 0,
            accuracy_score,
            target_time_seconds=self.config.target_time_seconds,
            target_accuracy=self.config.target_accuracy,
            max_allowed_seconds=self.config.max_calculation_seconds,
        )

    def _evaluate_numeric(self, template: DrillTemplate, attempt: DrillAttempt, now):
        key = template.answer_key
        result = evaluate_calculation(
            numeric_answer_text(attempt.response),
            key.correct_answer,
            tolerance_percent=key.tolerance_percent or self.config.tolerance_percent,
            require_exact_match=key.require_exact_match,
        )
        metrics = self._metrics(attempt, result.score)
        criteria_scores = {"accuracy": result.score, "speed": metrics.speed_score}

        evaluation = build_evaluation(
            attempt_id=attempt.id,
            score=result.score,
            metrics=metrics,
            category=template.category,
            evaluated_at=now,
            evaluator_strengths=result.strengths,
            evaluator_improvements=result.improvements,
            criteria_scores=criteria_scores,
        )
        return result.score, criteria_scores, evaluation

    def _evaluate_with_ai(self, template: DrillTemplate, attempt: DrillAttempt, result: AIEvaluationResult, now):
        metrics = self._metrics(attempt, result.overall_score)

        evaluation = build_evaluation(
            attempt_id=attempt.id,
            score=result.overall_score,
            metrics=metrics,
            category=template.category,
            evaluated_at=now,
            evaluator_strengths=result.strengths,
            evaluator_improvements=result.improvements,
            external_feedback=result.feedback,
            criteria_scores=result.criteria_scores,
        )
        return result.overall_score, dict(result.criteria_scores), evaluation

    def _call_ai_evaluator(self, template: DrillTemplate, attempt: DrillAttempt) -> AIEvaluationResult:
        """Call the AI collaborator with bounded retries and linear backoff"""
        if self.ai_evaluator is None:
            raise EvaluationFailedError(attempt.id, 0, "AI evaluator not configured")

        # One initial call plus ai_max_retries retries
        total_calls = self.config.ai_max_retries + 1
        last_error: Optional[str] = None

        for attempt_number in range(1, total_calls + 1):
            started = time.perf_counter()
            try:
                result = self.ai_evaluator.evaluate(template, attempt, self.config.ai_timeout_ms)
            except AIEvaluationError as e:
                last_error = str(e)
                logger.warning(
                    f"AI evaluation attempt {attempt_number}/{total_calls} failed: {last_error}",
                    extra={"attempt_id": attempt.id}
                )
                if attempt_number < total_calls:
                    self._sleep(self.config.retry_backoff_ms * attempt_number / 1000)
                continue

            duration_ms = round((time.perf_counter() - started) * 1000)
            if duration_ms > self.config.ai_soft_budget_ms:
                logger.warning(
                    f"AI evaluation exceeded the {self.config.ai_soft_budget_ms}ms budget",
                    extra={"attempt_id": attempt.id, "duration_ms": duration_ms}
                )
            return result

        logger.error(
            f"AI evaluation failed after {total_calls} attempts",
            extra={"attempt_id": attempt.id, "error_code": "EVALUATION_FAILED"}
        )
        raise EvaluationFailedError(attempt.id, total_calls, last_error)
