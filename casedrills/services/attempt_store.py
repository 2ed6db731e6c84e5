"""
Storage collaborator contract and an in-memory implementation
"""

from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol

from casedrills.models.database import DrillAttempt, DrillTemplate
from casedrills.utils.constants import AttemptStatus, DrillCategory, DrillDifficulty
from casedrills.utils.error_handler import AlreadyInProgressError, ConflictError, NotFoundError


class AttemptStore(Protocol):
    """
    Persistence used by the attempt state machine.

    ``save_attempt`` is a compare-and-swap on ``version``: it succeeds only
    when the stored record still carries ``expected_version`` and returns the
    record with the version incremented. ``create_attempt`` rejects a second
    IN_PROGRESS attempt for the same user and drill.
    """

    def get_template(self, drill_id: str) -> DrillTemplate:
        ...

    def list_templates(
        self,
        category: Optional[DrillCategory] = None,
        difficulty: Optional[DrillDifficulty] = None,
    ) -> List[DrillTemplate]:
        ...

    def get_attempt(self, attempt_id: str) -> DrillAttempt:
        ...

    def find_attempts(
        self,
        user_id: str,
        status: Optional[AttemptStatus] = None,
        drill_id: Optional[str] = None,
    ) -> List[DrillAttempt]:
        ...

    def create_attempt(self, attempt: DrillAttempt) -> DrillAttempt:
        ...

    def save_attempt(self, attempt: DrillAttempt, expected_version: int) -> DrillAttempt:
        ...


class InMemoryAttemptStore:
    """Thread-safe in-process store for local development and tests"""

    def __init__(self, templates: Iterable[DrillTemplate] = ()):
        self._templates: Dict[str, DrillTemplate] = {template.id: template for template in templates}
        self._attempts: Dict[str, DrillAttempt] = {}
        self._lock = Lock()

    def add_template(self, template: DrillTemplate) -> None:
        with self._lock:
            self._templates[template.id] = template

    def get_template(self, drill_id: str) -> DrillTemplate:
        with self._lock:
            template = self._templates.get(drill_id)
        if template is None:
            raise NotFoundError("Drill", drill_id)
        return template

    def list_templates(
        self,
        category: Optional[DrillCategory] = None,
        difficulty: Optional[DrillDifficulty] = None,
    ) -> List[DrillTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        return [
            template for template in templates
            if (category is None or template.category == category)
            and (difficulty is None or template.difficulty == difficulty)
        ]

    def get_attempt(self, attempt_id: str) -> DrillAttempt:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None:
                raise NotFoundError("Attempt", attempt_id)
            return attempt.model_copy(deep=True)

    def find_attempts(
        self,
        user_id: str,
        status: Optional[AttemptStatus] = None,
        drill_id: Optional[str] = None,
    ) -> List[DrillAttempt]:
        with self._lock:
            matches = [
                attempt.model_copy(deep=True)
                for attempt in self._attempts.values()
                if attempt.user_id == user_id
                and (status is None or attempt.status == status)
                and (drill_id is None or attempt.drill_id == drill_id)
            ]
        return sorted(matches, key=lambda attempt: attempt.started_at, reverse=True)

    def create_attempt(self, attempt: DrillAttempt) -> DrillAttempt:
        with self._lock:
            if attempt.id in self._attempts:
                raise ConflictError(details={"attempt_id": attempt.id})
            for existing in self._attempts.values():
                if (
                    existing.user_id == attempt.user_id
                    and existing.drill_id == attempt.drill_id
                    and existing.status == AttemptStatus.IN_PROGRESS
                ):
                    raise AlreadyInProgressError(existing.id, existing.drill_id)
            stored = attempt.model_copy(update={"version": 1}, deep=True)
            self._attempts[stored.id] = stored
            return stored.model_copy(deep=True)

    def save_attempt(self, attempt: DrillAttempt, expected_version: int) -> DrillAttempt:
        with self._lock:
            current = self._attempts.get(attempt.id)
            if current is None:
                raise NotFoundError("Attempt", attempt.id)
            if current.version != expected_version:
                raise ConflictError(
                    details={
                        "attempt_id": attempt.id,
                        "expected_version": expected_version,
                        "actual_version": current.version,
                    }
                )
            stored = attempt.model_copy(update={"version": expected_version + 1}, deep=True)
            self._attempts[stored.id] = stored
            return stored.model_copy(deep=True)
