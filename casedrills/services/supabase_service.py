"""
Supabase-backed storage for drill templates and attempts
"""

from supabase import create_client, Client
from typing import Any, Dict, List, Optional

from casedrills.models.database import DrillAttempt, DrillTemplate
from casedrills.utils.constants import AttemptStatus, DrillCategory, DrillDifficulty
from casedrills.utils.error_handler import AlreadyInProgressError, ConflictError, NotFoundError
from casedrills.utils.logger import logger

TEMPLATES_TABLE = "drill_templates"
ATTEMPTS_TABLE = "drill_attempts"

# Derived fields that are never written back
_ATTEMPT_EXCLUDE = {"time_spent_seconds"}


class SupabaseAttemptStore:
    """Storage collaborator backed by Supabase tables"""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client: Optional[Client] = None):
        """
        Initialize Supabase store

        Args:
            url: Supabase project URL
            key: Supabase service or anon key
            client: Preconfigured client; skips client creation when given
        """
        self.url = url
        self.key = key
        self.client: Optional[Client] = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client with configuration"""
        try:
            if not self.url or not self.key:
                logger.error("[WARN] Supabase credentials missing. Drill storage unavailable.")
                self.client = None
                return

            if "your-project" in self.url.lower() or "your-supabase" in self.key.lower():
                logger.error("[WARN] Supabase credentials appear to be placeholders. Please update your .env file.")
                self.client = None
                return

            if not self.url.startswith("https://"):
                logger.error(f"[WARN] Invalid SUPABASE_URL format. Must start with 'https://'. Got: {self.url[:50]}")
                self.client = None
                return

            self.client = create_client(self.url, self.key)
        except Exception as e:
            logger.error(f"[WARN] Failed to initialize Supabase client: {str(e)}. Drill storage may be unavailable.")
            self.client = None

    def get_client(self) -> Optional[Client]:
        """Get Supabase client instance"""
        if not self.client:
            self._initialize_client()
        return self.client

    def _ensure_client(self) -> Client:
        """Ensure client is initialized and raise exception if not available"""
        client = self.get_client()
        if not client:
            raise RuntimeError("Supabase client not initialized. Please configure SUPABASE_URL and SUPABASE_KEY in .env file.")
        return client

    @staticmethod
    def _attempt_row(attempt: DrillAttempt) -> Dict[str, Any]:
        return attempt.model_dump(mode="json", exclude=_ATTEMPT_EXCLUDE)

    # ============================================
    # Template Operations
    # ============================================

    def get_template(self, drill_id: str) -> DrillTemplate:
        """Get drill template by ID"""
        client = self._ensure_client()
        response = client.table(TEMPLATES_TABLE).select("*").eq("id", drill_id).limit(1).execute()
        if not response.data:
            raise NotFoundError("Drill", drill_id)
        return DrillTemplate.model_validate(response.data[0])

    def list_templates(
        self,
        category: Optional[DrillCategory] = None,
        difficulty: Optional[DrillDifficulty] = None,
    ) -> List[DrillTemplate]:
        """List drill templates with optional filters"""
        client = self._ensure_client()
        query = client.table(TEMPLATES_TABLE).select("*")
        if category is not None:
            query = query.eq("category", category.value)
        if difficulty is not None:
            query = query.eq("difficulty", difficulty.value)

        response = query.order("title").execute()
        templates = []
        for row in response.data or []:
            try:
                templates.append(DrillTemplate.model_validate(row))
            except ValueError as e:
                logger.error(f"Skipping malformed drill template {row.get('id')}: {str(e)}")
        return templates

    # ============================================
    # Attempt Operations
    # ============================================

    def get_attempt(self, attempt_id: str) -> DrillAttempt:
        """Get drill attempt by ID"""
        client = self._ensure_client()
        response = client.table(ATTEMPTS_TABLE).select("*").eq("id", attempt_id).limit(1).execute()
        if not response.data:
            raise NotFoundError("Attempt", attempt_id)
        return DrillAttempt.model_validate(response.data[0])

    def find_attempts(
        self,
        user_id: str,
        status: Optional[AttemptStatus] = None,
        drill_id: Optional[str] = None,
    ) -> List[DrillAttempt]:
        """List a user's attempts, newest first"""
        client = self._ensure_client()
        query = client.table(ATTEMPTS_TABLE).select("*").eq("user_id", user_id)
        if status is not None:
            query = query.eq("status", status.value)
        if drill_id is not None:
            query = query.eq("drill_id", drill_id)

        response = query.order("started_at", desc=True).execute()
        return [DrillAttempt.model_validate(row) for row in response.data or []]

    def create_attempt(self, attempt: DrillAttempt) -> DrillAttempt:
        """
        Insert a new attempt with version 1

        A partial unique index on (user_id, drill_id) WHERE status = 'IN_PROGRESS'
        turns a racing second start into a duplicate-key error.
        """
        client = self._ensure_client()
        row = self._attempt_row(attempt.model_copy(update={"version": 1}))
        try:
            response = client.table(ATTEMPTS_TABLE).insert(row).execute()
        except Exception as e:
            error_msg = str(e).lower()
            if "23505" in error_msg or "duplicate key" in error_msg:
                active = self.find_attempts(attempt.user_id, AttemptStatus.IN_PROGRESS, attempt.drill_id)
                raise AlreadyInProgressError(active[0].id if active else "", attempt.drill_id) from e
            logger.error(f"Error creating drill attempt: {str(e)}", extra={"attempt_id": attempt.id})
            raise

        if not response.data:
            raise RuntimeError(f"Insert of drill attempt {attempt.id} returned no row")
        return DrillAttempt.model_validate(response.data[0])

    def save_attempt(self, attempt: DrillAttempt, expected_version: int) -> DrillAttempt:
        """Compare-and-swap update on the version column"""
        client = self._ensure_client()
        row = self._attempt_row(attempt.model_copy(update={"version": expected_version + 1}))
        row.pop("id", None)

        response = client.table(ATTEMPTS_TABLE)\
            .update(row)\
            .eq("id", attempt.id)\
            .eq("version", expected_version)\
            .execute()

        if response.data:
            return DrillAttempt.model_validate(response.data[0])

        # No row matched: either the attempt is gone or another writer won
        existing = client.table(ATTEMPTS_TABLE).select("id, version").eq("id", attempt.id).limit(1).execute()
        if not existing.data:
            raise NotFoundError("Attempt", attempt.id)

        logger.warning(
            "Drill attempt version conflict",
            extra={"attempt_id": attempt.id}
        )
        raise ConflictError(
            details={
                "attempt_id": attempt.id,
                "expected_version": expected_version,
                "actual_version": existing.data[0].get("version"),
            }
        )
