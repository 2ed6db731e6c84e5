"""
API routes for drill templates and the timed attempt lifecycle
"""

import asyncio
from fastapi import APIRouter, Depends, Request, status
from typing import Optional

from casedrills.config import settings
from casedrills.models.schemas import SubmitAttemptRequest, TimeUpRequest, ValidateAnswerRequest
from casedrills.services.attempt_service import DrillAttemptService
from casedrills.utils.auth import get_current_user
from casedrills.utils.constants import AttemptStatus, DrillCategory, DrillDifficulty
from casedrills.utils.logger import logger

router = APIRouter(prefix=settings.API_PREFIX, tags=["Drills"])


def get_drill_service(request: Request) -> DrillAttemptService:
    """Dependency returning the state machine built at startup"""
    return request.app.state.drill_service


def _attempt_data(attempt) -> dict:
    return attempt.model_dump(mode="json")


# ============================================
# Drill templates
# ============================================

@router.get("/drills")
async def list_drills(
    category: Optional[DrillCategory] = None,
    difficulty: Optional[DrillDifficulty] = None,
    service: DrillAttemptService = Depends(get_drill_service),
):
    """
    List drill templates

    Query params:
        category: Only drills of this category
        difficulty: Only drills of this difficulty
    """
    templates = service.list_templates(category=category, difficulty=difficulty)
    return {
        "success": True,
        "data": [template.model_dump(mode="json") for template in templates]
    }


@router.get("/drills/{drill_id}")
async def get_drill(drill_id: str, service: DrillAttemptService = Depends(get_drill_service)):
    """Get a single drill template"""
    return {"success": True, "data": service.get_template(drill_id).model_dump(mode="json")}


@router.post("/drills/{drill_id}/validate-answer")
async def validate_answer(
    drill_id: str,
    payload: ValidateAnswerRequest,
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Check the format of a calculation answer before it is submitted"""
    return {"success": True, "data": {"valid": service.validate_answer(drill_id, payload.answer)}}


@router.post("/drills/{drill_id}/attempts", status_code=status.HTTP_201_CREATED)
async def start_attempt(
    drill_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Start a timed attempt for the current user"""
    attempt = service.start(current_user["id"], drill_id)
    return {"success": True, "message": "Attempt started", "data": _attempt_data(attempt)}


# ============================================
# Attempts
# ============================================

@router.get("/attempts")
async def list_attempts(
    status: Optional[AttemptStatus] = None,
    drill_id: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """List the current user's attempts, newest first"""
    attempts = service.list_attempts(current_user["id"], status=status, drill_id=drill_id)
    return {"success": True, "data": [_attempt_data(attempt) for attempt in attempts]}


# Declared before /attempts/{attempt_id} so "progress" is not read as an id
@router.get("/attempts/progress")
async def get_progress(
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """
    Progress of the current user across evaluated attempts

    Returns average score and mastery status per drill category, the
    strongest and weakest categories and practice suggestions
    """
    summary = service.progress(current_user["id"])
    return {"success": True, "data": summary.model_dump(mode="json")}


@router.get("/attempts/{attempt_id}")
async def get_attempt(
    attempt_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Get one of the current user's attempts"""
    return {"success": True, "data": _attempt_data(service.get_attempt(attempt_id, current_user["id"]))}


@router.get("/attempts/{attempt_id}/timer")
async def get_timer(
    attempt_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Deadline snapshot polled by the client once per second"""
    timer = service.timer_status(attempt_id, current_user["id"])
    return {"success": True, "data": timer.model_dump(mode="json")}


@router.post("/attempts/{attempt_id}/submit")
async def submit_attempt(
    attempt_id: str,
    payload: SubmitAttemptRequest,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Submit a response and complete the attempt"""
    attempt = service.submit(attempt_id, current_user["id"], payload.response)
    return {"success": True, "message": "Attempt submitted", "data": _attempt_data(attempt)}


@router.post("/attempts/{attempt_id}/time-up")
async def time_up(
    attempt_id: str,
    payload: Optional[TimeUpRequest] = None,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Record an expired attempt, keeping any partial work"""
    partial = payload.partial if payload else None
    attempt = service.time_up(attempt_id, current_user["id"], partial=partial)
    return {"success": True, "message": "Time is up", "data": _attempt_data(attempt)}


@router.post("/attempts/{attempt_id}/evaluate")
async def evaluate_attempt(
    attempt_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """
    Evaluate a completed attempt

    Free-text drills call the AI evaluator, which is blocking and may retry,
    so the evaluation runs in a worker thread.
    """
    logger.info("Evaluating drill attempt", extra={"attempt_id": attempt_id, "user_id": current_user["id"]})
    attempt = await asyncio.to_thread(service.evaluate, attempt_id, current_user["id"])
    return {"success": True, "message": "Attempt evaluated", "data": _attempt_data(attempt)}


@router.post("/attempts/{attempt_id}/abandon")
async def abandon_attempt(
    attempt_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Abandon an attempt that is still in progress"""
    attempt = service.abandon(attempt_id, current_user["id"])
    return {"success": True, "message": "Attempt abandoned", "data": _attempt_data(attempt)}


@router.get("/attempts/{attempt_id}/evaluation")
async def get_evaluation(
    attempt_id: str,
    current_user: dict = Depends(get_current_user),
    service: DrillAttemptService = Depends(get_drill_service),
):
    """Get the evaluation of an evaluated attempt"""
    evaluation = service.get_evaluation(attempt_id, current_user["id"])
    return {"success": True, "data": evaluation.model_dump(mode="json")}
