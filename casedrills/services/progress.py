"""
Per-user progress aggregated from evaluated drill attempts
"""

from typing import Dict, Iterable, List

from casedrills.models.database import DrillAttempt
from casedrills.models.schemas import CategoryProgress, ProgressRecommendation, UserProgress
from casedrills.services.calculator import round_half_up
from casedrills.utils.constants import (
    IMPROVEMENT_SCORE,
    MASTERY_SCORE,
    MAX_RECOMMENDATIONS,
    RECOMMENDATION_SCORE_STEP,
    AttemptStatus,
    DrillCategory,
    MasteryLevel,
    MasteryStatus,
)


def mastery_status(average_score: int) -> MasteryStatus:
    if average_score >= MASTERY_SCORE:
        return MasteryStatus.MASTERED
    if average_score >= IMPROVEMENT_SCORE:
        return MasteryStatus.IN_PROGRESS
    return MasteryStatus.NEEDS_WORK


def mastery_level(average_score: int) -> MasteryLevel:
    if average_score >= MASTERY_SCORE:
        return MasteryLevel.ADVANCED
    if average_score >= IMPROVEMENT_SCORE:
        return MasteryLevel.INTERMEDIATE
    return MasteryLevel.BEGINNER


def summarize_progress(
    user_id: str,
    attempts: Iterable[DrillAttempt],
    drill_categories: Dict[str, DrillCategory],
) -> UserProgress:
    """
    Aggregate a user's evaluated attempts by drill category

    Args:
        user_id: Owner of the attempts
        attempts: Attempts in any status; only EVALUATED ones with a score count
        drill_categories: Category of each known drill id. Attempts on drills
            missing from the mapping are left out.

    Returns:
        UserProgress with rounded averages, strength and improvement areas
        and suggestions for the weakest categories
    """
    scores: Dict[DrillCategory, List[int]] = {}
    last_activity = None

    for attempt in attempts:
        if attempt.status != AttemptStatus.EVALUATED or attempt.score is None:
            continue
        category = drill_categories.get(attempt.drill_id)
        if category is None:
            continue
        scores.setdefault(category, []).append(attempt.score)
        if attempt.evaluated_at and (last_activity is None or attempt.evaluated_at > last_activity):
            last_activity = attempt.evaluated_at

    if not scores:
        return UserProgress(user_id=user_id)

    categories = []
    for category in DrillCategory:
        if category not in scores:
            continue
        category_scores = scores[category]
        average = round_half_up(sum(category_scores) / len(category_scores))
        categories.append(CategoryProgress(
            category=category,
            evaluated_attempts=len(category_scores),
            average_score=average,
            best_score=max(category_scores),
            status=mastery_status(average),
        ))

    strengths = sorted(
        (c for c in categories if c.average_score >= MASTERY_SCORE),
        key=lambda c: -c.average_score,
    )
    # Borderline 60 still counts as an area to improve
    weakest = sorted(
        (c for c in categories if c.average_score <= IMPROVEMENT_SCORE),
        key=lambda c: c.average_score,
    )

    all_scores = [score for category_scores in scores.values() for score in category_scores]
    overall = round_half_up(sum(all_scores) / len(all_scores))

    return UserProgress(
        user_id=user_id,
        evaluated_attempts=len(all_scores),
        average_score=overall,
        mastery_level=mastery_level(overall),
        categories=categories,
        strength_areas=[c.category for c in strengths],
        improvement_areas=[c.category for c in weakest],
        recommendations=[
            ProgressRecommendation(
                category=c.category,
                suggestion=f"Focus on {c.category.value.replace('_', ' ').lower()} drills to improve performance",
                target_score=min(c.average_score + RECOMMENDATION_SCORE_STEP, 100),
            )
            for c in weakest[:MAX_RECOMMENDATIONS]
        ],
        last_activity_at=last_activity,
    )
