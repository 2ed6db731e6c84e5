"""
Performance metrics combining timing and accuracy
"""

from casedrills.models.database import PerformanceMetrics
from casedrills.services.calculator import round_half_up
from casedrills.utils.constants import MAX_CALCULATION_SECONDS, PERFORMANCE_TIERS, PerformanceTier


def performance_tier(efficiency: float) -> PerformanceTier:
    for threshold, tier in PERFORMANCE_TIERS:
        if efficiency >= threshold:
            return tier
    return PerformanceTier.NEEDS_IMPROVEMENT


def calculate_metrics(
    time_spent_seconds: float,
    accuracy_score: float,
    target_time_seconds: float,
    target_accuracy: float,
    max_allowed_seconds: float = MAX_CALCULATION_SECONDS,
) -> PerformanceMetrics:
    """
    Combine timing and accuracy into a speed score, efficiency and tier

    Args:
        time_spent_seconds: Time between start and completion
        accuracy_score: 0-100 score from the numeric evaluator or the AI evaluation
        target_time_seconds: Benchmark time for this drill
        target_accuracy: Benchmark accuracy for this drill
        max_allowed_seconds: Ceiling at which the speed score reaches 0

    Returns:
        PerformanceMetrics with integer scores
    """
    if max_allowed_seconds <= 0:
        raise ValueError("max_allowed_seconds must be positive")

    time_spent = max(0.0, float(time_spent_seconds))
    accuracy = min(100.0, max(0.0, float(accuracy_score)))

    speed = min(100.0, max(0.0, 100.0 * (1 - time_spent / max_allowed_seconds)))
    efficiency = round_half_up((speed + accuracy) / 2)

    return PerformanceMetrics(
        speed_score=round_half_up(speed),
        accuracy_score=round_half_up(accuracy),
        efficiency=efficiency,
        performance=performance_tier(efficiency),
        within_target_time=time_spent <= target_time_seconds,
        meets_target_accuracy=accuracy >= target_accuracy,
    )
