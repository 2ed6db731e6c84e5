"""
Feedback synthesis for evaluated drill attempts
Turns performance metrics into a summary plus ordered strengths and improvements
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from casedrills.models.database import DrillEvaluation, PerformanceMetrics
from casedrills.utils.constants import DrillCategory
from casedrills.utils.helpers import dedupe


@dataclass(frozen=True)
class SynthesizedFeedback:
    """Metric-derived feedback lines"""

    summary: str
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)


def generate_feedback(metrics: PerformanceMetrics, category: DrillCategory) -> SynthesizedFeedback:
    """
    Generate feedback lines from performance metrics

    Args:
        metrics: Speed, accuracy and efficiency of the attempt
        category: Drill category, for category-specific framing

    Returns:
        SynthesizedFeedback with a one-sentence summary
    """
    strengths: List[str] = []
    improvements: List[str] = []

    # Speed
    if metrics.speed_score >= 90:
        strengths.append("Excellent calculation speed")
    elif metrics.speed_score < 60:
        improvements.append("Work on improving calculation speed")

    # Balance of speed and accuracy
    if metrics.efficiency >= 85:
        strengths.append("Strong balance of speed and accuracy")
    elif metrics.accuracy_score < metrics.speed_score:
        improvements.append("Focus on accuracy over speed")
    else:
        improvements.append("Practice mental math techniques for faster calculations")

    if category == DrillCategory.CASE_MATH:
        strengths.append("Applied case math principles effectively")

    summary = (
        f"{metrics.performance.value} performance with {metrics.accuracy_score}% accuracy "
        f"and {metrics.speed_score}% speed efficiency."
    )

    return SynthesizedFeedback(summary=summary, strengths=strengths, improvements=improvements)


def build_evaluation(
    attempt_id: str,
    score: int,
    metrics: PerformanceMetrics,
    category: DrillCategory,
    evaluated_at: datetime,
    evaluator_strengths: Sequence[str] = (),
    evaluator_improvements: Sequence[str] = (),
    external_feedback: Optional[str] = None,
    criteria_scores: Optional[Dict[str, int]] = None,
) -> DrillEvaluation:
    """
    Assemble the final evaluation.

    Evaluator-level lines (numeric score bands or AI output) come first, then
    the metric-derived lines. Free-text feedback from the AI evaluation, when
    present, follows the metric summary.
    """
    synthesized = generate_feedback(metrics, category)

    summary = synthesized.summary
    if external_feedback and external_feedback.strip():
        summary = f"{summary} {external_feedback.strip()}"

    return DrillEvaluation(
        attempt_id=attempt_id,
        score=score,
        feedback=summary,
        strengths=dedupe([*evaluator_strengths, *synthesized.strengths]),
        improvements=dedupe([*evaluator_improvements, *synthesized.improvements]),
        evaluated_at=evaluated_at,
        metrics=metrics,
        criteria_scores=criteria_scores,
    )
