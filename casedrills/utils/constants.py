"""
Application constants and enums
"""

from enum import Enum
from typing import Any, Dict


class DrillCategory(str, Enum):
    """Drill category enumeration"""
    CASE_PROMPT = "CASE_PROMPT"
    CALCULATIONS = "CALCULATIONS"
    CASE_MATH = "CASE_MATH"
    BRAINSTORMING = "BRAINSTORMING"
    MARKET_SIZING = "MARKET_SIZING"
    SYNTHESIZING = "SYNTHESIZING"


class DrillDifficulty(str, Enum):
    """Drill difficulty enumeration"""
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"


class AttemptStatus(str, Enum):
    """Attempt status enumeration"""
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    EVALUATED = "EVALUATED"
    ABANDONED = "ABANDONED"


class PerformanceTier(str, Enum):
    """Performance tier enumeration, highest first"""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    SATISFACTORY = "Satisfactory"
    NEEDS_IMPROVEMENT = "Needs Improvement"


class TimerBand(str, Enum):
    """Timer display band"""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class MasteryStatus(str, Enum):
    """Per-category progress status"""
    MASTERED = "Mastered"
    IN_PROGRESS = "In Progress"
    NEEDS_WORK = "Needs Work"


class MasteryLevel(str, Enum):
    """Overall level across every evaluated drill"""
    ADVANCED = "Advanced"
    INTERMEDIATE = "Intermediate"
    BEGINNER = "Beginner"


# Categories scored by the numeric evaluator when the template carries an answer key
NUMERIC_CATEGORIES = frozenset({DrillCategory.CALCULATIONS, DrillCategory.CASE_MATH})

# Operators accepted by the calculation input validator
CALCULATION_OPERATORS = ("+", "-", "*", "/", "%")

# Scoring defaults
DEFAULT_TOLERANCE_PERCENT = 1.0
MAX_CALCULATION_SECONDS = 300  # 5 minutes
WEIGHT_SUM_EPSILON = 1e-6

# Timer bands as fractions of the time limit
WARNING_FRACTION = 0.3
CRITICAL_FRACTION = 0.1

# Tier thresholds on efficiency, evaluated in descending order
PERFORMANCE_TIERS = (
    (90, PerformanceTier.EXCELLENT),
    (75, PerformanceTier.GOOD),
    (60, PerformanceTier.SATISFACTORY),
)

# Progress thresholds on average scores
MASTERY_SCORE = 80
IMPROVEMENT_SCORE = 60
RECOMMENDATION_SCORE_STEP = 15
MAX_RECOMMENDATIONS = 3


# OpenAI model parameters per drill category
DEFAULT_MODEL_CONFIG: Dict[str, Any] = {
    "temperature": 0.7,
    "max_tokens": 2048,
    "top_p": 1.0,
    "presence_penalty": 0.0,
    "frequency_penalty": 0.0,
}

DRILL_MODEL_CONFIGS: Dict[DrillCategory, Dict[str, Any]] = {
    DrillCategory.CASE_PROMPT: {**DEFAULT_MODEL_CONFIG, "temperature": 0.8, "max_tokens": 3072, "presence_penalty": 0.1},
    DrillCategory.CALCULATIONS: {**DEFAULT_MODEL_CONFIG, "temperature": 0.2, "max_tokens": 1024, "presence_penalty": 0.2},
    DrillCategory.CASE_MATH: {**DEFAULT_MODEL_CONFIG, "temperature": 0.3, "max_tokens": 1536, "presence_penalty": 0.1},
    DrillCategory.BRAINSTORMING: {
        **DEFAULT_MODEL_CONFIG,
        "temperature": 0.9,
        "presence_penalty": 0.2,
        "frequency_penalty": 0.3,
    },
    DrillCategory.MARKET_SIZING: {**DEFAULT_MODEL_CONFIG, "temperature": 0.6, "presence_penalty": 0.1},
    DrillCategory.SYNTHESIZING: {
        **DEFAULT_MODEL_CONFIG,
        "max_tokens": 4096,
        "presence_penalty": 0.15,
        "frequency_penalty": 0.1,
    },
}


# Prompt Templates
DRILL_EVALUATION_SYSTEM_PROMPT = """You are an experienced management consulting interviewer.
You evaluate candidate responses to case interview practice drills strictly against the
criteria you are given. Respond with JSON only."""

DRILL_EVALUATION_PROMPT = """Evaluate the candidate's response to the following {category_label} drill.

Drill Prompt:
{drill_prompt}

Candidate Response:
{response}

Evaluation Criteria (name - weight - description):
{criteria}

{category_guidance}

Score every criterion from 0 to 100. Respond in JSON format:
{{
    "criteria_scores": {{{criteria_keys}}},
    "feedback": "Two to four sentences of overall feedback",
    "strengths": ["strength1", "strength2"],
    "improvements": ["improvement1", "improvement2"]
}}
"""

CATEGORY_GUIDANCE: Dict[DrillCategory, str] = {
    DrillCategory.CASE_PROMPT: "Focus on structure, hypothesis-driven thinking, and whether the framework is MECE and tailored to the case.",
    DrillCategory.CALCULATIONS: "Focus on numerical accuracy, the method used, and whether intermediate results are sanity-checked.",
    DrillCategory.CASE_MATH: "Focus on setting up the math correctly, accuracy, and translating the result into a business implication.",
    DrillCategory.BRAINSTORMING: "Focus on the breadth, originality, and organization of the ideas generated.",
    DrillCategory.MARKET_SIZING: "Focus on explicit assumptions, logical segmentation, arithmetic, and a sanity check of the final estimate.",
    DrillCategory.SYNTHESIZING: "Focus on a clear answer-first recommendation, supporting evidence, risks, and next steps.",
}

# Error Messages
ERROR_MESSAGES = {
    "AUTH_REQUIRED": "Authentication required",
    "INVALID_TOKEN": "Invalid or expired token",
    "NOT_OWNER": "Attempt belongs to another user",
    "ALREADY_IN_PROGRESS": "An attempt for this drill is already in progress",
    "ATTEMPT_LIMIT": "Too many attempts in progress",
    "INVALID_TRANSITION": "Attempt cannot move from {current} via {operation}",
    "TIME_REMAINING": "Attempt still has time remaining",
    "VERSION_CONFLICT": "Attempt was modified concurrently",
    "EVALUATION_FAILED": "Failed to evaluate attempt",
}
