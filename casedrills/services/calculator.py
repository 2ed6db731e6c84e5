"""
Numeric evaluation for calculation and case math drills

Scores a typed answer against the template's correct value using a
percent-scale relative tolerance: ``tolerance_percent=1`` means a 1% error
uses up the whole budget and scores 0, with the score falling linearly from
100 at an exact answer.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from casedrills.utils.constants import CALCULATION_OPERATORS, DEFAULT_TOLERANCE_PERCENT
from casedrills.utils.helpers import format_number

INVALID_INPUT_FEEDBACK = "Invalid numerical input"

_EXPRESSION_PATTERN = re.compile(r"^[\d\s+\-*/%.()]*$")
_OPERATOR_PATTERN = re.compile(r"[+\-*/%]")
_NUMBER_PATTERN = re.compile(r"\d*\.?\d+|\d+\.")
_IGNORED_SEPARATORS = str.maketrans("", "", ",_ ")


@dataclass(frozen=True)
class CalculationResult:
    """Outcome of scoring one numeric answer"""

    score: int
    feedback: str
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    user_value: Optional[float] = None

    @property
    def is_valid_input(self) -> bool:
        return self.user_value is not None


def parse_answer(text: Optional[str]) -> Optional[float]:
    """Parse a candidate answer, ignoring thousands separators; None when not a finite number"""
    if text is None:
        return None
    cleaned = text.strip().translate(_IGNORED_SEPARATORS)
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_score(value: float) -> float:
    return min(100.0, max(0.0, value))


def evaluate_calculation(
    user_answer_text: Optional[str],
    correct_answer: float,
    tolerance_percent: float = DEFAULT_TOLERANCE_PERCENT,
    require_exact_match: bool = False,
) -> CalculationResult:
    """
    Score a numeric answer from 0 to 100.

    Args:
        user_answer_text: Raw answer typed by the candidate
        correct_answer: Expected value
        tolerance_percent: Relative error (in percent) that drives the score to 0.
            When ``correct_answer`` is 0 the relative error is undefined and the
            same number is used as an absolute band instead.
        require_exact_match: Score 100 only for an exact answer, else 0

    Returns:
        CalculationResult with score-band strengths and improvements
    """
    if tolerance_percent <= 0:
        raise ValueError("tolerance_percent must be positive")

    user_value = parse_answer(user_answer_text)
    if user_value is None:
        return CalculationResult(
            score=0,
            feedback=INVALID_INPUT_FEEDBACK,
            improvements=["Ensure your answer is a valid number"],
        )

    difference = abs(user_value - correct_answer)

    if require_exact_match:
        raw_score = 100.0 if difference == 0 else 0.0
        feedback = "Calculation evaluated for an exact match"
    elif correct_answer == 0:
        raw_score = _clamp_score(100.0 * (1 - difference / tolerance_percent))
        feedback = f"Calculation evaluated with an absolute tolerance of ±{format_number(tolerance_percent)}"
    else:
        percentage_error = difference / abs(correct_answer) * 100
        raw_score = _clamp_score(100.0 * (1 - percentage_error / tolerance_percent))
        feedback = f"Calculation evaluated with {format_number(tolerance_percent)}% tolerance"

    score = round_half_up(raw_score)
    strengths: List[str] = []
    improvements: List[str] = []

    if score >= 95:
        strengths.append("Excellent accuracy in calculation")
    elif score >= 80:
        strengths.append("Good approximation within acceptable range")
        improvements.append("Minor refinement needed for perfect accuracy")
    else:
        improvements.append("Review calculation methodology for better accuracy")
        improvements.append(f"Expected {format_number(correct_answer)}, received {format_number(user_value)}")

    return CalculationResult(
        score=score,
        feedback=feedback,
        strengths=strengths,
        improvements=improvements,
        user_value=user_value,
    )


def validate_calculation(
    text: str,
    max_digits: Optional[int] = None,
    decimal_places: Optional[int] = None,
    allowed_operators: Optional[Iterable[str]] = None,
) -> bool:
    """
    Check the format of a calculation answer without evaluating it.

    Only digits, whitespace, decimal points, parentheses and the operators
    ``+ - * / %`` may appear. Optional constraints cap the total digit count,
    the decimal places of every number, and the operators that may be used.
    """
    if not text or not text.strip():
        return False

    if not _EXPRESSION_PATTERN.match(text):
        return False

    if max_digits is not None:
        digit_count = sum(1 for char in text if char.isdigit())
        if digit_count > max_digits:
            return False

    if decimal_places is not None:
        for number in _NUMBER_PATTERN.findall(text):
            if "." in number and len(number.split(".", 1)[1]) > decimal_places:
                return False

    if allowed_operators is not None:
        allowed = set(allowed_operators)
        unknown = allowed - set(CALCULATION_OPERATORS)
        if unknown:
            raise ValueError(f"Unsupported operators: {sorted(unknown)}")
        return all(operator in allowed for operator in _OPERATOR_PATTERN.findall(text))

    return True
