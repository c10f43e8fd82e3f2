"""Scoring of a finished exam attempt.

Percentages are rounded half up (for non-negative values this is the same as
half away from zero): 1/3 -> 33, 1/40 -> 3 (2.5%), 1/8 -> 13 (12.5%).
Integer arithmetic is used so no float representation error can move a
value across a .5 boundary.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from exam_app.core.errors import InvalidInputError
from exam_app.core.models import ExamResult, Question


def round_half_up(numerator: int, denominator: int) -> int:
    """Return ``numerator / denominator`` rounded half up for non-negative inputs."""
    if denominator <= 0:
        raise InvalidInputError("Cannot round a ratio with a non-positive denominator.")
    return (2 * numerator + denominator) // (2 * denominator)


def percentage(part: int, total: int) -> int:
    """Return ``100 * part / total`` rounded half up."""
    return round_half_up(100 * part, total)


def count_correct(questions: Sequence[Question], answers: Mapping[str, str]) -> int:
    """Count questions whose selected option equals the stored correct answer."""
    correct = 0
    for question in questions:
        selected = answers.get(question.id)
        if selected is not None and selected == question.correct_answer:
            correct += 1
    return correct


def score_exam(
    exam_id: str,
    student_id: str,
    questions: Sequence[Question],
    answers: Mapping[str, str],
    submitted_at: datetime | None = None,
) -> ExamResult:
    """Build the result record for one attempt. Unanswered questions count as incorrect."""
    total = len(questions)
    if total == 0:
        raise InvalidInputError("Cannot score an exam with zero questions.")

    known_ids = {question.id for question in questions}
    recorded = {qid: option for qid, option in answers.items() if qid in known_ids}
    correct = count_correct(questions, recorded)

    return ExamResult(
        exam_id=exam_id,
        student_id=student_id,
        score_percentage=percentage(correct, total),
        correct_count=correct,
        total_questions=total,
        submitted_at=submitted_at or datetime.now(timezone.utc),
        user_answers=recorded,
    )
