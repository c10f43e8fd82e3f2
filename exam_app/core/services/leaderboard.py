"""Service for ranking exam results and building score reports."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from exam_app.constants.exam_constants import DEFAULT_LEADERBOARD_SIZE
from exam_app.core.errors import InvalidInputError, NotFoundError
from exam_app.core.models import Difficulty, ExamResult
from exam_app.core.scorer import round_half_up
from exam_app.core.services.exam_repository import ExamRepository
from exam_app.core.services.result_repository import ResultRepository
from exam_app.core.services.user_directory import UserRepository


@dataclass(slots=True)
class LeaderboardRow:
    """Immutable snapshot returned to consumers."""

    rank: int
    student_id: str
    student_name: str
    score_percentage: int
    correct_count: int
    total_questions: int
    submitted_at: datetime


@dataclass(slots=True)
class ExamSummary:
    exam_id: str
    title: str
    difficulty: Difficulty
    participants: int
    average_score: int


@dataclass(slots=True)
class OverallReport:
    total_taken: int
    average_score: int
    unique_students: int
    total_exams: int
    exams: list[ExamSummary]


@dataclass(slots=True)
class HistoryEntry:
    exam_id: str
    title: str
    submitted_at: datetime
    score_percentage: int
    correct_count: int
    total_questions: int
    rank: int
    participants: int


@dataclass(slots=True)
class ResultBreakdown:
    correct: int
    incorrect: int
    unanswered: int
    total: int
    score_percentage: int


def rank_results(results: Sequence[ExamResult]) -> list[ExamResult]:
    """Order results by score, then earliest submission, then student id."""
    return sorted(
        results,
        key=lambda r: (-r.score_percentage, r.submitted_at.timestamp(), r.student_id),
    )


def participant_count(results: Sequence[ExamResult]) -> int:
    return len({result.student_id for result in results})


def average_score(results: Sequence[ExamResult]) -> int:
    """Mean score rounded half up; 0 when nobody has taken the exam."""
    if not results:
        return 0
    return round_half_up(sum(result.score_percentage for result in results), len(results))


def breakdown(result: ExamResult) -> ResultBreakdown:
    return ResultBreakdown(
        correct=result.correct_count,
        incorrect=result.incorrect_count,
        unanswered=result.unanswered_count,
        total=result.total_questions,
        score_percentage=result.score_percentage,
    )


class Leaderboard:
    """Computes rankings and aggregates from stored results."""

    def __init__(
        self,
        results: ResultRepository,
        exams: ExamRepository,
        users: UserRepository | None = None,
    ) -> None:
        self._results = results
        self._exams = exams
        self._users = users

    def ranked(self, exam_id: str) -> list[LeaderboardRow]:
        ordered = rank_results(self._results.results_for_exam(exam_id))
        return [
            LeaderboardRow(
                rank=position,
                student_id=result.student_id,
                student_name=self.student_name(result.student_id),
                score_percentage=result.score_percentage,
                correct_count=result.correct_count,
                total_questions=result.total_questions,
                submitted_at=result.submitted_at,
            )
            for position, result in enumerate(ordered, start=1)
        ]

    def student_name(self, student_id: str) -> str:
        """Display name of the student behind a result, or the id when no profile is known."""
        user = self._users.find_by_auth_uid(student_id) if self._users is not None else None
        if user is None or not user.full_name:
            return student_id
        return user.full_name

    def top(self, exam_id: str, limit: int = DEFAULT_LEADERBOARD_SIZE) -> list[LeaderboardRow]:
        """Return the top N rows for an exam."""
        if limit < 0:
            raise InvalidInputError("Leaderboard size cannot be negative.")
        return self.ranked(exam_id)[:limit]

    def participant_count(self, exam_id: str) -> int:
        return participant_count(self._results.results_for_exam(exam_id))

    def average_score(self, exam_id: str) -> int:
        return average_score(self._results.results_for_exam(exam_id))

    def rank_of(self, exam_id: str, student_id: str) -> int:
        """1-based position of a student's result within the exam."""
        for row in self.ranked(exam_id):
            if row.student_id == student_id:
                return row.rank
        raise NotFoundError(f"Student {student_id} has no result for exam {exam_id}.")

    def overall_report(self) -> OverallReport:
        results = self._results.all_results()
        exams = self._exams.list_exams()

        by_exam: dict[str, list[ExamResult]] = {}
        for result in results:
            by_exam.setdefault(result.exam_id, []).append(result)

        summaries = [
            ExamSummary(
                exam_id=exam.id,
                title=exam.title,
                difficulty=exam.difficulty,
                participants=participant_count(by_exam.get(exam.id, [])),
                average_score=average_score(by_exam.get(exam.id, [])),
            )
            for exam in exams
        ]
        summaries.sort(key=lambda s: (-s.participants, s.title))

        return OverallReport(
            total_taken=len(results),
            average_score=average_score(results),
            unique_students=participant_count(results),
            total_exams=len(exams),
            exams=summaries,
        )

    def student_history(self, student_id: str) -> list[HistoryEntry]:
        """A student's results, newest first. Results of deleted exams are dropped."""
        entries: list[HistoryEntry] = []
        for result in self._results.results_for_student(student_id):
            exam = self._exams.find_exam(result.exam_id)
            if exam is None:
                continue
            ranked = rank_results(self._results.results_for_exam(result.exam_id))
            rank = next(
                position for position, other in enumerate(ranked, start=1) if other.student_id == student_id
            )
            entries.append(
                HistoryEntry(
                    exam_id=exam.id,
                    title=exam.title,
                    submitted_at=result.submitted_at,
                    score_percentage=result.score_percentage,
                    correct_count=result.correct_count,
                    total_questions=result.total_questions,
                    rank=rank,
                    participants=participant_count(ranked),
                )
            )
        entries.sort(key=lambda e: e.submitted_at, reverse=True)
        return entries
