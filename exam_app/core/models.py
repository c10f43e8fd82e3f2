"""Domain models for the exam application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Difficulty(str, Enum):
    """Difficulty level shown on an exam card."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class Role(str, Enum):
    """Role of an authenticated user, fixed when the account is created."""

    STUDENT = "student"
    TEACHER = "teacher"

    @property
    def can_manage_exams(self) -> bool:
        return self is Role.TEACHER

    @property
    def can_manage_users(self) -> bool:
        return self is Role.TEACHER

    @property
    def can_view_reports(self) -> bool:
        return self is Role.TEACHER

    @property
    def can_take_exams(self) -> bool:
        return self is Role.STUDENT


@dataclass(slots=True)
class Question:
    """Multiple-choice question; the correct answer is stored as option text."""

    id: str
    text: str
    options: list[str]
    correct_answer: str
    image_url: str | None = None


@dataclass(slots=True)
class Exam:
    """Timed exam authored by a teacher. Questions live in a child collection."""

    id: str
    title: str
    timer: int  # minutes
    difficulty: Difficulty = Difficulty.MEDIUM
    description: str = ""
    cover_image_url: str | None = None
    teacher_id: str | None = None
    created_at: datetime | None = None

    @property
    def time_limit_seconds(self) -> int:
        return self.timer * 60


@dataclass(frozen=True, slots=True)
class ExamResult:
    """Immutable record of one student's single attempt at one exam."""

    exam_id: str
    student_id: str
    score_percentage: int
    correct_count: int
    total_questions: int
    submitted_at: datetime
    user_answers: dict[str, str] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return result_key(self.student_id, self.exam_id)

    @property
    def answered_count(self) -> int:
        return len(self.user_answers)

    @property
    def incorrect_count(self) -> int:
        return self.answered_count - self.correct_count

    @property
    def unanswered_count(self) -> int:
        return self.total_questions - self.answered_count


@dataclass(slots=True)
class User:
    """Profile document for a student or teacher."""

    id: str
    national_id: str
    first_name: str
    last_name: str
    role: Role
    email: str | None = None
    auth_uid: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True, slots=True)
class AuthSession:
    """The authenticated caller, resolved once per request."""

    user_id: str  # auth uid; results are stored under it
    role: Role
    national_id: str | None = None
    email: str | None = None
    authenticated_at: datetime | None = None


def result_key(student_id: str, exam_id: str) -> str:
    return f"{student_id}_{exam_id}"
