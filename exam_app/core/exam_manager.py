"""Business logic shared by the HTTP API and the operator scripts."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime
from threading import Lock, Timer

from exam_app.ai.question_generator import QuestionGenerator
from exam_app.constants.exam_constants import DEFAULT_LEADERBOARD_SIZE
from exam_app.core.auth import AuthProvider
from exam_app.core.errors import NotFoundError
from exam_app.core.models import AuthSession, Difficulty, Exam, ExamResult, Question, User
from exam_app.core.question_exporter import serialize_questions
from exam_app.core.question_importer import parse_questions
from exam_app.core.services.countdown import TimerFactory
from exam_app.core.services.exam_repository import ExamRepository
from exam_app.core.services.exam_session import ExamSession, SessionSnapshot, SessionState
from exam_app.core.services.leaderboard import (
    HistoryEntry,
    Leaderboard,
    LeaderboardRow,
    OverallReport,
    ResultBreakdown,
    breakdown,
)
from exam_app.core.services.result_repository import ResultRepository
from exam_app.core.services.user_directory import (
    ProfileUpdate,
    SyncReport,
    UserDirectory,
    UserRepository,
)
from exam_app.storage.document_store import DocumentStore


class ExamManager:
    """Facade for exam services: repositories, sessions, leaderboard, users and AI."""

    def __init__(
        self,
        store: DocumentStore,
        auth: AuthProvider,
        ai: QuestionGenerator | None = None,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = Timer,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._timer_factory = timer_factory
        self._now = now

        # Services
        self._exams = ExamRepository(store, clock=now)
        self._results = ResultRepository(store)
        users = UserRepository(store)
        self._leaderboard = Leaderboard(self._results, self._exams, users)
        self._users = UserDirectory(users, auth, now=now)
        self._auth = auth
        self._ai = ai or QuestionGenerator()
        self._sessions: dict[tuple[str, str], ExamSession] = {}

    # --- Authentication ---

    def authenticate(self, token: str) -> AuthSession:
        return self._users.resolve_session(self._auth.verify_token(token))

    # --- Exam Repository Delegation ---

    def create_exam(self, session: AuthSession, draft: Exam, questions: Sequence[Question]) -> Exam:
        return self._exams.create_exam(replace(draft, teacher_id=session.user_id), questions)

    def update_exam(self, exam_id: str, draft: Exam, questions: Sequence[Question] | None = None) -> Exam:
        return self._exams.update_exam(exam_id, draft, questions)

    def delete_exam(self, exam_id: str) -> None:
        self._exams.delete_exam(exam_id)

    def list_exams(self) -> list[Exam]:
        return self._exams.list_exams()

    def get_exam(self, exam_id: str) -> Exam:
        return self._exams.get_exam(exam_id)

    def get_questions(self, exam_id: str) -> list[Question]:
        self._exams.get_exam(exam_id)
        return self._exams.get_questions(exam_id)

    def get_question_count(self, exam_id: str) -> int:
        return self._exams.get_question_count(exam_id)

    def import_questions(self, text: str) -> list[Question]:
        return parse_questions(text)

    def export_questions(self, exam_id: str) -> str:
        return serialize_questions(self.get_questions(exam_id))

    # --- AI Delegation ---

    def generate_questions(self, topic: str, difficulty: Difficulty | str, count: int) -> list[Question]:
        return self._ai.generate(topic, difficulty, count)

    def translate_questions(self, questions: Sequence[Question], language: str) -> list[Question]:
        return self._ai.translate_questions(questions, language)

    def translate_topic(self, topic: str) -> str:
        return self._ai.translate_topic(topic)

    def find_relevant_image(self, topic: str, hints: Sequence[str]) -> str:
        return self._ai.find_relevant_image(topic, hints)

    # --- Exam Session Delegation ---

    def start_exam(self, student_id: str, exam_id: str) -> SessionSnapshot:
        """Open (or reopen) the student's attempt. Loading is idempotent."""
        with self._lock:
            key = (student_id, exam_id)
            session = self._sessions.get(key)
            if session is None:
                session = ExamSession(
                    exam_id,
                    student_id,
                    self._exams,
                    self._results,
                    clock=self._clock,
                    timer_factory=self._timer_factory,
                    now=self._now,
                    on_finished=self._release,
                )
                self._sessions[key] = session
        try:
            snapshot = session.load()
        except Exception:
            self._discard(session)
            raise
        if snapshot.state in (SessionState.FINISHED, SessionState.UNAVAILABLE):
            self._discard(session)
        return snapshot

    def get_session_state(self, student_id: str, exam_id: str) -> SessionSnapshot:
        return self._session(student_id, exam_id).snapshot()

    def select_answer(self, student_id: str, exam_id: str, question_id: str, option: str) -> SessionSnapshot:
        session = self._session(student_id, exam_id)
        session.select_answer(question_id, option)
        return session.snapshot()

    def next_question(self, student_id: str, exam_id: str) -> SessionSnapshot:
        return self._session(student_id, exam_id).next()

    def previous_question(self, student_id: str, exam_id: str) -> SessionSnapshot:
        return self._session(student_id, exam_id).previous()

    def finish_exam(self, student_id: str, exam_id: str) -> SessionSnapshot:
        session = self._session(student_id, exam_id)
        snapshot = session.finish()
        if snapshot.state is SessionState.FINISHED:
            session.close()
        return snapshot

    def retry_submission(self, student_id: str, exam_id: str) -> SessionSnapshot:
        session = self._session(student_id, exam_id)
        snapshot = session.retry_submit()
        if snapshot.state is SessionState.FINISHED:
            session.close()
        return snapshot

    def shutdown(self) -> None:
        """Release every countdown handle."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _session(self, student_id: str, exam_id: str) -> ExamSession:
        with self._lock:
            session = self._sessions.get((student_id, exam_id))
        if session is None:
            raise NotFoundError(f"No exam session for exam {exam_id}; start the exam first.")
        return session

    def _release(self, session: ExamSession) -> None:
        """Forget a finished session; a later start reads the stored result instead."""
        with self._lock:
            key = (session.student_id, session.exam_id)
            if self._sessions.get(key) is session:
                del self._sessions[key]

    def _discard(self, session: ExamSession) -> None:
        self._release(session)
        session.close()

    # --- Results and Rankings ---

    def get_result(self, student_id: str, exam_id: str) -> tuple[ExamResult, int, ResultBreakdown]:
        result = self._results.get_result(student_id, exam_id)
        if result is None:
            raise NotFoundError(f"No result for exam {exam_id}.")
        rank = self._leaderboard.rank_of(exam_id, student_id)
        return result, rank, breakdown(result)

    def get_leaderboard(self, exam_id: str, limit: int = DEFAULT_LEADERBOARD_SIZE) -> list[LeaderboardRow]:
        return self._leaderboard.top(exam_id, limit)

    def get_exam_statistics(self, exam_id: str) -> tuple[int, int]:
        """Participant count and average score for an exam."""
        return self._leaderboard.participant_count(exam_id), self._leaderboard.average_score(exam_id)

    def get_history(self, student_id: str) -> list[HistoryEntry]:
        return self._leaderboard.student_history(student_id)

    def get_overall_report(self) -> OverallReport:
        return self._leaderboard.overall_report()

    # --- User Directory Delegation ---

    def create_user(self, full_name: str, username: str, password: str, role: str) -> User:
        return self._users.create_user(full_name, username, password, role)

    def list_users(self) -> list[User]:
        return self._users.list_users()

    def get_user(self, key: str) -> User:
        return self._users.get_user(key)

    def delete_user(self, key: str) -> None:
        self._users.delete_user(key)

    def update_profile(self, session: AuthSession, update: ProfileUpdate) -> User:
        return self._users.update_profile(session, update)

    def sync_auth_users(self) -> SyncReport:
        return self._users.sync_auth_users()
