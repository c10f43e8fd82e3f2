"""Service for managing one student's attempt at one exam."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock, Timer

from exam_app.constants.exam_constants import (
    ALREADY_COMPLETED_MESSAGE,
    NO_QUESTIONS_MESSAGE,
    SUBMISSION_FAILED_MESSAGE,
)
from exam_app.core.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    SessionStateError,
)
from exam_app.core.models import Exam, ExamResult, Question
from exam_app.core.scorer import score_exam
from exam_app.core.services.countdown import Countdown, TimerFactory
from exam_app.core.services.exam_repository import ExamRepository
from exam_app.core.services.result_repository import ResultRepository

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    FINISHED = "finished"
    UNAVAILABLE = "unavailable"


class SubmitTrigger(str, Enum):
    FINISH = "finish"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of a session handed to the API layer."""

    exam_id: str
    student_id: str
    state: SessionState
    current_index: int
    question_count: int
    current_question: Question | None
    answers: dict[str, str] = field(default_factory=dict)
    remaining_seconds: int = 0
    time_up: bool = False
    results_ready: bool = False
    message: str | None = None
    last_error: str | None = None
    result: ExamResult | None = None
    exam: Exam | None = None

    @property
    def is_last_question(self) -> bool:
        return self.question_count > 0 and self.current_index == self.question_count - 1


class ExamSession:
    """State machine for a timed exam attempt.

    ``LOADING -> IN_PROGRESS -> SUBMITTING -> FINISHED``; an exam without
    questions ends in the terminal ``UNAVAILABLE`` state instead. Both the
    explicit finish and the countdown expiry go through :meth:`_submit_locked`,
    which runs at most once at a time and persists at most one result.
    ``on_finished`` is called with the session lock held once a result is stored.
    """

    def __init__(
        self,
        exam_id: str,
        student_id: str,
        exams: ExamRepository,
        results: ResultRepository,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = Timer,
        now: Callable[[], datetime] | None = None,
        on_finished: Callable[["ExamSession"], None] | None = None,
    ) -> None:
        self._exam_id = exam_id
        self._student_id = student_id
        self._exams = exams
        self._results = results
        self._clock = clock
        self._timer_factory = timer_factory
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._on_finished = on_finished
        self._lock = RLock()

        self._state = SessionState.LOADING
        self._exam: Exam | None = None
        self._questions: list[Question] = []
        self._index = 0
        self._answers: dict[str, str] = {}
        self._countdown: Countdown | None = None
        self._submitting = False
        self._failed_attempts = 0
        self._timeout_handled = False
        self._time_up = False
        self._message: str | None = None
        self._last_error: str | None = None
        self._result: ExamResult | None = None

    # --- Lifecycle ---

    def load(self) -> SessionSnapshot:
        """Fetch the exam and its questions and start the countdown."""
        with self._lock:
            if self._state is not SessionState.LOADING:
                return self._snapshot_locked()

            existing = self._results.get_result(self._student_id, self._exam_id)
            try:
                exam = self._exams.get_exam(self._exam_id)
            except NotFoundError:
                if existing is None:
                    self._state = SessionState.UNAVAILABLE
                    self._message = f"Exam {self._exam_id} was not found."
                    raise
                exam = None
            self._exam = exam

            if existing is not None:
                self._result = existing
                self._state = SessionState.FINISHED
                self._message = ALREADY_COMPLETED_MESSAGE
                logger.info("Student %s already completed exam %s", self._student_id, self._exam_id)
                return self._snapshot_locked()

            self._questions = self._exams.get_questions(self._exam_id)
            if not self._questions:
                self._state = SessionState.UNAVAILABLE
                self._message = NO_QUESTIONS_MESSAGE
                logger.warning("Exam %s has no questions; session not started", self._exam_id)
                return self._snapshot_locked()

            self._countdown = Countdown(
                exam.time_limit_seconds,
                on_expire=self._handle_timeout,
                clock=self._clock,
                timer_factory=self._timer_factory,
            )
            self._state = SessionState.IN_PROGRESS
            self._countdown.start()
            logger.info(
                "Student %s started exam %s (%d questions, %ds)",
                self._student_id,
                self._exam_id,
                len(self._questions),
                exam.time_limit_seconds,
            )
            return self._snapshot_locked()

    def close(self) -> None:
        """Release the countdown handle. Safe to call in any state."""
        with self._lock:
            if self._countdown is not None:
                self._countdown.cancel()

    # --- Navigation ---

    def next(self) -> SessionSnapshot:
        with self._lock:
            self._require_in_progress()
            self._index = min(self._index + 1, len(self._questions) - 1)
            return self._snapshot_locked()

    def previous(self) -> SessionSnapshot:
        with self._lock:
            self._require_in_progress()
            self._index = max(self._index - 1, 0)
            return self._snapshot_locked()

    # --- Answers ---

    def select_answer(self, question_id: str, option: str) -> bool:
        """Record an answer. Returns True when the stored answer changed."""
        with self._lock:
            self._require_in_progress()
            if self._time_up:
                raise SessionStateError("Time is up; answers can no longer be changed.")
            question = next((q for q in self._questions if q.id == question_id), None)
            if question is None:
                raise InvalidInputError(f"Question {question_id} is not part of this exam.")
            if option not in question.options:
                raise InvalidInputError(f"{option!r} is not an option of question {question_id}.")
            if self._answers.get(question_id) == option:
                return False
            self._answers[question_id] = option
            return True

    # --- Submission ---

    def finish(self) -> SessionSnapshot:
        """Submit explicitly. Only offered on the last question, or to retry a failed submit."""
        with self._lock:
            self._check_timeout_locked()
            if self._state is SessionState.FINISHED:
                return self._snapshot_locked()
            self._require_in_progress()
            if not self._failed_attempts and self._index != len(self._questions) - 1:
                raise SessionStateError("The exam can only be finished from the last question.")
            self._submit_locked(SubmitTrigger.FINISH)
            return self._snapshot_locked()

    def retry_submit(self) -> SessionSnapshot:
        with self._lock:
            if self._state is SessionState.FINISHED:
                return self._snapshot_locked()
            if not self._failed_attempts:
                raise SessionStateError("There is no failed submission to retry.")
            self._require_in_progress()
            self._submit_locked(SubmitTrigger.FINISH)
            return self._snapshot_locked()

    def _handle_timeout(self) -> None:
        with self._lock:
            if self._state is SessionState.IN_PROGRESS and not self._timeout_handled:
                self._submit_locked(SubmitTrigger.TIMEOUT)

    def _check_timeout_locked(self) -> None:
        if self._state is not SessionState.IN_PROGRESS or self._countdown is None or self._timeout_handled:
            return
        if self._countdown.poll() or self._countdown.expired:
            self._submit_locked(SubmitTrigger.TIMEOUT)

    def _submit_locked(self, trigger: SubmitTrigger) -> None:
        if self._submitting or self._state is not SessionState.IN_PROGRESS:
            return
        self._submitting = True
        self._state = SessionState.SUBMITTING
        if self._countdown is not None:
            self._countdown.cancel()
        if trigger is SubmitTrigger.TIMEOUT:
            self._timeout_handled = True
            self._time_up = True
        logger.info("Submitting exam %s for %s (%s)", self._exam_id, self._student_id, trigger.value)

        try:
            self._result = self._persist_result_locked()
        except Exception:
            logger.exception("Saving result for %s on %s failed", self._student_id, self._exam_id)
            self._failed_attempts += 1
            self._last_error = SUBMISSION_FAILED_MESSAGE
            self._state = SessionState.IN_PROGRESS
            if not self._time_up and not (self._countdown is not None and self._countdown.resume()):
                self._time_up = True
            return
        finally:
            self._submitting = False

        self._last_error = None
        self._state = SessionState.FINISHED
        if self._on_finished is not None:
            self._on_finished(self)

    def _persist_result_locked(self) -> ExamResult:
        result = score_exam(
            self._exam_id,
            self._student_id,
            self._questions,
            self._answers,
            submitted_at=self._now(),
        )
        try:
            return self._results.create_result(result)
        except ConflictError:
            stored = self._results.get_result(self._student_id, self._exam_id)
            if stored is None:
                raise
            self._message = ALREADY_COMPLETED_MESSAGE
            logger.warning("Result for %s on %s already existed", self._student_id, self._exam_id)
            return stored

    # --- Queries ---

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def result(self) -> ExamResult | None:
        with self._lock:
            return self._result

    @property
    def exam_id(self) -> str:
        return self._exam_id

    @property
    def student_id(self) -> str:
        return self._student_id

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            self._check_timeout_locked()
            return self._snapshot_locked()

    def _require_in_progress(self) -> None:
        self._check_timeout_locked()
        if self._state is not SessionState.IN_PROGRESS:
            raise SessionStateError(f"Session is {self._state.value}; the action is not allowed.")

    def _snapshot_locked(self) -> SessionSnapshot:
        current = self._questions[self._index] if self._questions else None
        remaining = self._countdown.remaining_seconds() if self._countdown is not None else 0
        return SessionSnapshot(
            exam_id=self._exam_id,
            student_id=self._student_id,
            state=self._state,
            current_index=self._index,
            question_count=len(self._questions),
            current_question=current,
            answers=dict(self._answers),
            remaining_seconds=remaining,
            time_up=self._time_up,
            results_ready=self._state is SessionState.FINISHED and self._result is not None,
            message=self._message,
            last_error=self._last_error,
            result=self._result,
            exam=self._exam,
        )
