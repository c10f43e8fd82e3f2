from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from exam_app.ai.question_generator import QuestionGenerator
from exam_app.core.auth import InMemoryAuthProvider
from exam_app.core.exam_manager import ExamManager
from exam_app.core.models import Difficulty, Exam, Question
from exam_app.core.services.exam_repository import ExamRepository
from exam_app.core.services.result_repository import ResultRepository
from exam_app.storage import InMemoryDocumentStore

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock and wall clock that only move when told to."""

    def __init__(self) -> None:
        self.value = 1000.0
        self.wall = START

    def __call__(self) -> float:
        return self.value

    def now(self) -> datetime:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.value += seconds
        self.wall += timedelta(seconds=seconds)


class ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]

    def active(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


class FakeCompletions:
    """Stands in for ``client.chat.completions``; replies with queued JSON payloads."""

    def __init__(self) -> None:
        self.replies: list[object] = []
        self.calls: list[dict] = []

    def queue(self, payload: object) -> None:
        self.replies.append(payload)

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def exams(store, clock) -> ExamRepository:
    return ExamRepository(store, clock=clock.now)


@pytest.fixture
def results(store) -> ResultRepository:
    return ResultRepository(store)


@pytest.fixture
def auth(clock) -> InMemoryAuthProvider:
    return InMemoryAuthProvider(clock=clock.now)


@pytest.fixture
def completions() -> FakeCompletions:
    return FakeCompletions()


@pytest.fixture
def generator(completions) -> QuestionGenerator:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return QuestionGenerator(client=client, model="test-model")


@pytest.fixture
def manager(store, auth, generator, clock, timers) -> ExamManager:
    exam_manager = ExamManager(store, auth, ai=generator, clock=clock, timer_factory=timers, now=clock.now)
    yield exam_manager
    exam_manager.shutdown()


def make_questions(count: int = 3) -> list[Question]:
    return [
        Question(
            id=f"q{n}",
            text=f"What is {n} + {n}?",
            options=[str(2 * n), str(2 * n + 1), str(2 * n + 2)],
            correct_answer=str(2 * n),
        )
        for n in range(1, count + 1)
    ]


def make_exam(title: str = "Arithmetic", timer: int = 1) -> Exam:
    return Exam(id="", title=title, timer=timer, difficulty=Difficulty.EASY, description="Sums")


@pytest.fixture
def exam(exams) -> Exam:
    return exams.create_exam(make_exam(), make_questions(3))
