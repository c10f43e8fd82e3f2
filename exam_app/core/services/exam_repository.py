"""Service for storing exams and their question sets in the document store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timezone

from exam_app.constants.exam_constants import (
    EXAMS_COLLECTION,
    MAX_TIME_LIMIT_MINUTES,
    MIN_OPTIONS_PER_QUESTION,
    QUESTIONS_SUBCOLLECTION,
)
from exam_app.core.errors import InvalidInputError, NotFoundError
from exam_app.core.models import Difficulty, Exam, Question
from exam_app.storage.document_store import Document, DocumentStore

logger = logging.getLogger(__name__)


def questions_path(exam_id: str) -> str:
    return f"{EXAMS_COLLECTION}/{exam_id}/{QUESTIONS_SUBCOLLECTION}"


class ExamRepository:
    """Manages the lifecycle and storage of exams and their questions."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_exam(self, draft: Exam, questions: Sequence[Question]) -> Exam:
        """Validate and persist a new exam; the draft's id is ignored."""
        if not questions:
            raise InvalidInputError("An exam must contain at least one question.")
        prepared_questions = [prepare_question(q) for q in questions]
        exam = self._prepare_exam(draft)

        exam_id = self._store.new_id(EXAMS_COLLECTION)
        exam = replace(exam, id=exam_id, created_at=self._clock())
        batch = self._store.batch()
        batch.set(EXAMS_COLLECTION, exam_id, exam_to_document(exam))
        self._stage_questions(batch, exam_id, prepared_questions)
        batch.commit()
        logger.info("Created exam %s (%s) with %d questions", exam_id, exam.title, len(prepared_questions))
        return exam

    def get_exam(self, exam_id: str) -> Exam:
        exam = self.find_exam(exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {exam_id} does not exist.")
        return exam

    def find_exam(self, exam_id: str) -> Exam | None:
        document = self._store.get(EXAMS_COLLECTION, exam_id)
        if document is None:
            return None
        return exam_from_document(exam_id, document)

    def list_exams(self) -> list[Exam]:
        """Return every exam, newest first."""
        exams = [exam_from_document(doc_id, data) for doc_id, data in self._store.stream(EXAMS_COLLECTION)]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(exams, key=lambda e: _as_aware(e.created_at) or epoch, reverse=True)

    def get_questions(self, exam_id: str) -> list[Question]:
        """Return the question set in authoring order."""
        documents = self._store.stream(questions_path(exam_id))
        documents.sort(key=lambda item: item[1].get("position", 0))
        return [question_from_document(doc_id, data) for doc_id, data in documents]

    def get_question_count(self, exam_id: str) -> int:
        return len(self._store.stream(questions_path(exam_id)))

    def update_exam(self, exam_id: str, draft: Exam, questions: Sequence[Question] | None = None) -> Exam:
        """Replace exam metadata and, when given, the whole question set."""
        current = self.get_exam(exam_id)
        prepared = self._prepare_exam(draft)
        updated = replace(
            prepared,
            id=exam_id,
            teacher_id=current.teacher_id,
            created_at=current.created_at,
        )

        batch = self._store.batch()
        batch.set(EXAMS_COLLECTION, exam_id, exam_to_document(updated))
        if questions is not None:
            if not questions:
                raise InvalidInputError("An exam must contain at least one question.")
            prepared_questions = [prepare_question(q) for q in questions]
            kept = self._stage_questions(batch, exam_id, prepared_questions)
            for doc_id, _ in self._store.stream(questions_path(exam_id)):
                if doc_id not in kept:
                    batch.delete(questions_path(exam_id), doc_id)
        batch.commit()
        logger.info("Updated exam %s", exam_id)
        return updated

    def delete_exam(self, exam_id: str) -> None:
        """Delete an exam and its questions. Stored results are kept."""
        self.get_exam(exam_id)
        batch = self._store.batch()
        for doc_id, _ in self._store.stream(questions_path(exam_id)):
            batch.delete(questions_path(exam_id), doc_id)
        batch.delete(EXAMS_COLLECTION, exam_id)
        batch.commit()
        logger.info("Deleted exam %s", exam_id)

    def _stage_questions(self, batch, exam_id: str, questions: Sequence[Question]) -> set[str]:
        path = questions_path(exam_id)
        used_ids: set[str] = set()
        for position, question in enumerate(questions):
            doc_id = question.id
            if not doc_id or doc_id in used_ids:
                number = position + 1
                while f"q{number:03d}" in used_ids:
                    number += 1
                doc_id = f"q{number:03d}"
            used_ids.add(doc_id)
            document = question_to_document(replace(question, id=doc_id), exam_id)
            document["position"] = position
            batch.set(path, doc_id, document)
        return used_ids

    @staticmethod
    def _prepare_exam(draft: Exam) -> Exam:
        title = draft.title.strip()
        if len(title) < 3:
            raise InvalidInputError("Exam title must be at least 3 characters long.")
        if not isinstance(draft.timer, int) or isinstance(draft.timer, bool):
            raise InvalidInputError("Exam timer must be an integer number of minutes.")
        if not 1 <= draft.timer <= MAX_TIME_LIMIT_MINUTES:
            raise InvalidInputError(f"Exam timer must be between 1 and {MAX_TIME_LIMIT_MINUTES} minutes.")
        return replace(
            draft,
            title=title,
            description=(draft.description or "").strip(),
            difficulty=Difficulty(draft.difficulty),
        )


def prepare_question(question: Question) -> Question:
    """Validate and normalize a question before storage."""
    text = question.text.strip()
    if not text:
        raise InvalidInputError("Question text must not be empty.")
    options = _validate_options(question.options)
    correct = question.correct_answer.strip()
    if correct not in options:
        raise InvalidInputError(f"Correct answer {correct!r} must match one of the options.")
    return Question(
        id=question.id,
        text=text,
        options=options,
        correct_answer=correct,
        image_url=question.image_url or None,
    )


def _validate_options(options: Sequence[str]) -> list[str]:
    if len(options) < MIN_OPTIONS_PER_QUESTION:
        raise InvalidInputError(f"Each question needs at least {MIN_OPTIONS_PER_QUESTION} options.")
    cleaned = [option.strip() for option in options]
    if any(not option for option in cleaned):
        raise InvalidInputError("Option text cannot be empty.")
    if len(set(cleaned)) != len(cleaned):
        raise InvalidInputError("Options of a question must be distinct.")
    return cleaned


def _as_aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def exam_to_document(exam: Exam) -> Document:
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "difficulty": Difficulty(exam.difficulty).value,
        "timer": exam.timer,
        "coverImageURL": exam.cover_image_url or "",
        "teacherId": exam.teacher_id,
        "createdAt": exam.created_at,
    }


def exam_from_document(doc_id: str, data: Document) -> Exam:
    try:
        difficulty = Difficulty(data.get("difficulty", Difficulty.MEDIUM.value))
    except ValueError:
        difficulty = Difficulty.MEDIUM
    return Exam(
        id=doc_id,
        title=data.get("title", ""),
        timer=int(data.get("timer", data.get("timeLimitMinutes", 0)) or 0),
        difficulty=difficulty,
        description=data.get("description") or "",
        cover_image_url=data.get("coverImageURL") or None,
        teacher_id=data.get("teacherId"),
        created_at=data.get("createdAt"),
    )


def question_to_document(question: Question, exam_id: str) -> Document:
    return {
        "id": question.id,
        "examId": exam_id,
        "text": question.text,
        "options": list(question.options),
        "correctAnswer": question.correct_answer,
        "imageURL": question.image_url or "",
    }


def question_from_document(doc_id: str, data: Document) -> Question:
    return Question(
        id=doc_id,
        text=data.get("text", ""),
        options=list(data.get("options", [])),
        correct_answer=data.get("correctAnswer", ""),
        image_url=data.get("imageURL") or None,
    )
