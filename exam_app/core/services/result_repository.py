"""Service for persisting and querying exam results.

Results live in one flat collection keyed ``"<studentId>_<examId>"`` so a
single equality query on ``examId`` returns everything a ranking needs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from exam_app.constants.exam_constants import RESULTS_COLLECTION
from exam_app.core.errors import ConflictError
from exam_app.core.models import ExamResult, result_key
from exam_app.storage.document_store import Document, DocumentStore

logger = logging.getLogger(__name__)


class ResultRepository:
    """Create-once storage for :class:`ExamResult` records."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def get_result(self, student_id: str, exam_id: str) -> ExamResult | None:
        document = self._store.get(RESULTS_COLLECTION, result_key(student_id, exam_id))
        return result_from_document(document) if document is not None else None

    def create_result(self, result: ExamResult) -> ExamResult:
        """Store a new result. A second result for the same pair is rejected."""
        try:
            self._store.insert(RESULTS_COLLECTION, result.id, result_to_document(result))
        except ConflictError as exc:
            raise ConflictError(
                f"Student {result.student_id} already has a result for exam {result.exam_id}."
            ) from exc
        logger.info(
            "Saved result %s: %d%% (%d/%d)",
            result.id,
            result.score_percentage,
            result.correct_count,
            result.total_questions,
        )
        return result

    def results_for_exam(self, exam_id: str) -> list[ExamResult]:
        return [result_from_document(data) for _, data in self._store.query(RESULTS_COLLECTION, "examId", exam_id)]

    def results_for_student(self, student_id: str) -> list[ExamResult]:
        return [
            result_from_document(data)
            for _, data in self._store.query(RESULTS_COLLECTION, "studentId", student_id)
        ]

    def all_results(self) -> list[ExamResult]:
        return [result_from_document(data) for _, data in self._store.stream(RESULTS_COLLECTION)]


def result_to_document(result: ExamResult) -> Document:
    return {
        "id": result.id,
        "examId": result.exam_id,
        "studentId": result.student_id,
        "scorePercentage": result.score_percentage,
        "correctness": result.correct_count,
        "totalQuestions": result.total_questions,
        "submissionTime": result.submitted_at,
        "userAnswers": dict(result.user_answers),
    }


def result_from_document(data: Document) -> ExamResult:
    submitted_at = data.get("submissionTime")
    if not isinstance(submitted_at, datetime):
        submitted_at = datetime.fromtimestamp(0, tz=timezone.utc)
    elif submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    return ExamResult(
        exam_id=data["examId"],
        student_id=data["studentId"],
        score_percentage=int(data.get("scorePercentage", 0)),
        correct_count=int(data.get("correctness", 0)),
        total_questions=int(data.get("totalQuestions", 0)),
        submitted_at=submitted_at,
        user_answers=dict(data.get("userAnswers") or {}),
    )
