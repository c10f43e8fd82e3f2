"""FastAPI server that exposes the exam endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
import uvicorn

from exam_app.constants.about import APP_NAME, APP_VERSION
from exam_app.constants.exam_constants import (
    AI_DEFAULT_GENERATED_QUESTIONS,
    DEFAULT_LEADERBOARD_SIZE,
    DEFAULT_TIME_LIMIT_MINUTES,
)
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.auth import require_capability
from exam_app.core.errors import ExamAppError
from exam_app.core.exam_manager import ExamManager
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import AuthSession, Difficulty, Exam, ExamResult, Question, User
from exam_app.core.services.exam_session import SessionSnapshot
from exam_app.core.services.leaderboard import HistoryEntry
from exam_app.core.services.user_directory import ProfileUpdate

ERROR_STATUS: dict[str, int] = {
    "invalid_input": 422,
    "not_found": 404,
    "persistence": 503,
    "external_service": 502,
    "permission_denied": 403,
    "conflict": 409,
    "invalid_state": 409,
    "migration": 500,
}


class QuestionPayload(BaseModel):
    id: str = ""
    text: str
    options: list[str]
    correct_answer: str
    image_url: str | None = None


class ExamPayload(BaseModel):
    title: str
    description: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    timer: int = DEFAULT_TIME_LIMIT_MINUTES
    cover_image_url: str | None = None
    questions: list[QuestionPayload] | None = None


class ImportPayload(BaseModel):
    text: str


class GeneratePayload(BaseModel):
    topic: str
    difficulty: Difficulty = Difficulty.MEDIUM
    count: int = AI_DEFAULT_GENERATED_QUESTIONS


class TranslatePayload(BaseModel):
    questions: list[QuestionPayload]
    language: str = "Persian"


class TopicPayload(BaseModel):
    topic: str


class ImageHintPayload(BaseModel):
    topic: str
    hints: list[str] = Field(min_length=1)


class AnswerPayload(BaseModel):
    question_id: str
    option: str


class CreateUserPayload(BaseModel):
    full_name: str
    username: str
    password: str
    role: str = "student"


class ProfilePayload(BaseModel):
    first_name: str
    last_name: str
    national_id: str
    new_password: str | None = None


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc).isoformat()
    return value.astimezone(timezone.utc).isoformat()


def _to_question(payload: QuestionPayload) -> Question:
    return Question(
        id=payload.id,
        text=payload.text,
        options=list(payload.options),
        correct_answer=payload.correct_answer,
        image_url=payload.image_url,
    )


def _to_exam(payload: ExamPayload) -> Exam:
    return Exam(
        id="",
        title=payload.title,
        timer=payload.timer,
        difficulty=payload.difficulty,
        description=payload.description,
        cover_image_url=payload.cover_image_url,
    )


def _question_dict(question: Question, include_answer: bool) -> dict[str, object]:
    data: dict[str, object] = {
        "id": question.id,
        "text": question.text,
        "question_html": renderer.render_fragment(question.text),
        "options": list(question.options),
        "image_url": question.image_url,
    }
    if include_answer:
        data["correct_answer"] = question.correct_answer
    return data


def _exam_dict(exam: Exam, question_count: int | None = None) -> dict[str, object]:
    data: dict[str, object] = {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "difficulty": exam.difficulty.value,
        "timer": exam.timer,
        "cover_image_url": exam.cover_image_url,
        "teacher_id": exam.teacher_id,
        "created_at": _iso(exam.created_at),
    }
    if question_count is not None:
        data["question_count"] = question_count
    return data


def _result_dict(result: ExamResult) -> dict[str, object]:
    return {
        "id": result.id,
        "exam_id": result.exam_id,
        "student_id": result.student_id,
        "score_percentage": result.score_percentage,
        "correct_count": result.correct_count,
        "total_questions": result.total_questions,
        "submitted_at": _iso(result.submitted_at),
        "user_answers": dict(result.user_answers),
    }


def _user_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "national_id": user.national_id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "role": user.role.value,
        "email": user.email,
    }


def _snapshot_dict(snapshot: SessionSnapshot) -> dict[str, object]:
    question = snapshot.current_question
    return {
        "exam_id": snapshot.exam_id,
        "state": snapshot.state.value,
        "current_index": snapshot.current_index,
        "question_count": snapshot.question_count,
        "is_last_question": snapshot.is_last_question,
        "question": _question_dict(question, include_answer=False) if question else None,
        "answers": dict(snapshot.answers),
        "remaining_seconds": snapshot.remaining_seconds,
        "time_up": snapshot.time_up,
        "results_ready": snapshot.results_ready,
        "message": snapshot.message,
        "last_error": snapshot.last_error,
        "result": _result_dict(snapshot.result) if snapshot.result else None,
    }


def _get_exam_manager_dependency(exam_manager: ExamManager):
    def dependency() -> ExamManager:
        return exam_manager

    return dependency


def create_api_app(exam_manager: ExamManager) -> FastAPI:
    """Create a FastAPI application wired to the provided exam manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    exam_manager_dep = _get_exam_manager_dependency(exam_manager)
    bearer = HTTPBearer(auto_error=False)

    @app.exception_handler(ExamAppError)
    async def handle_exam_app_error(request: Request, exc: ExamAppError) -> JSONResponse:
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.kind, 500),
            content={"error": exc.kind, "detail": exc.message},
        )

    def current_session(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> AuthSession:
        if credentials is None or not credentials.credentials:
            raise HTTPException(
                status_code=401,
                detail="Missing bearer token.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return manager.authenticate(credentials.credentials)

    def requires(capability: str):
        def dependency(session: AuthSession = Depends(current_session)) -> AuthSession:
            return require_capability(session, capability)

        return dependency

    teacher = requires("can_manage_exams")
    student = requires("can_take_exams")

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "version": APP_VERSION}

    # --- Exams ---

    @app.get("/exams")
    def list_exams(
        session: AuthSession = Depends(current_session),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_exam_dict(exam, manager.get_question_count(exam.id)) for exam in manager.list_exams()]

    @app.post("/exams", status_code=201)
    def create_exam(
        payload: ExamPayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        questions = [_to_question(q) for q in payload.questions or []]
        exam = manager.create_exam(session, _to_exam(payload), questions)
        return _exam_dict(exam, len(questions))

    @app.get("/exams/{exam_id}")
    def get_exam(
        exam_id: str,
        session: AuthSession = Depends(current_session),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _exam_dict(manager.get_exam(exam_id), manager.get_question_count(exam_id))

    @app.get("/exams/{exam_id}/questions")
    def get_questions(
        exam_id: str,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_question_dict(q, include_answer=True) for q in manager.get_questions(exam_id)]

    @app.put("/exams/{exam_id}")
    def update_exam(
        exam_id: str,
        payload: ExamPayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        questions = [_to_question(q) for q in payload.questions] if payload.questions is not None else None
        exam = manager.update_exam(exam_id, _to_exam(payload), questions)
        return _exam_dict(exam, manager.get_question_count(exam_id))

    @app.delete("/exams/{exam_id}", status_code=204)
    def delete_exam(
        exam_id: str,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> None:
        manager.delete_exam(exam_id)

    @app.get("/exams/{exam_id}/export", response_class=PlainTextResponse)
    def export_exam(
        exam_id: str,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> str:
        return manager.export_questions(exam_id)

    @app.post("/questions/import")
    def import_questions(
        payload: ImportPayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_question_dict(q, include_answer=True) for q in manager.import_questions(payload.text)]

    # --- AI ---

    @app.post("/ai/generate")
    def generate_questions(
        payload: GeneratePayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        questions = manager.generate_questions(payload.topic, payload.difficulty, payload.count)
        return [_question_dict(q, include_answer=True) for q in questions]

    @app.post("/ai/translate")
    def translate_questions(
        payload: TranslatePayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        questions = manager.translate_questions([_to_question(q) for q in payload.questions], payload.language)
        return [_question_dict(q, include_answer=True) for q in questions]

    @app.post("/ai/translate-topic")
    def translate_topic(
        payload: TopicPayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return {"topic": manager.translate_topic(payload.topic)}

    @app.post("/ai/image-hint")
    def find_image_hint(
        payload: ImageHintPayload,
        session: AuthSession = Depends(teacher),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return {"hint": manager.find_relevant_image(payload.topic, payload.hints)}

    # --- Exam session ---

    @app.post("/exams/{exam_id}/session")
    def start_exam(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.start_exam(session.user_id, exam_id))

    @app.get("/exams/{exam_id}/session")
    def get_session_state(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.get_session_state(session.user_id, exam_id))

    @app.post("/exams/{exam_id}/session/answer")
    def select_answer(
        exam_id: str,
        payload: AnswerPayload,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        snapshot = manager.select_answer(session.user_id, exam_id, payload.question_id, payload.option)
        return _snapshot_dict(snapshot)

    @app.post("/exams/{exam_id}/session/next")
    def next_question(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.next_question(session.user_id, exam_id))

    @app.post("/exams/{exam_id}/session/previous")
    def previous_question(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.previous_question(session.user_id, exam_id))

    @app.post("/exams/{exam_id}/session/finish")
    def finish_exam(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.finish_exam(session.user_id, exam_id))

    @app.post("/exams/{exam_id}/session/retry")
    def retry_submission(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _snapshot_dict(manager.retry_submission(session.user_id, exam_id))

    # --- Results ---

    @app.get("/exams/{exam_id}/result")
    def get_own_result(
        exam_id: str,
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        result, rank, counts = manager.get_result(session.user_id, exam_id)
        participants, average = manager.get_exam_statistics(exam_id)
        return {
            "result": _result_dict(result),
            "rank": rank,
            "participants": participants,
            "average_score": average,
            "correct": counts.correct,
            "incorrect": counts.incorrect,
            "unanswered": counts.unanswered,
        }

    @app.get("/me/history")
    def get_own_history(
        session: AuthSession = Depends(student),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_history_dict(entry) for entry in manager.get_history(session.user_id)]

    @app.get("/exams/{exam_id}/leaderboard")
    def get_leaderboard(
        exam_id: str,
        limit: int = DEFAULT_LEADERBOARD_SIZE,
        session: AuthSession = Depends(current_session),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        rows = manager.get_leaderboard(exam_id, limit)
        participants, average = manager.get_exam_statistics(exam_id)
        return {
            "exam_id": exam_id,
            "participants": participants,
            "average_score": average,
            "rows": [
                {
                    "rank": row.rank,
                    "student_id": row.student_id,
                    "student_name": row.student_name,
                    "score_percentage": row.score_percentage,
                    "correct_count": row.correct_count,
                    "total_questions": row.total_questions,
                    "submitted_at": _iso(row.submitted_at),
                }
                for row in rows
            ],
        }

    @app.get("/reports/overall")
    def get_overall_report(
        session: AuthSession = Depends(requires("can_view_reports")),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        report = manager.get_overall_report()
        return {
            "total_taken": report.total_taken,
            "average_score": report.average_score,
            "unique_students": report.unique_students,
            "total_exams": report.total_exams,
            "exams": [
                {
                    "exam_id": summary.exam_id,
                    "title": summary.title,
                    "difficulty": summary.difficulty.value,
                    "participants": summary.participants,
                    "average_score": summary.average_score,
                }
                for summary in report.exams
            ],
        }

    # --- Users ---

    user_manager = requires("can_manage_users")

    @app.get("/users")
    def list_users(
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        return [_user_dict(user) for user in manager.list_users()]

    @app.post("/users", status_code=201)
    def create_user(
        payload: CreateUserPayload,
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        user = manager.create_user(payload.full_name, payload.username, payload.password, payload.role)
        return _user_dict(user)

    @app.post("/users/sync")
    def sync_users(
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        report = manager.sync_auth_users()
        return {"checked": report.checked, "deleted": report.deleted, "failed": report.failed}

    @app.get("/users/{key}")
    def get_user(
        key: str,
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        return _user_dict(manager.get_user(key))

    @app.get("/users/{key}/history")
    def get_user_history(
        key: str,
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> list[dict[str, object]]:
        user = manager.get_user(key)
        return [_history_dict(entry) for entry in manager.get_history(user.auth_uid or user.id)]

    @app.delete("/users/{key}", status_code=204)
    def delete_user(
        key: str,
        session: AuthSession = Depends(user_manager),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> None:
        manager.delete_user(key)

    @app.put("/me/profile")
    def update_profile(
        payload: ProfilePayload,
        session: AuthSession = Depends(current_session),
        manager: ExamManager = Depends(exam_manager_dep),
    ) -> dict[str, object]:
        update = ProfileUpdate(
            first_name=payload.first_name,
            last_name=payload.last_name,
            national_id=payload.national_id,
            new_password=payload.new_password,
        )
        return _user_dict(manager.update_profile(session, update))

    return app


def _history_dict(entry: HistoryEntry) -> dict[str, object]:
    return {
        "exam_id": entry.exam_id,
        "title": entry.title,
        "date": _iso(entry.submitted_at),
        "score": entry.score_percentage,
        "correct_answers": entry.correct_count,
        "total_questions": entry.total_questions,
        "rank": entry.rank,
        "participants": entry.participants,
    }


def start_api_server(
    exam_manager: ExamManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(exam_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    try:
        server.run()
    finally:
        exam_manager.shutdown()
