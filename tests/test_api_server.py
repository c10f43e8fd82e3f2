import pytest
from fastapi.testclient import TestClient

from exam_app.core.auth import account_email
from exam_app.server.api_server import create_api_app

EXAM_BODY = {
    "title": "Arithmetic",
    "description": "Sums",
    "difficulty": "Easy",
    "timer": 5,
    "questions": [
        {"text": "What is $1 + 1$?", "options": ["2", "3"], "correct_answer": "2"},
        {"text": "What is 2 + 2?", "options": ["4", "5"], "correct_answer": "4"},
    ],
}


@pytest.fixture
def client(manager) -> TestClient:
    return TestClient(create_api_app(manager))


def bearer(manager, auth, full_name, username, role) -> dict[str, str]:
    manager.create_user(full_name, username, "password1", role)
    token = auth.sign_in(account_email(username, role), "password1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def teacher(manager, auth) -> dict[str, str]:
    return bearer(manager, auth, "Mr Karimi", "karimi", "teacher")


@pytest.fixture
def student(manager, auth) -> dict[str, str]:
    return bearer(manager, auth, "Sara Ahmadi", "0012345678", "student")


@pytest.fixture
def exam_id(client, teacher) -> str:
    response = client.post("/exams", json=EXAM_BODY, headers=teacher)
    assert response.status_code == 201
    return response.json()["id"]


def take_exam(client, headers, exam_id, answers) -> dict:
    state = client.post(f"/exams/{exam_id}/session", headers=headers).json()
    for number, option in enumerate(answers):
        question_id = state["question"]["id"]
        state = client.post(
            f"/exams/{exam_id}/session/answer",
            json={"question_id": question_id, "option": option},
            headers=headers,
        ).json()
        if number < len(answers) - 1:
            state = client.post(f"/exams/{exam_id}/session/next", headers=headers).json()
    return client.post(f"/exams/{exam_id}/session/finish", headers=headers).json()


class TestAuthentication:
    def test_health_is_public(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_missing_token(self, client):
        assert client.get("/exams").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/exams", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    def test_student_cannot_create_exams(self, client, student):
        response = client.post("/exams", json=EXAM_BODY, headers=student)
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"


class TestExams:
    def test_create_and_list(self, client, teacher, student, exam_id):
        listed = client.get("/exams", headers=student).json()
        assert [(e["id"], e["question_count"]) for e in listed] == [(exam_id, 2)]
        questions = client.get(f"/exams/{exam_id}/questions", headers=teacher).json()
        assert questions[0]["correct_answer"] == "2"
        assert "<p>" in questions[0]["question_html"]

    def test_invalid_exam(self, client, teacher):
        response = client.post("/exams", json={**EXAM_BODY, "timer": 0}, headers=teacher)
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_input"

    def test_missing_exam(self, client, student):
        response = client.get("/exams/unknown", headers=student)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_export_and_import(self, client, teacher, exam_id):
        exported = client.get(f"/exams/{exam_id}/export", headers=teacher)
        assert exported.status_code == 200
        assert "CORRECT: A" in exported.text
        imported = client.post("/questions/import", json={"text": exported.text}, headers=teacher).json()
        assert [q["correct_answer"] for q in imported] == ["2", "4"]

    def test_update_and_delete(self, client, teacher, exam_id):
        body = {**EXAM_BODY, "title": "Renamed", "questions": None}
        assert client.put(f"/exams/{exam_id}", json=body, headers=teacher).json()["question_count"] == 2
        assert client.delete(f"/exams/{exam_id}", headers=teacher).status_code == 204
        assert client.get(f"/exams/{exam_id}", headers=teacher).status_code == 404


class TestTakingAnExam:
    def test_full_attempt(self, client, student, exam_id):
        finished = take_exam(client, student, exam_id, ["2", "5"])
        assert finished["state"] == "finished"
        assert finished["result"]["score_percentage"] == 50

        summary = client.get(f"/exams/{exam_id}/result", headers=student).json()
        assert summary["rank"] == 1
        assert summary["participants"] == 1
        assert (summary["correct"], summary["incorrect"], summary["unanswered"]) == (1, 1, 0)

        board = client.get(f"/exams/{exam_id}/leaderboard", headers=student).json()
        assert [(row["rank"], row["student_name"]) for row in board["rows"]] == [(1, "Sara Ahmadi")]
        history = client.get("/me/history", headers=student).json()
        assert history[0]["title"] == "Arithmetic"

    def test_retake_shows_finished_attempt(self, client, student, exam_id):
        take_exam(client, student, exam_id, ["2", "4"])
        again = client.post(f"/exams/{exam_id}/session", headers=student).json()
        assert again["state"] == "finished"
        assert again["result"]["score_percentage"] == 100

    def test_unknown_option(self, client, student, exam_id):
        state = client.post(f"/exams/{exam_id}/session", headers=student).json()
        response = client.post(
            f"/exams/{exam_id}/session/answer",
            json={"question_id": state["question"]["id"], "option": "9"},
            headers=student,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_input"

    def test_finish_before_last_question(self, client, student, exam_id):
        client.post(f"/exams/{exam_id}/session", headers=student)
        response = client.post(f"/exams/{exam_id}/session/finish", headers=student)
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_teacher_cannot_take_exams(self, client, teacher, exam_id):
        assert client.post(f"/exams/{exam_id}/session", headers=teacher).status_code == 403

    def test_overall_report(self, client, teacher, student, exam_id):
        take_exam(client, student, exam_id, ["2", "4"])
        report = client.get("/reports/overall", headers=teacher).json()
        assert report["total_taken"] == 1
        assert report["unique_students"] == 1
        assert report["exams"][0]["average_score"] == 100
        assert client.get("/reports/overall", headers=student).status_code == 403


class TestAiEndpoints:
    def test_generate(self, client, teacher, completions):
        completions.queue(
            {"questions": [{"question": "Capital of Italy?", "options": ["Rome", "Oslo"], "correctAnswer": "Rome"}]}
        )
        response = client.post("/ai/generate", json={"topic": "Europe", "count": 1}, headers=teacher)
        assert response.status_code == 200
        assert response.json()[0]["correct_answer"] == "Rome"

    def test_provider_failure(self, client, teacher, completions):
        completions.queue("garbage")
        response = client.post("/ai/translate-topic", json={"topic": "x"}, headers=teacher)
        assert response.status_code == 502
        assert response.json()["error"] == "external_service"


class TestUsers:
    def test_teacher_manages_users(self, client, teacher, student):
        users = client.get("/users", headers=teacher).json()
        assert {u["role"] for u in users} == {"teacher", "student"}
        created = client.post(
            "/users",
            json={"full_name": "Reza Nouri", "username": "2222222222", "password": "password1"},
            headers=teacher,
        )
        assert created.status_code == 201
        assert client.get("/users/2222222222", headers=teacher).json()["first_name"] == "Reza"
        assert client.delete("/users/2222222222", headers=teacher).status_code == 204
        assert client.post("/users/sync", headers=teacher).json()["deleted"] == 1

    def test_student_cannot_list_users(self, client, student):
        assert client.get("/users", headers=student).status_code == 403

    def test_update_own_profile(self, client, student):
        response = client.put(
            "/me/profile",
            json={"first_name": "Sara", "last_name": "Rahimi", "national_id": "0012345678"},
            headers=student,
        )
        assert response.status_code == 200
        assert response.json()["full_name"] == "Sara Rahimi"
