import pytest

from exam_app.core.errors import NotFoundError
from exam_app.core.services.exam_session import SessionState

from conftest import make_exam, make_questions

STUDENT = "student-1"


def go_to_last_question(manager, exam_id):
    manager.next_question(STUDENT, exam_id)
    manager.next_question(STUDENT, exam_id)


class TestSessionLifecycle:
    def test_finished_session_is_released(self, manager, exam, timers):
        manager.start_exam(STUDENT, exam.id)
        go_to_last_question(manager, exam.id)
        assert manager.finish_exam(STUDENT, exam.id).state is SessionState.FINISHED
        with pytest.raises(NotFoundError):
            manager.get_session_state(STUDENT, exam.id)
        assert timers.active() == []

        again = manager.start_exam(STUDENT, exam.id)
        assert again.state is SessionState.FINISHED
        assert again.result is not None
        with pytest.raises(NotFoundError):
            manager.get_session_state(STUDENT, exam.id)

    def test_timed_out_session_is_released(self, manager, exam, clock, timers):
        manager.start_exam(STUDENT, exam.id)
        manager.select_answer(STUDENT, exam.id, "q1", "2")
        clock.advance(60)
        timers.last.fire()
        with pytest.raises(NotFoundError):
            manager.get_session_state(STUDENT, exam.id)
        result, rank, counts = manager.get_result(STUDENT, exam.id)
        assert (result.correct_count, rank, counts.unanswered) == (1, 1, 2)

    def test_start_is_idempotent_while_in_progress(self, manager, exam, timers):
        manager.start_exam(STUDENT, exam.id)
        manager.next_question(STUDENT, exam.id)
        snapshot = manager.start_exam(STUDENT, exam.id)
        assert snapshot.current_index == 1
        assert len(timers.timers) == 1

    def test_unavailable_exam_can_be_started_once_it_has_questions(self, manager, exam, store):
        for doc_id, _ in store.stream(f"exams/{exam.id}/questions"):
            store.delete(f"exams/{exam.id}/questions", doc_id)
        assert manager.start_exam(STUDENT, exam.id).state is SessionState.UNAVAILABLE

        manager.update_exam(exam.id, make_exam(), make_questions(2))
        assert manager.start_exam(STUDENT, exam.id).state is SessionState.IN_PROGRESS

    def test_missing_exam_leaves_no_session(self, manager):
        with pytest.raises(NotFoundError):
            manager.start_exam(STUDENT, "missing")
        with pytest.raises(NotFoundError):
            manager.get_session_state(STUDENT, "missing")
