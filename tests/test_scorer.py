from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from exam_app.core.errors import InvalidInputError
from exam_app.core.models import Question
from exam_app.core.scorer import count_correct, percentage, round_half_up, score_exam

from conftest import make_questions


class TestRounding:
    @pytest.mark.parametrize(
        ("correct", "total", "expected"),
        [(1, 3, 33), (2, 3, 67), (1, 40, 3), (1, 8, 13), (0, 5, 0), (5, 5, 100)],
    )
    def test_percentage_rounds_half_up(self, correct, total, expected):
        assert percentage(correct, total) == expected

    def test_average_of_scores(self):
        assert round_half_up(90 + 90 + 70, 3) == 83

    def test_non_positive_denominator(self):
        with pytest.raises(InvalidInputError):
            round_half_up(1, 0)


class TestScoreExam:
    def test_result_is_read_only(self):
        result = score_exam("e1", "s1", make_questions(1), {"q1": "2"})
        with pytest.raises(FrozenInstanceError):
            result.score_percentage = 0

    def test_all_correct(self):
        questions = make_questions(3)
        answers = {q.id: q.correct_answer for q in questions}
        result = score_exam("e1", "s1", questions, answers)
        assert result.score_percentage == 100
        assert result.correct_count == 3
        assert result.total_questions == 3

    def test_unanswered_counts_as_incorrect(self):
        questions = make_questions(3)
        result = score_exam("e1", "s1", questions, {"q1": questions[0].correct_answer})
        assert result.correct_count == 1
        assert result.score_percentage == 33
        assert result.unanswered_count == 2
        assert result.incorrect_count == 0

    def test_exact_string_match(self):
        question = Question(id="q1", text="Capital?", options=["Paris", "paris "], correct_answer="Paris")
        assert count_correct([question], {"q1": "paris "}) == 0

    def test_answers_for_unknown_questions_are_ignored(self):
        questions = make_questions(1)
        result = score_exam("e1", "s1", questions, {"q1": "2", "ghost": "x"})
        assert result.user_answers == {"q1": "2"}

    def test_result_is_keyed_by_student_and_exam(self):
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = score_exam("e1", "s1", make_questions(1), {}, submitted_at=stamp)
        assert result.id == "s1_e1"
        assert result.submitted_at == stamp

    def test_zero_questions_is_rejected(self):
        with pytest.raises(InvalidInputError):
            score_exam("e1", "s1", [], {})
