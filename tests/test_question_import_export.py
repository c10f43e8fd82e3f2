import pytest

from exam_app.core.errors import InvalidInputError
from exam_app.core.question_exporter import serialize_questions
from exam_app.core.question_importer import QuestionImportError, parse_questions

SAMPLE = """
Q: What is $2 + 2$?
A: 3
B: 4
C: 5
CORRECT: B

---

Q: Which planet is known
as the red planet?
A: Venus
B: Mars
CORRECT: b
IMAGE: https://example.org/mars.png
"""


class TestImport:
    def test_parses_blocks(self):
        questions = parse_questions(SAMPLE)
        assert len(questions) == 2
        first, second = questions
        assert first.options == ["3", "4", "5"]
        assert first.correct_answer == "4"
        assert second.text == "Which planet is known\nas the red planet?"
        assert second.correct_answer == "Mars"
        assert second.image_url == "https://example.org/mars.png"

    def test_blank_line_separates_blocks(self):
        text = "Q: One?\nA: x\nB: y\nCORRECT: A\n\nQ: Two?\nA: x\nB: y\nCORRECT: B\n"
        assert [q.correct_answer for q in parse_questions(text)] == ["x", "y"]

    def test_import_error_is_invalid_input(self):
        assert issubclass(QuestionImportError, InvalidInputError)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "A: x\nB: y\nCORRECT: A",
            "Q: Only one option?\nA: x\nCORRECT: A",
            "Q: Gap?\nA: x\nC: y\nCORRECT: A",
            "Q: Missing correct?\nA: x\nB: y",
            "Q: Bad correct?\nA: x\nB: y\nCORRECT: D",
            "Q: Duplicate?\nA: x\nA: y\nCORRECT: A",
            "stray text\nQ: ?\nA: x\nB: y\nCORRECT: A",
        ],
    )
    def test_rejects_malformed_input(self, text):
        with pytest.raises(QuestionImportError):
            parse_questions(text)


class TestExport:
    def test_export_can_be_imported_again(self):
        questions = parse_questions(SAMPLE)
        text = serialize_questions(questions)
        assert "CORRECT: B" in text
        assert "IMAGE: https://example.org/mars.png" in text
        again = parse_questions(text)
        assert [(q.text, q.options, q.correct_answer) for q in again] == [
            (q.text, q.options, q.correct_answer) for q in questions
        ]

    def test_empty_export_is_rejected(self):
        with pytest.raises(InvalidInputError):
            serialize_questions([])
