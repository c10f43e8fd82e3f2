"""Utilities for importing exam questions from a human-friendly text format.

Format (repeat blocks separated by blank lines or '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First option text
    B: Second option text
    ...          (2 to 26 options, lettered in order)
    CORRECT: B
    IMAGE: https://example.org/figure.png   (optional)

Example:

    Q: What is $2 + 2$?
    A: 3
    B: 4
    C: 5
    CORRECT: B
"""

from __future__ import annotations

import string

from exam_app.core.errors import InvalidInputError
from exam_app.core.models import Question


class QuestionImportError(InvalidInputError):
    """Raised when a question definition cannot be parsed."""


_OPTION_LETTERS = string.ascii_uppercase


def parse_questions(text: str) -> list[Question]:
    """Parse every block in ``text``; an input without questions is an error."""
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    questions = [_parse_block(block, number) for number, block in enumerate(blocks, start=1) if block]
    if not questions:
        raise QuestionImportError("The text did not contain any questions.")
    return questions


def _parse_block(block: str, number: int) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    correct_letter: str | None = None
    image_url: str | None = None
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        # "Q:" is also the letter of a seventeenth option
        is_option_q = len(options) == _OPTION_LETTERS.index("Q") and "Q" not in options
        if upper.startswith("Q:") and not is_option_q:
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("CORRECT:"):
            correct_letter = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("IMAGE:"):
            image_url = line.split(":", 1)[1].strip() or None
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_LETTERS and line[1] == ":":
            letter = line[0].upper()
            if letter in options:
                raise QuestionImportError(f"Question {number}: option {letter} is defined twice.")
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in options:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuestionImportError(f"Question {number}: text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuestionImportError(f"Question {number}: question text missing (Q: ...).")

    letters = sorted(options)
    expected = list(_OPTION_LETTERS[: len(letters)])
    if len(letters) < 2:
        raise QuestionImportError(f"Question {number}: at least two options (A, B) are required.")
    if letters != expected:
        raise QuestionImportError(f"Question {number}: options must be lettered in order starting at A.")

    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise QuestionImportError(f"Question {number}: option text cannot be empty.")

    if correct_letter is None:
        raise QuestionImportError(f"Question {number}: CORRECT is required.")
    if correct_letter not in options:
        raise QuestionImportError(f"Question {number}: CORRECT must be one of {', '.join(letters)}.")

    return Question(
        id="",  # assigned when the exam is stored
        text=question_text,
        options=option_list,
        correct_answer=option_list[letters.index(correct_letter)],
        image_url=image_url,
    )
