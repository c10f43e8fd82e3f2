"""Utilities for exporting exam questions to the plain-text import format."""

from __future__ import annotations

import string

from exam_app.core.errors import InvalidInputError
from exam_app.core.models import Question

_OPTION_LETTERS = string.ascii_uppercase


def serialize_questions(questions: list[Question]) -> str:
    if not questions:
        raise InvalidInputError("Cannot export an exam without questions.")
    blocks = [_serialize_question(question) for question in questions]
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_question(question: Question) -> str:
    if len(question.options) > len(_OPTION_LETTERS):
        raise InvalidInputError(f"Question {question.id} has more options than letters A-Z.")
    lines: list[str] = []

    question_lines = question.text.splitlines() or [question.text]
    lines.append(f"Q: {question_lines[0]}")
    lines.extend(question_lines[1:])

    for letter, option_text in zip(_OPTION_LETTERS, question.options):
        option_lines = option_text.splitlines() or [option_text]
        lines.append(f"{letter}: {option_lines[0]}")
        lines.extend(option_lines[1:])

    if question.correct_answer in question.options:
        lines.append(f"CORRECT: {_OPTION_LETTERS[question.options.index(question.correct_answer)]}")

    if question.image_url:
        lines.append(f"IMAGE: {question.image_url}")

    return "\n".join(lines)
