"""AI-assisted question authoring on the OpenAI chat completions API.

Every call asks for a JSON object and validates it with pydantic before any
of it reaches the exam repository.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from exam_app.config import AppConfig
from exam_app.constants.exam_constants import (
    AI_DEFAULT_GENERATED_QUESTIONS,
    AI_MAX_GENERATED_QUESTIONS,
    AI_MIN_GENERATED_QUESTIONS,
)
from exam_app.core.errors import ExternalServiceError, InvalidInputError
from exam_app.core.models import Difficulty, Question
from exam_app.core.services.exam_repository import prepare_question

logger = logging.getLogger(__name__)

GENERATE_PROMPT = """You are an expert exam question generator. Generate {count} exam questions on the topic of {topic} with a difficulty level of {difficulty}.

Each question must have multiple choice options with exactly one correct answer, and "correctAnswer" must repeat the text of that option.
Answer with a JSON object of the form:
{{"questions": [{{"question": "...", "options": ["...", "..."], "correctAnswer": "..."}}]}}"""

TRANSLATE_QUESTIONS_PROMPT = """Translate the following exam questions into {language}.
Translate the question text, every option and the correct answer consistently, so the correct answer still equals one of the translated options.
Keep the order of questions and options. Keep math notation ($...$) unchanged.
Answer with a JSON object of the form:
{{"questions": [{{"question": "...", "options": ["...", "..."], "correctAnswer": "..."}}]}}

Questions:
{payload}"""

TRANSLATE_TOPIC_PROMPT = """Translate the following exam topic into English. Answer with a JSON object {{"topic": "..."}}.

Topic: {topic}"""

FIND_IMAGE_PROMPT = """You are an expert at categorizing topics and finding the most relevant image keywords.
Select the single best image hint from the list below for the topic "{topic}".

Available hints:
{hints}

Answer with a JSON object {{"bestHint": "..."}} whose value is copied exactly from the list."""


class GeneratedQuestion(BaseModel):
    question: str
    options: list[str] = Field(min_length=2)
    correctAnswer: str


class GeneratedQuestions(BaseModel):
    questions: list[GeneratedQuestion]


class TranslatedTopic(BaseModel):
    topic: str


class ImageHint(BaseModel):
    bestHint: str


_client: OpenAI | None = None


def _get_client() -> OpenAI:
    global _client
    if _client is not None:
        return _client

    cfg = AppConfig.load()
    if not cfg.OPENAI_API_KEY:
        raise ExternalServiceError("OPENAI_API_KEY is not set; AI features are unavailable.")

    _client = OpenAI(api_key=cfg.OPENAI_API_KEY)
    return _client


class QuestionGenerator:
    """Generates and translates questions. The OpenAI client is created lazily unless injected."""

    def __init__(self, client: Any | None = None, model: str | None = None) -> None:
        self._client = client
        self._model = model

    def generate(
        self,
        topic: str,
        difficulty: Difficulty | str = Difficulty.MEDIUM,
        count: int = AI_DEFAULT_GENERATED_QUESTIONS,
    ) -> list[Question]:
        topic = topic.strip()
        if not topic:
            raise InvalidInputError("A topic is required to generate questions.")
        if not AI_MIN_GENERATED_QUESTIONS <= count <= AI_MAX_GENERATED_QUESTIONS:
            raise InvalidInputError(
                f"Number of questions must be between {AI_MIN_GENERATED_QUESTIONS} and {AI_MAX_GENERATED_QUESTIONS}."
            )
        try:
            difficulty = Difficulty(difficulty)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown difficulty {difficulty!r}.") from exc

        prompt = GENERATE_PROMPT.format(count=count, topic=topic, difficulty=difficulty.value)
        generated = self._complete(prompt, GeneratedQuestions)
        questions = _to_questions(generated.questions)[:count]
        logger.info("Generated %d questions on %r (%s)", len(questions), topic, difficulty.value)
        return questions

    def translate_questions(self, questions: Sequence[Question], language: str = "Persian") -> list[Question]:
        """Translate text and options; ids and images stay attached to their question."""
        if not questions:
            return []
        payload = json.dumps(
            {
                "questions": [
                    {"question": q.text, "options": list(q.options), "correctAnswer": q.correct_answer}
                    for q in questions
                ]
            },
            ensure_ascii=False,
        )
        translated = self._complete(
            TRANSLATE_QUESTIONS_PROMPT.format(language=language, payload=payload),
            GeneratedQuestions,
        )
        if len(translated.questions) != len(questions):
            raise ExternalServiceError(
                f"Translation returned {len(translated.questions)} questions for {len(questions)}."
            )
        result: list[Question] = []
        for original, item in zip(questions, translated.questions):
            candidate = Question(
                id=original.id,
                text=item.question,
                options=item.options,
                correct_answer=item.correctAnswer,
                image_url=original.image_url,
            )
            try:
                result.append(prepare_question(candidate))
            except InvalidInputError as exc:
                raise ExternalServiceError(f"Translated question {original.id} is inconsistent: {exc}") from exc
        return result

    def translate_topic(self, topic: str) -> str:
        if not topic.strip():
            raise InvalidInputError("Topic must not be empty.")
        return self._complete(TRANSLATE_TOPIC_PROMPT.format(topic=topic.strip()), TranslatedTopic).topic.strip()

    def find_relevant_image(self, topic: str, hints: Sequence[str]) -> str:
        """Pick the hint that best matches the topic."""
        if not hints:
            raise InvalidInputError("At least one image hint is required.")
        listing = "\n".join(f"- {hint}" for hint in hints)
        best = self._complete(FIND_IMAGE_PROMPT.format(topic=topic, hints=listing), ImageHint).bestHint.strip()
        if best not in hints:
            logger.warning("Model suggested unknown image hint %r; using %r", best, hints[0])
            return hints[0]
        return best

    def _complete(self, prompt: str, schema: type[BaseModel]) -> Any:
        client = self._client or _get_client()
        try:
            response = client.chat.completions.create(
                model=self._model or AppConfig.load().AI_MODEL,
                messages=[
                    {"role": "system", "content": "You write and translate multiple-choice exam content."},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except OpenAIError as exc:
            raise ExternalServiceError(f"AI request failed: {exc}") from exc

        content = response.choices[0].message.content
        if not content:
            raise ExternalServiceError("AI response was empty.")
        try:
            return schema.model_validate_json(content)
        except ValidationError as exc:
            raise ExternalServiceError(f"AI response did not match the expected format: {exc}") from exc


def _to_questions(items: Sequence[GeneratedQuestion]) -> list[Question]:
    questions: list[Question] = []
    for number, item in enumerate(items, start=1):
        candidate = Question(
            id=f"q{number:03d}",
            text=item.question,
            options=item.options,
            correct_answer=item.correctAnswer,
        )
        try:
            questions.append(prepare_question(candidate))
        except InvalidInputError as exc:
            logger.warning("Dropping generated question %d: %s", number, exc)
    if not questions:
        raise ExternalServiceError("The AI did not return any usable questions.")
    return questions
