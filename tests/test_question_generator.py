import pytest
from openai import APIConnectionError

from exam_app.core.errors import ExternalServiceError, InvalidInputError
from exam_app.core.models import Question

GENERATED = {
    "questions": [
        {"question": "Capital of France?", "options": ["Berlin", "Paris"], "correctAnswer": "Paris"},
        {"question": "Broken", "options": ["a", "b"], "correctAnswer": "c"},
    ]
}


class TestGenerate:
    def test_generate_validates_and_drops_bad_items(self, generator, completions):
        completions.queue(GENERATED)
        questions = generator.generate("Geography", "Easy", 2)
        assert [q.text for q in questions] == ["Capital of France?"]
        assert questions[0].correct_answer == "Paris"
        call = completions.calls[0]
        assert call["model"] == "test-model"
        assert call["response_format"] == {"type": "json_object"}
        assert "Geography" in call["messages"][1]["content"]

    def test_extra_questions_are_dropped(self, generator, completions):
        item = GENERATED["questions"][0]
        completions.queue({"questions": [item, item, item]})
        assert len(generator.generate("Geography", "Easy", 2)) == 2

    @pytest.mark.parametrize("count", [0, 21])
    def test_count_bounds(self, generator, completions, count):
        with pytest.raises(InvalidInputError):
            generator.generate("Geography", "Easy", count)
        assert completions.calls == []

    def test_unknown_difficulty(self, generator):
        with pytest.raises(InvalidInputError):
            generator.generate("Geography", "Impossible", 3)

    def test_malformed_reply(self, generator, completions):
        completions.queue("not json at all")
        with pytest.raises(ExternalServiceError):
            generator.generate("Geography", "Easy", 3)

    def test_no_usable_questions(self, generator, completions):
        completions.queue({"questions": [GENERATED["questions"][1]]})
        with pytest.raises(ExternalServiceError):
            generator.generate("Geography", "Easy", 1)

    def test_api_failure(self, generator, completions):
        completions.queue(APIConnectionError(request=None))
        with pytest.raises(ExternalServiceError):
            generator.generate("Geography", "Easy", 3)


class TestTranslate:
    def test_translation_keeps_ids_and_images(self, generator, completions):
        source = [
            Question(id="q1", text="Capital?", options=["Paris", "Rome"], correct_answer="Paris", image_url="img.png")
        ]
        completions.queue(
            {"questions": [{"question": "Hauptstadt?", "options": ["Paris", "Rom"], "correctAnswer": "Paris"}]}
        )
        translated = generator.translate_questions(source, "German")
        assert translated[0].id == "q1"
        assert translated[0].image_url == "img.png"
        assert translated[0].options == ["Paris", "Rom"]

    def test_translation_count_mismatch(self, generator, completions):
        source = [Question(id="q1", text="?", options=["a", "b"], correct_answer="a")]
        completions.queue({"questions": []})
        with pytest.raises(ExternalServiceError):
            generator.translate_questions(source, "German")

    def test_translate_topic(self, generator, completions):
        completions.queue({"topic": "Photosynthesis "})
        assert generator.translate_topic("فتوسنتز") == "Photosynthesis"

    def test_image_hint_falls_back_to_first(self, generator, completions):
        completions.queue({"bestHint": "volcano"})
        assert generator.find_relevant_image("Biology", ["cell", "plant"]) == "cell"
        completions.queue({"bestHint": "plant"})
        assert generator.find_relevant_image("Botany", ["cell", "plant"]) == "plant"
