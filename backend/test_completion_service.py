import pytest

from completion_service import (
    CompletionError,
    GeminiCompletionService,
    RateLimitedError,
    is_rate_limit_error,
    parse_json_response,
)
from schemas import AnswerPair


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModels:
    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    def generate_content(self, model, contents, config=None):
        self.prompts.append(contents)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return FakeResponse(reply)


class FakeClient:
    def __init__(self, *replies):
        self.models = FakeModels(replies)


def service_with(*replies):
    service = GeminiCompletionService(api_key="test-key", model="test-model")
    service._client = FakeClient(*replies)
    return service


class QuotaError(Exception):
    code = 429


def test_parse_json_strips_fences_and_prose():
    assert parse_json_response('```json\n{"score": 70}\n```') == {"score": 70}
    assert parse_json_response('Here you go: {"score": 70} hope it helps') == {"score": 70}
    with pytest.raises(CompletionError):
        parse_json_response("no json here")


def test_rate_limit_detection():
    assert is_rate_limit_error(QuotaError("too many"))
    assert is_rate_limit_error(Exception("429 RESOURCE_EXHAUSTED"))
    assert is_rate_limit_error(Exception("You exceeded your current quota"))
    assert not is_rate_limit_error(Exception("500 internal"))


async def test_generate_questions_reads_list():
    service = service_with('{"questions": ["Tell me about yourself.", " ", "Why us?"]}')
    questions = await service.generate_questions("Engineer", "Python APIs")
    assert questions == ["Tell me about yourself.", "Why us?"]
    assert "Python APIs" in service._client.models.prompts[0]


async def test_example_answer_includes_context():
    service = service_with("A concise STAR answer.")
    answer = await service.example_answer("Engineer", "Why us?", context="No degree | Self taught")
    assert answer == "A concise STAR answer."
    assert "No degree | Self taught" in service._client.models.prompts[0]


async def test_score_is_clamped_integer():
    service = service_with('{"score": 104.6}', '{"score": "55"}')
    pairs = [AnswerPair(question="Q", answer="A")]
    assert await service.score(pairs) == 100
    assert await service.score(pairs) == 55


async def test_score_without_number_fails():
    service = service_with('{"score": "great"}')
    with pytest.raises(CompletionError):
        await service.score([AnswerPair(question="Q", answer="A")])


async def test_analysis_is_normalized():
    service = service_with(
        '{"category": "Behavioral", "difficulty": "hard", "tips": ["Be honest", ""], "idealAnswer": "..."}'
    )
    analysis = await service.analyze_question("What is your biggest weakness?")
    assert analysis.difficulty == "Hard"
    assert analysis.tips == ["Be honest"]
    assert analysis.ideal_answer == "..."


async def test_provider_errors_are_classified():
    service = service_with(QuotaError("slow down"), Exception("503 unavailable"), "")
    with pytest.raises(RateLimitedError):
        await service.example_answer("Engineer", "Q")
    with pytest.raises(CompletionError) as exc_info:
        await service.example_answer("Engineer", "Q")
    assert not isinstance(exc_info.value, RateLimitedError)
    with pytest.raises(CompletionError):
        await service.example_answer("Engineer", "Q")


async def test_missing_api_key_fails(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    service = GeminiCompletionService()
    with pytest.raises(CompletionError):
        await service.feedback([AnswerPair(question="Q", answer="A")])
