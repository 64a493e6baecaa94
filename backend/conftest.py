import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from completion_service import CompletionService
from database import init_db
from engine import SessionEngine
from question_bank import QuestionBank
from schemas import QuestionAnalysis
from speech_capture import CloudSpeechCaptureAdapter
from store import InMemoryStore


class FakeCompletionService(CompletionService):
    """Scripted provider. Set `fail[<method>]` to an exception to make a call fail,
    or `gates[<method>]` to an asyncio.Event to hold the call until it is set."""

    def __init__(self, questions=None):
        self.questions = questions if questions is not None else [
            "Tell me about yourself",
            "Describe a conflict you resolved",
        ]
        self.example_answer_text = "A model answer."
        self.feedback_text = "Strengths: clear. Areas for Improvement: add metrics."
        self.score_value = 72
        self.analysis = QuestionAnalysis(
            category="Behavioral",
            difficulty="Medium",
            tips=["Be honest", "Show growth"],
            ideal_answer="I sometimes over-prepare, so I now timebox.",
        )
        self.fail: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple] = []

    async def _enter(self, name, *args):
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise self.fail[name]

    def called(self, name) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def generate_questions(self, role, description=None, resume_ref=None):
        await self._enter("generate_questions", role, description, resume_ref)
        return list(self.questions)

    async def example_answer(self, role, question, resume_ref=None, context=None):
        await self._enter("example_answer", role, question, resume_ref, context)
        return self.example_answer_text

    async def feedback(self, pairs, role=None):
        await self._enter("feedback", pairs)
        return self.feedback_text

    async def score(self, pairs, role=None):
        await self._enter("score", pairs)
        return self.score_value

    async def analyze_question(self, question_text):
        await self._enter("analyze_question", question_text)
        return self.analysis


class FakeSpeechClient:
    """Answers each streamed audio chunk with the next scripted recognition result."""

    def __init__(self):
        self.responses = []
        self.config = None
        self.audio = []

    def script(self, *results):
        self.responses = [
            SimpleNamespace(results=[
                SimpleNamespace(alternatives=[SimpleNamespace(transcript=text)], is_final=is_final)
            ])
            for text, is_final in results
        ]

    def streaming_recognize(self, requests):
        requests = iter(requests)
        self.config = next(requests)
        for response, request in zip(self.responses, requests):
            self.audio.append(request.audio)
            yield response


@pytest.fixture
def completion():
    return FakeCompletionService()


@pytest.fixture
def session_store():
    return InMemoryStore()


@pytest.fixture
def bank_store():
    return InMemoryStore()


@pytest.fixture
def engine(session_store, completion):
    return SessionEngine(session_store, completion)


@pytest.fixture
def bank(bank_store, completion):
    return QuestionBank(bank_store, completion)


@pytest_asyncio.fixture
async def sessionmaker():
    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(db_engine)
    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    await db_engine.dispose()



@pytest.fixture
def speech_client(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "test-project")
    client = FakeSpeechClient()
    monkeypatch.setattr(CloudSpeechCaptureAdapter, "_make_client", lambda self: client)
    return client
