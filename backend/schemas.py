from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    AWAITING_FEEDBACK = "awaiting_feedback"
    COMPLETE = "complete"


class QuestionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    question_text: str
    user_answer_text: Optional[str] = None
    model_answer_text: Optional[str] = None

    @property
    def is_handled(self) -> bool:
        return bool(self.user_answer_text) or bool(self.model_answer_text)


class Session(BaseModel):
    """One mock-interview run. Instances are never mutated; transitions copy."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: str
    job_description: Optional[str] = None
    resume_ref: Optional[str] = None
    questions: list[QuestionRecord]
    accumulated_context: str = ""
    feedback_text: Optional[str] = None
    score: Optional[int] = Field(default=None, ge=0, le=100)
    created_at: datetime

    @property
    def current_index(self) -> int:
        for i, record in enumerate(self.questions):
            if not record.is_handled:
                return i
        return len(self.questions)

    @property
    def state(self) -> SessionState:
        return session_state(self)

    @property
    def has_answers(self) -> bool:
        return any(q.user_answer_text for q in self.questions)


def session_state(session: Optional[Session]) -> SessionState:
    if session is None:
        return SessionState.NOT_STARTED
    if session.feedback_text:
        return SessionState.COMPLETE
    if session.current_index >= len(session.questions):
        return SessionState.AWAITING_FEEDBACK
    return SessionState.IN_PROGRESS


Difficulty = Literal["Easy", "Medium", "Hard"]


class QuestionAnalysis(BaseModel):
    category: str
    difficulty: Difficulty
    tips: list[str] = []
    ideal_answer: str


class BankedQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    question_text: str
    category: str
    difficulty: Difficulty
    tips: list[str] = []
    ideal_answer: str
    created_at: datetime


class AnswerPair(BaseModel):
    question: str
    answer: str


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["prompt", "reply"]
    content: str
    kind: Literal["question", "answer", "modelAnswer", "feedback"]
