import asyncio
import secrets
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from completion_service import CompletionService, RateLimitedError
from context import merge
from errors import EngineError, ErrorCode
from schemas import AnswerPair, QuestionRecord, Session, SessionState


def new_session_id() -> str:
    return f"interview_{secrets.token_hex(8)}"


# ── Pure transitions ─────────────────────────────────────
# Each takes a Session and returns a new one; the input is never modified.

def _replace_record(session: Session, index: int, record: QuestionRecord) -> Session:
    questions = list(session.questions)
    questions[index] = record
    return session.model_copy(update={"questions": questions})


def with_user_answer(session: Session, answer_text: str) -> Session:
    index = session.current_index
    record = session.questions[index]
    return _replace_record(session, index, record.model_copy(update={"user_answer_text": answer_text}))


def with_model_answer(session: Session, model_answer: str, accumulated_context: str) -> Session:
    index = session.current_index
    record = session.questions[index]
    updated = _replace_record(
        session, index, record.model_copy(update={"model_answer_text": model_answer})
    )
    return updated.model_copy(update={"accumulated_context": accumulated_context})


def with_feedback(session: Session, feedback_text: str, score: int) -> Session:
    return session.model_copy(update={"feedback_text": feedback_text, "score": score})


def answered_pairs(session: Session) -> list[AnswerPair]:
    return [
        AnswerPair(question=q.question_text, answer=q.user_answer_text)
        for q in session.questions
        if q.user_answer_text
    ]


def fresh_copy(session: Session) -> Session:
    """Same questions, nothing answered, new identity."""
    return Session(
        id=new_session_id(),
        name=session.name,
        role=session.role,
        job_description=session.job_description,
        resume_ref=session.resume_ref,
        questions=[QuestionRecord(question_text=q.question_text) for q in session.questions],
        created_at=datetime.now(),
    )


# ── Engine ───────────────────────────────────────────────

class SessionEngine:
    """Drives interview sessions through NOT_STARTED → IN_PROGRESS →
    AWAITING_FEEDBACK → COMPLETE.

    State is never tracked separately: it is derived from the persisted
    session every time. Only one mutating operation may be in flight per
    session id; a second one is rejected with SESSION_BUSY. Results that
    arrive after their session was deleted are dropped and the operation
    returns None.
    """

    def __init__(self, sessions, completion: CompletionService):
        self.sessions = sessions
        self.completion = completion
        self._busy: set[str] = set()

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._busy

    @contextmanager
    def _claim(self, session_id: str):
        if session_id in self._busy:
            raise EngineError(ErrorCode.SESSION_BUSY)
        self._busy.add(session_id)
        try:
            yield
        finally:
            self._busy.discard(session_id)

    async def _reload(self, session_id: str) -> Optional[Session]:
        current = await self.sessions.get(session_id)
        if current is None:
            print(f"[ENGINE] Session {session_id} was deleted while a request was in flight; discarding result")
        return current

    async def _write(self, updated: Session) -> Optional[Session]:
        if not await self.sessions.replace(updated):
            print(f"[ENGINE] Session {updated.id} was deleted before its update landed; discarding result")
            return None
        return updated

    async def list_sessions(self) -> list[Session]:
        return await self.sessions.list()

    async def get_session(self, session_id: str) -> Session:
        session = await self.sessions.get(session_id)
        if session is None:
            raise EngineError(ErrorCode.SESSION_NOT_FOUND)
        return session

    async def start_session(
        self,
        role: str,
        description: Optional[str] = None,
        resume_ref: Optional[str] = None,
        single_question_text: Optional[str] = None,
    ) -> Session:
        if single_question_text:
            question_texts = [single_question_text]
        else:
            try:
                question_texts = await self.completion.generate_questions(role, description, resume_ref)
            except RateLimitedError as e:
                print(f"[ENGINE] Start rate limited for role={role!r}: {e}")
                raise EngineError(ErrorCode.RATE_LIMITED) from e
            except Exception as e:
                print(f"[ENGINE] Start failed for role={role!r}: {e}")
                raise EngineError(ErrorCode.START_FAILED) from e
            if not question_texts:
                raise EngineError(ErrorCode.START_FAILED, "No interview questions were generated")

        session = Session(
            id=new_session_id(),
            name=f"{role} Interview",
            role=role,
            job_description=description or None,
            resume_ref=resume_ref or None,
            questions=[QuestionRecord(question_text=q) for q in question_texts],
            created_at=datetime.now(),
        )
        await self.sessions.put(session)
        print(f"[ENGINE] Started {session.id} with {len(session.questions)} question(s)")
        return session

    async def submit_answer(self, session: Session, answer_text: str) -> Optional[Session]:
        if not answer_text or not answer_text.strip():
            raise EngineError(ErrorCode.EMPTY_ANSWER)

        with self._claim(session.id):
            current = await self._reload(session.id)
            if current is None:
                return None
            if current.state != SessionState.IN_PROGRESS:
                # Nothing left to answer.
                return current

            updated = await self._write(with_user_answer(current, answer_text))
            if updated is None:
                return None
            print(f"[ENGINE] {session.id}: answered question {current.current_index + 1}/{len(current.questions)}")
            return updated

    async def request_model_answer(
        self, session: Session, extra_context: Optional[str] = None
    ) -> Optional[Session]:
        with self._claim(session.id):
            current = await self._reload(session.id)
            if current is None:
                return None
            if current.state != SessionState.IN_PROGRESS:
                raise EngineError(ErrorCode.INVALID_STATE, "No pending question to answer")

            index = current.current_index
            context = merge(current.accumulated_context, extra_context)
            try:
                model_answer = await self.completion.example_answer(
                    current.role,
                    current.questions[index].question_text,
                    current.resume_ref,
                    context or None,
                )
            except RateLimitedError as e:
                print(f"[ENGINE] {session.id}: model answer rate limited: {e}")
                raise EngineError(ErrorCode.RATE_LIMITED) from e
            except Exception as e:
                print(f"[ENGINE] {session.id}: model answer failed: {e}")
                raise EngineError(ErrorCode.ANSWER_FAILED) from e

            latest = await self._reload(session.id)
            if latest is None:
                return None
            if latest.current_index != index:
                print(f"[ENGINE] {session.id}: question {index + 1} changed while waiting; discarding model answer")
                return latest

            updated = await self._write(with_model_answer(latest, model_answer, context))
            if updated is None:
                return None
            print(f"[ENGINE] {session.id}: model answer stored for question {index + 1}")
            return updated

    async def request_feedback(self, session: Session) -> Optional[Session]:
        with self._claim(session.id):
            current = await self._reload(session.id)
            if current is None:
                return None
            if current.state == SessionState.COMPLETE:
                raise EngineError(ErrorCode.INVALID_STATE, "Feedback was already given for this interview")

            pairs = answered_pairs(current)
            if not pairs:
                raise EngineError(ErrorCode.NO_ANSWERS)

            # Both calls must succeed; a partial result is never written.
            feedback_result, score_result = await asyncio.gather(
                self.completion.feedback(pairs, role=current.role),
                self.completion.score(pairs, role=current.role),
                return_exceptions=True,
            )
            failures = [r for r in (feedback_result, score_result) if isinstance(r, BaseException)]
            for failure in failures:
                print(f"[ENGINE] {session.id}: feedback failed: {failure}")
            if any(isinstance(f, RateLimitedError) for f in failures):
                raise EngineError(ErrorCode.RATE_LIMITED) from failures[0]
            if failures:
                raise EngineError(ErrorCode.FEEDBACK_FAILED) from failures[0]
            if not feedback_result or not isinstance(score_result, int) or not 0 <= score_result <= 100:
                raise EngineError(ErrorCode.FEEDBACK_FAILED, "Provider returned an unusable feedback or score")

            latest = await self._reload(session.id)
            if latest is None:
                return None

            updated = await self._write(with_feedback(latest, feedback_result, score_result))
            if updated is None:
                return None
            print(f"[ENGINE] {session.id}: complete with score={score_result} over {len(pairs)} answer(s)")
            return updated

    async def practice_again(self, session: Session) -> Session:
        source = await self.get_session(session.id)
        clone = fresh_copy(source)
        await self.sessions.put(clone)
        print(f"[ENGINE] Practice again: {source.id} -> {clone.id}")
        return clone

    async def rename_session(self, session_id: str, new_name: str) -> Session:
        name = (new_name or "").strip()
        if not name:
            raise EngineError(ErrorCode.INVALID_INPUT, "Name must not be empty")
        session = await self.get_session(session_id)
        renamed = await self._write(session.model_copy(update={"name": name}))
        if renamed is None:
            raise EngineError(ErrorCode.SESSION_NOT_FOUND)
        return renamed

    async def delete_session(self, session_id: str) -> None:
        await self.sessions.delete(session_id)
        print(f"[ENGINE] Deleted {session_id}")
