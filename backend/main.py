from fastapi import FastAPI, Depends, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional
import asyncio
import base64
import os
from dotenv import load_dotenv

load_dotenv()

from database import init_db, async_session
from completion_service import GeminiCompletionService
from engine import SessionEngine
from errors import EngineError, ErrorCode
from question_bank import QuestionBank
from schemas import Session
from speech_capture import AnswerBuffer, SpeechCapture, RelayedSpeechAdapter, CloudSpeechCaptureAdapter
from store import SessionStore, QuestionBankStore
from transcript import reconstruct, format_transcript

app = FastAPI(title="Interview Coach API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_completion = GeminiCompletionService()
_session_engine = SessionEngine(SessionStore(async_session), _completion)
_question_bank = QuestionBank(QuestionBankStore(async_session), _completion)


def get_engine() -> SessionEngine:
    return _session_engine


def get_question_bank() -> QuestionBank:
    return _question_bank


@app.on_event("startup")
async def startup():
    await init_db()


# ── Errors ───────────────────────────────────────────────

ERROR_STATUS = {
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.START_FAILED: 502,
    ErrorCode.ANSWER_FAILED: 502,
    ErrorCode.FEEDBACK_FAILED: 502,
    ErrorCode.ANALYSIS_FAILED: 502,
    ErrorCode.BANK_DUPLICATE: 409,
    ErrorCode.SESSION_BUSY: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.QUESTION_NOT_FOUND: 404,
    ErrorCode.EMPTY_ANSWER: 400,
    ErrorCode.NO_ANSWERS: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNSUPPORTED_CAPABILITY: 400,
}


@app.exception_handler(EngineError)
async def engine_error_handler(request, exc: EngineError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 400),
        content={"code": exc.code.value, "detail": exc.detail},
    )


def session_payload(session: Optional[Session]) -> dict:
    if session is None:
        # Deleted while the request was in flight.
        return {"status": "discarded", "session": None}
    return {
        "status": "ok",
        "session": session.model_dump(mode="json"),
        "state": session.state.value,
        "current_index": session.current_index,
        "transcript": [m.model_dump() for m in reconstruct(session)],
    }


# ── Sessions ─────────────────────────────────────────────

class StartSessionRequest(BaseModel):
    role: str = Field(min_length=3)
    job_description: Optional[str] = None
    resume_text: Optional[str] = None
    question: Optional[str] = None


class AnswerRequest(BaseModel):
    answer: str


class ModelAnswerRequest(BaseModel):
    context: Optional[str] = None


class RenameRequest(BaseModel):
    name: str


@app.get("/api/sessions")
async def list_sessions(engine: SessionEngine = Depends(get_engine)):
    sessions = await engine.list_sessions()
    return [
        {
            "id": s.id,
            "name": s.name,
            "role": s.role,
            "state": s.state.value,
            "question_count": len(s.questions),
            "score": s.score,
            "created_at": s.created_at.isoformat(),
        }
        for s in sessions
    ]


@app.post("/api/sessions")
async def start_session(body: StartSessionRequest, engine: SessionEngine = Depends(get_engine)):
    session = await engine.start_session(
        body.role,
        description=body.job_description,
        resume_ref=body.resume_text,
        single_question_text=body.question,
    )
    return session_payload(session)


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str, engine: SessionEngine = Depends(get_engine)):
    return session_payload(await engine.get_session(session_id))


@app.patch("/api/sessions/{session_id}")
async def rename_session(session_id: str, body: RenameRequest, engine: SessionEngine = Depends(get_engine)):
    return session_payload(await engine.rename_session(session_id, body.name))


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, engine: SessionEngine = Depends(get_engine)):
    await engine.delete_session(session_id)
    return {"ok": True}


@app.post("/api/sessions/{session_id}/answer")
async def submit_answer(session_id: str, body: AnswerRequest, engine: SessionEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    return session_payload(await engine.submit_answer(session, body.answer))


@app.post("/api/sessions/{session_id}/model-answer")
async def request_model_answer(
    session_id: str,
    body: ModelAnswerRequest,
    engine: SessionEngine = Depends(get_engine),
):
    session = await engine.get_session(session_id)
    return session_payload(await engine.request_model_answer(session, body.context))


@app.post("/api/sessions/{session_id}/feedback")
async def request_feedback(session_id: str, engine: SessionEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    return session_payload(await engine.request_feedback(session))


@app.post("/api/sessions/{session_id}/practice-again")
async def practice_again(session_id: str, engine: SessionEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    return session_payload(await engine.practice_again(session))


@app.get("/api/sessions/{session_id}/transcript")
async def get_transcript(session_id: str, engine: SessionEngine = Depends(get_engine)):
    session = await engine.get_session(session_id)
    messages = reconstruct(session)
    return {
        "messages": [m.model_dump() for m in messages],
        "text": format_transcript(messages),
    }


# ── Question Bank ────────────────────────────────────────

class BankQuestionRequest(BaseModel):
    question: str


@app.get("/api/question-bank")
async def list_banked_questions(bank: QuestionBank = Depends(get_question_bank)):
    return [q.model_dump(mode="json") for q in await bank.list_questions()]


@app.post("/api/question-bank")
async def bank_question(body: BankQuestionRequest, bank: QuestionBank = Depends(get_question_bank)):
    banked = await bank.bank_question(body.question)
    return banked.model_dump(mode="json")


@app.delete("/api/question-bank/{question_id}")
async def delete_banked_question(question_id: str, bank: QuestionBank = Depends(get_question_bank)):
    await bank.delete_banked_question(question_id)
    return {"ok": True}


@app.post("/api/question-bank/{question_id}/practice")
async def practice_banked_question(
    question_id: str,
    bank: QuestionBank = Depends(get_question_bank),
    engine: SessionEngine = Depends(get_engine),
):
    banked = await bank.get_question(question_id)
    session = await engine.start_session(banked.category, single_question_text=banked.question_text)
    return session_payload(session)


# ── WebSocket Answer Entry ───────────────────────────────

@app.websocket("/ws/sessions/{session_id}/answer")
async def websocket_answer(ws: WebSocket, session_id: str, engine: SessionEngine = Depends(get_engine)):
    """Answer composition: typed edits and speech fragments share one buffer.

    Client messages:
      {"type": "typed", "text"}             replace the buffer with the text box contents
      {"type": "speech", "text", "isFinal"} browser recognition result (source=browser)
      {"type": "audio", "data"}             base64 PCM16 mono 16 kHz (source=cloud)
      {"type": "unsupported"}               browser has no speech recognition
      {"type": "capture", "on"}             start/stop recording
      {"type": "submit"}                    submit the buffer as the answer
    """
    session = await engine.sessions.get(session_id)
    if session is None:
        await ws.close(code=4004, reason="Unknown interview")
        return
    await ws.accept()

    source = ws.query_params.get("source", "browser")
    adapter = CloudSpeechCaptureAdapter() if source == "cloud" else RelayedSpeechAdapter()
    buffer = AnswerBuffer()
    capture = SpeechCapture(buffer, adapter)
    print(f"[WS] Answer socket open for {session_id} (source={source})")

    send_lock = asyncio.Lock()

    async def send(payload: dict):
        async with send_lock:
            await ws.send_json(payload)

    async def send_buffer():
        await send({
            "type": "buffer",
            "text": buffer.text,
            "committed": buffer.committed,
            "interim": buffer.interim,
            "recording": capture.recording,
        })

    async def send_error(exc: EngineError):
        await send({"type": "error", "code": exc.code.value, "error": exc.detail})

    relay_task = None
    if isinstance(adapter, CloudSpeechCaptureAdapter):
        # Cloud results arrive between client messages; relay each one out.
        recognized: asyncio.Queue = asyncio.Queue()
        adapter.subscribe(recognized.put_nowait)

        async def relay_recognition():
            while True:
                await recognized.get()
                await send_buffer()

        relay_task = asyncio.create_task(relay_recognition())

    try:
        while True:
            msg = await ws.receive_json()
            kind = msg.get("type")

            if kind == "typed":
                buffer.type_text(str(msg.get("text", "")))

            elif kind == "speech" and isinstance(adapter, RelayedSpeechAdapter):
                adapter.deliver(str(msg.get("text", "")), bool(msg.get("isFinal")))

            elif kind == "audio" and isinstance(adapter, CloudSpeechCaptureAdapter):
                if msg.get("data"):
                    adapter.push_audio(base64.b64decode(msg["data"]))
                continue

            elif kind == "unsupported" and isinstance(adapter, RelayedSpeechAdapter):
                adapter.supported = False

            elif kind == "capture":
                try:
                    if msg.get("on"):
                        capture.start()
                    else:
                        capture.stop()
                except EngineError as e:
                    await send_error(e)

            elif kind == "submit":
                capture.stop()
                try:
                    updated = await engine.submit_answer(session, buffer.text)
                except EngineError as e:
                    await send_error(e)
                else:
                    buffer.clear()
                    await send({"type": "answered", **session_payload(updated)})
                    if updated is None:
                        await ws.close(code=4004, reason="Interview deleted")
                        return

            await send_buffer()

    except WebSocketDisconnect:
        print(f"[WS] Answer socket closed for {session_id}")
    finally:
        capture.close()
        if relay_task is not None:
            relay_task.cancel()
            await asyncio.gather(relay_task, return_exceptions=True)
