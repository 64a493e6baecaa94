import secrets
from datetime import datetime

from completion_service import CompletionService, RateLimitedError
from errors import EngineError, ErrorCode
from schemas import BankedQuestion


class QuestionBank:
    """Saved questions with their analysis, independent of any session."""

    def __init__(self, store, completion: CompletionService):
        self.store = store
        self.completion = completion

    async def list_questions(self) -> list[BankedQuestion]:
        return await self.store.list()

    async def get_question(self, question_id: str) -> BankedQuestion:
        banked = await self.store.get(question_id)
        if banked is None:
            raise EngineError(ErrorCode.QUESTION_NOT_FOUND)
        return banked

    async def bank_question(self, question_text: str) -> BankedQuestion:
        if not question_text or not question_text.strip():
            raise EngineError(ErrorCode.INVALID_INPUT, "Question must not be empty")

        # Exact, case-sensitive match.
        existing = await self.store.list()
        if any(q.question_text == question_text for q in existing):
            print(f"[BANK] Duplicate ignored: {question_text[:60]!r}")
            raise EngineError(ErrorCode.BANK_DUPLICATE)

        try:
            analysis = await self.completion.analyze_question(question_text)
        except RateLimitedError as e:
            print(f"[BANK] Analysis rate limited: {e}")
            raise EngineError(ErrorCode.RATE_LIMITED) from e
        except Exception as e:
            print(f"[BANK] Analysis failed: {e}")
            raise EngineError(ErrorCode.ANALYSIS_FAILED) from e

        banked = BankedQuestion(
            id=f"q_{secrets.token_hex(8)}",
            question_text=question_text,
            category=analysis.category,
            difficulty=analysis.difficulty,
            tips=analysis.tips,
            ideal_answer=analysis.ideal_answer,
            created_at=datetime.now(),
        )
        await self.store.put(banked)
        print(f"[BANK] Saved {banked.id} ({banked.category}, {banked.difficulty})")
        return banked

    async def delete_banked_question(self, question_id: str) -> None:
        await self.store.delete(question_id)
        print(f"[BANK] Deleted {question_id}")
