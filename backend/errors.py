from enum import Enum


class ErrorCode(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    START_FAILED = "START_FAILED"
    ANSWER_FAILED = "ANSWER_FAILED"
    FEEDBACK_FAILED = "FEEDBACK_FAILED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    BANK_DUPLICATE = "BANK_DUPLICATE"
    UNSUPPORTED_CAPABILITY = "UNSUPPORTED_CAPABILITY"
    # Local rejections, raised before any provider call.
    EMPTY_ANSWER = "EMPTY_ANSWER"
    NO_ANSWERS = "NO_ANSWERS"
    INVALID_STATE = "INVALID_STATE"
    SESSION_BUSY = "SESSION_BUSY"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    QUESTION_NOT_FOUND = "QUESTION_NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"


RATE_LIMIT_MESSAGE = (
    "You've reached the daily limit for the free tier. Please try again tomorrow."
)

_DEFAULT_MESSAGES = {
    ErrorCode.RATE_LIMITED: RATE_LIMIT_MESSAGE,
    ErrorCode.START_FAILED: "Error starting interview",
    ErrorCode.ANSWER_FAILED: "Error getting model answer",
    ErrorCode.FEEDBACK_FAILED: "Error getting feedback",
    ErrorCode.ANALYSIS_FAILED: "Error analyzing question",
    ErrorCode.BANK_DUPLICATE: "This question is already in your bank",
    ErrorCode.UNSUPPORTED_CAPABILITY: "Speech capture is not available here; type your answer instead",
    ErrorCode.EMPTY_ANSWER: "Answer must not be empty",
    ErrorCode.NO_ANSWERS: "No answers were provided to give feedback on",
    ErrorCode.INVALID_STATE: "That action is not available at this point of the interview",
    ErrorCode.SESSION_BUSY: "Another action is still running for this interview",
    ErrorCode.SESSION_NOT_FOUND: "Interview not found",
    ErrorCode.QUESTION_NOT_FOUND: "Question not found in bank",
    ErrorCode.INVALID_INPUT: "Input must not be empty",
}


class EngineError(Exception):
    """Tagged failure surfaced to the caller. Session state is left untouched."""

    def __init__(self, code: ErrorCode, detail: str | None = None):
        self.code = code
        self.detail = detail or _DEFAULT_MESSAGES.get(code, code.value)
        super().__init__(f"{code.value}: {self.detail}")
