from schemas import ChatMessage, Session


def reconstruct(session: Session) -> list[ChatMessage]:
    """Derive the display transcript from whatever of the session is persisted.

    Walks the questions in order and stops at the first one with neither a user
    answer nor a model answer; that question is the pending prompt. Feedback,
    when present, always closes the transcript.
    """
    messages: list[ChatMessage] = []
    for record in session.questions:
        messages.append(ChatMessage(role="prompt", content=record.question_text, kind="question"))
        if record.user_answer_text:
            messages.append(ChatMessage(role="reply", content=record.user_answer_text, kind="answer"))
        elif record.model_answer_text:
            messages.append(
                ChatMessage(role="prompt", content=record.model_answer_text, kind="modelAnswer")
            )
        else:
            break

    if session.feedback_text:
        messages.append(ChatMessage(role="prompt", content=session.feedback_text, kind="feedback"))
    return messages


_SPEAKER_LABELS = {
    "question": "Interviewer",
    "answer": "Candidate",
    "modelAnswer": "Model Answer",
    "feedback": "Feedback",
}


def format_transcript(messages: list[ChatMessage]) -> str:
    return "\n\n".join(f"{_SPEAKER_LABELS[m.kind]}: {m.content}" for m in messages)
