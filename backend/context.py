CONTEXT_SEPARATOR = " | "


def merge(existing_context: str, new_hint: str | None) -> str:
    """Fold a model-answer hint into the session's accumulated context.

    Blank hints leave the context as it was. Otherwise the hint is appended
    after CONTEXT_SEPARATOR, or stands alone when there was no context yet.
    """
    hint = (new_hint or "").strip()
    if not hint:
        return existing_context
    if not existing_context:
        return hint
    return f"{existing_context}{CONTEXT_SEPARATOR}{hint}"
