from flask import current_app

from ..errors import TranscriptTooShortError, TranscriptUnavailableError


def load_transcript(call) -> str:
    """Return the call's transcript text, or raise if it cannot be graded yet.

    An empty transcript is retryable since the source may still deliver it;
    one shorter than GRADING_MIN_TRANSCRIPT_CHARS is not.
    """
    text = (call.transcript_text or "").strip()
    if not text:
        raise TranscriptUnavailableError(call.id)
    minimum = int(current_app.config.get("GRADING_MIN_TRANSCRIPT_CHARS", 50))
    if len(text) < minimum:
        raise TranscriptTooShortError(call.id, len(text), minimum)
    return text
