"""
Grading pipeline exceptions.

Every error carries ``retryable``; the processing queue consults it to
decide between a backoff retry and a terminal failure. Exceptions from
outside this hierarchy are treated as retryable.
"""


class GradingError(Exception):
    """Base exception for the grading pipeline."""

    retryable = False
    status_code = 500

    def __init__(self, message: str = "Grading failed"):
        self.message = message
        super().__init__(message)


class ValidationError(GradingError):
    """Malformed criterion value, bad template config or unknown criterion reference."""

    status_code = 400

    def __init__(self, message: str, criterion_id=None):
        self.criterion_id = criterion_id
        super().__init__(message)


class NotFoundError(GradingError):
    status_code = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with ID {entity_id} not found")


class StateConflictError(GradingError):
    """Operation not allowed in the entity's current state. Never retried."""

    status_code = 409


class TransientProviderError(GradingError):
    """Network failure, timeout or rate limit from the external scorer."""

    retryable = True
    status_code = 502


class ProviderError(GradingError):
    """Non-transient HTTP failure from the external scorer."""

    retryable = True
    status_code = 502

    def __init__(self, message: str, http_status=None):
        self.http_status = http_status
        super().__init__(message)


class ScorerResponseError(GradingError):
    """The scorer answered, but not with the JSON object we asked for."""

    retryable = True
    status_code = 502


class TranscriptUnavailableError(GradingError):
    """The transcript source has nothing for this call (yet)."""

    retryable = True
    status_code = 409

    def __init__(self, call_id):
        self.call_id = call_id
        super().__init__(f"Transcript for call {call_id} is not available")


class TranscriptTooShortError(GradingError):
    status_code = 409

    def __init__(self, call_id, length: int, minimum: int):
        self.call_id = call_id
        super().__init__(f"Transcript for call {call_id} is too short to grade ({length} < {minimum} chars)")


class TemplateUnavailableError(GradingError):
    """No active template can be resolved for a call or session."""

    status_code = 409


class TerminalJobError(GradingError):
    """A queue item exhausted its attempts or hit a non-retryable failure."""

    status_code = 409

    def __init__(self, item_id, attempts: int, last_error: str):
        self.item_id = item_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Queue item {item_id} failed after {attempts} attempt(s): {last_error}")
