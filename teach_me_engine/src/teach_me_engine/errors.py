"""
Error Taxonomy

Exceptions raised by the teach-me engine. Every error carries an HTTP-style
status code and a flag telling the caller whether resubmitting the same
request can succeed.
"""

from typing import Optional


class TeachMeError(Exception):
    """Base class for all engine errors."""
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ==================== Caller errors ====================

class CallerError(TeachMeError):
    """Request cannot be applied to the session. Never retried by the engine."""
    status_code = 400


class SessionNotFoundError(CallerError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StepMismatchError(CallerError):
    """Submitted step number is not the session's current step."""
    status_code = 409

    def __init__(self, expected: int, got: int, message: Optional[str] = None):
        super().__init__(message or f"Expected step {expected}, got {got}")
        self.expected = expected
        self.got = got


class ConcurrentUpdateError(StepMismatchError):
    """The conditional write found the step already advanced by another request."""

    def __init__(self, session_id: str, step_number: int):
        super().__init__(
            expected=step_number + 1,
            got=step_number,
            message=f"Step {step_number} of session {session_id} was already answered by another request",
        )
        self.session_id = session_id


class SessionCompletedError(StepMismatchError):
    def __init__(self, session_id: str, step_number: int, total_steps: int):
        super().__init__(
            expected=total_steps,
            got=step_number,
            message=f"Session {session_id} is already completed",
        )
        self.session_id = session_id


class SessionNotCompletedError(CallerError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is not yet completed")
        self.session_id = session_id


# ==================== Provider errors ====================

class ProviderError(TeachMeError):
    """Text-generation provider failed at the transport level."""
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class TransientProviderError(ProviderError):
    """Rate limit, timeout or 5xx. Safe to retry."""
    retryable = True


class PermanentProviderError(ProviderError):
    """Authentication, payment/quota or bad request. Retrying cannot succeed."""
    retryable = False


# ==================== Internal errors ====================

class MalformedModelOutputError(TeachMeError):
    """Provider answered, but the content is not the JSON shape we asked for."""
    status_code = 500
    retryable = True

    def __init__(self, message: str, raw_content: Optional[str] = None):
        super().__init__(message)
        self.raw_content = raw_content


class PersistenceError(TeachMeError):
    """The session write failed. The verdict is treated as never computed."""
    status_code = 500
    retryable = True


class SessionIntegrityError(TeachMeError):
    """Stored session record breaks a structural invariant."""
    status_code = 500


class SourceMaterialNotFoundError(SessionIntegrityError):
    def __init__(self, material_id: str):
        super().__init__(f"Source material not found: {material_id}")
        self.material_id = material_id
