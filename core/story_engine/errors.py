# core/story_engine/errors.py - Story engine error taxonomy
"""
Error types raised by the story engine.

Every error carries a stable `kind` string and an HTTP-ish `status_code`
so the API layer can map failures without inspecting messages.
"""

import logging

logger = logging.getLogger(__name__)


class StoryError(Exception):
    """Base exception for story engine errors."""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.kind

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class NotFoundError(StoryError):
    """Story, chapter or progress not found."""
    kind = "not_found"
    status_code = 404


class PermissionDeniedError(StoryError):
    """Premium subscription required."""
    kind = "permission_denied"
    status_code = 403


class InvalidStateError(StoryError):
    """Invalid chapter. Not your current position."""
    kind = "invalid_state"
    status_code = 409


class InvalidChoiceError(StoryError):
    """Invalid choice"""
    kind = "invalid_choice"
    status_code = 400


class RequirementNotMetError(StoryError):
    """Requirements not met for this choice"""
    kind = "requirement_not_met"
    status_code = 403


class PreconditionError(StoryError):
    """Precondition failed."""
    kind = "precondition"
    status_code = 400


class ConflictError(StoryError):
    """Progress was modified concurrently. Retry the request."""
    kind = "conflict"
    status_code = 409


class InternalError(StoryError):
    """Internal story engine error."""
    kind = "internal"
    status_code = 500


class ContentValidationError(ValueError):
    """A story preset failed validation at load time."""
    pass


def is_client_error(e: StoryError) -> bool:
    """True for errors caused by the caller (4xx), False for server faults."""
    return e.status_code < 500
