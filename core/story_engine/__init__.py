"""
Story Engine - Branching-narrative progression for companion stories.

Provides:
- StoryEngine: Facade wiring content, progress, users, resolver and analytics
- Error taxonomy: StoryError and its kinds
- Presets: JSON story graphs loaded at startup
"""

from .engine import StoryEngine
from .errors import (
    StoryError, NotFoundError, PermissionDeniedError, InvalidStateError,
    InvalidChoiceError, RequirementNotMetError, PreconditionError,
    ConflictError, InternalError, ContentValidationError,
)
from .resolver import ChoiceResult

__all__ = ['StoryEngine', 'ChoiceResult', 'StoryError', 'NotFoundError',
           'PermissionDeniedError', 'InvalidStateError', 'InvalidChoiceError',
           'RequirementNotMetError', 'PreconditionError', 'ConflictError',
           'InternalError', 'ContentValidationError']
