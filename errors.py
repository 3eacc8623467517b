# errors.py
"""
Error taxonomy for the orchestration loop.

Internals raise these; the public entry points in game_engine.py turn them
into an Outcome so callers can decide on retries themselves.
"""
from __future__ import annotations

from typing import Optional

# Status classes reported to callers.
CLIENT_ERROR = "client_error"
RATE_LIMITED = "rate_limited"
SERVER_ERROR = "server_error"


class GameEngineError(Exception):
    category = "server_error"
    status_code = 500
    retryable = False
    hint: Optional[str] = None

    def __init__(self, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint

    @property
    def status_class(self) -> str:
        if self.status_code == 429:
            return RATE_LIMITED
        if 400 <= self.status_code < 500:
            return CLIENT_ERROR
        return SERVER_ERROR


class InvalidRequestError(GameEngineError):
    category = "invalid_request"
    status_code = 400


class SessionNotFoundError(GameEngineError):
    category = "not_found"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionBusyError(GameEngineError):
    category = "conflict"
    status_code = 409
    retryable = True
    hint = "A change is already being applied to this game. Wait for it to finish and try again."


class IllegalTransitionError(GameEngineError):
    category = "conflict"
    status_code = 409


class FatalBatchError(GameEngineError):
    """The whole operation batch is rejected; nothing is persisted."""

    category = "fatal_batch"
    status_code = 400


class UnknownTargetError(FatalBatchError):
    def __init__(self, target: object, index: Optional[int] = None):
        where = f" in operation {index}" if index is not None else ""
        super().__init__(
            f"Invalid file_path {target!r}{where}. Only html_code, css_code, and js_code are allowed. "
            "Do not create external files like game.js or style.css - all code must be inline."
        )
        self.target = target
        self.index = index


class ExternalReferenceError(FatalBatchError):
    def __init__(self, references: list[str]):
        super().__init__(
            "Structure code references external files: "
            + ", ".join(references)
            + ". All code and assets must be inline or generated."
        )
        self.references = references


class ModelResponseError(GameEngineError):
    category = "invalid_response"
    status_code = 400
    hint = "The AI may need to regenerate its response in the correct format"


class CollaboratorError(GameEngineError):
    category = "collaborator_error"
    status_code = 502


class RateLimitedError(CollaboratorError):
    category = "collaborator_transient"
    status_code = 429
    retryable = True
    hint = "Rate limit exceeded. Please wait a moment and try again."


class QuotaExceededError(CollaboratorError):
    category = "collaborator_transient"
    status_code = 402
    retryable = True
    hint = "The AI provider reports exhausted credits. Add credits, then try again."


class CollaboratorUnavailableError(CollaboratorError):
    category = "collaborator_transient"
    status_code = 503
    retryable = True
    hint = "The AI service did not respond. Please try again shortly."


class StorageError(CollaboratorError):
    category = "storage_error"
