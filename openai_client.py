from __future__ import annotations

import logging
from typing import Dict, List, Optional

import openai
from openai import OpenAI

from errors import (
    CollaboratorError,
    CollaboratorUnavailableError,
    QuotaExceededError,
    RateLimitedError,
)
from settings import Settings, load_settings

logger = logging.getLogger(__name__)

# Centralized client so planning, orchestration, summaries and images share it

def get_client(settings: Optional[Settings] = None) -> OpenAI:
    settings = settings or load_settings()
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY not set. Put it in .env")
    return OpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.model_timeout,
        max_retries=0,  # retry policy belongs to the caller
    )


def translate_openai_error(exc: openai.OpenAIError, what: str = "AI request") -> CollaboratorError:
    """Map an OpenAI SDK exception onto the engine's error taxonomy."""
    if isinstance(exc, openai.APITimeoutError):
        return CollaboratorUnavailableError(f"{what} timed out")
    if isinstance(exc, openai.APIConnectionError):
        return CollaboratorUnavailableError(f"{what} failed: could not reach the AI service")
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        code = getattr(exc, "code", None)
        if status == 402 or code == "insufficient_quota":
            return QuotaExceededError(f"{what} failed: quota exhausted")
        if status == 429:
            return RateLimitedError(f"{what} failed: rate limit exceeded")
        if status >= 500:
            return CollaboratorUnavailableError(f"{what} returned {status}")
        return CollaboratorError(f"{what} returned {status}: {exc.message}")
    return CollaboratorError(f"{what} failed: {exc}")


class OpenAIChatModel:
    """
    Language-model collaborator: role-tagged messages in, one text reply out.
    """

    def __init__(self, client: OpenAI, model: str):
        self.client = client
        self.model = model

    def complete(self, messages: List[Dict[str, str]], *, model: Optional[str] = None) -> str:
        model = model or self.model
        try:
            resp = self.client.chat.completions.create(model=model, messages=messages)
        except openai.OpenAIError as e:
            err = translate_openai_error(e, f"AI API ({model})")
            logger.error("Chat completion failed: %s", err.message)
            raise err from e
        if not resp.choices:
            raise CollaboratorError("AI response missing content")
        return resp.choices[0].message.content or ""
