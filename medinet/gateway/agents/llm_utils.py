"""
LLM utilities — the completion collaborator and response parsing helpers.

Shared by the dialogue, diagnosis and specialty agents.  The completion
client performs exactly one attempt per call: every call site has its own
deterministic fallback, so no retry happens here.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

from medinet import settings

logger = logging.getLogger("gateway.agents.llm_utils")


class CompletionError(Exception):
    """The completion collaborator failed, timed out or returned nothing."""


class CompletionClient(ABC):
    """complete(prompt, system_instructions) → text.  Raises CompletionError."""

    @abstractmethod
    async def complete(self, prompt: str, system_instructions: str = "") -> str:
        ...


class GeminiCompletionClient(CompletionClient):
    """Completion collaborator backed by the google-genai async client."""

    def __init__(
        self,
        model: str | None = None,
        llm_client: Any = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client = llm_client
        self._model_name = model or settings.DIAGNOSIS_MODEL
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.LLM_TIMEOUT_SECONDS
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(
                api_key=settings.GOOGLE_API_KEY or os.getenv("GOOGLE_API_KEY")
            )
        return self._client

    async def complete(self, prompt: str, system_instructions: str = "") -> str:
        contents = f"{system_instructions}\n\n{prompt}" if system_instructions else prompt
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self._model_name,
                    contents=contents,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise CompletionError(
                f"{self._model_name} timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            raise CompletionError(f"{self._model_name} call failed: {exc}") from exc

        text = getattr(response, "text", None)
        if not isinstance(text, str) or not text.strip():
            raise CompletionError(f"{self._model_name} returned an empty response")
        return text


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
        if text.endswith("```"):
            text = text[:-3]
    return text.strip()


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """
    Return the first well-formed JSON object embedded in ``raw``.

    Scans each '{' in order and lets the JSON decoder find where the object
    ends, so leading prose and trailing commentary are ignored.
    """
    text = strip_code_fences(raw)
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None
