"""Gemini invocation — response schema, client wrapper, retrying call.

invoke_model() submits the content bundle plus one command prompt and
returns the raw response text. Empty responses count as failures; every
failure is retried up to ``max_attempts`` with a fixed delay, then
GenerationFailedError is raised. Parsing is left to json_recovery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from google import genai
from google.genai import types

from .. import settings
from ..bundle import ContentItem
from ..cancellation import CancelToken, OperationCancelled, delay
from ..config import GEMINI_API_KEY, GEMINI_MODEL

logger = logging.getLogger(__name__)


class GenerationFailedError(Exception):
    """Raised when the model gave no usable response after all attempts."""


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


def build_response_schema(with_has_more: bool = False) -> types.Schema:
    """Structured-output schema: testCases[], questions[], summary (+ hasMore)."""
    text = types.Schema(type=types.Type.STRING)
    properties = {
        "testCases": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "no": types.Schema(type=types.Type.NUMBER),
                    "title": types.Schema(
                        type=types.Type.STRING,
                        description="Test case title (in Korean)",
                    ),
                    "depth1": text,
                    "depth2": text,
                    "depth3": text,
                    "precondition": types.Schema(
                        type=types.Type.STRING,
                        description=(
                            "States required BEFORE the test starts. MUST be a numbered "
                            "list (1. State A\\n2. State B). Do NOT say 'None'."
                        ),
                    ),
                    "steps": types.Schema(
                        type=types.Type.STRING,
                        description=(
                            "Execution path starting with navigation, with concrete input "
                            "data, as a numbered list. End with a noun. No trailing period."
                        ),
                    ),
                    "expectedResult": types.Schema(
                        type=types.Type.STRING,
                        description=(
                            "Final UI outcome. ONE atomic check only. Passive voice (~된다)."
                        ),
                    ),
                },
                required=["no", "title", "steps", "expectedResult"],
            ),
        ),
        "questions": types.Schema(type=types.Type.ARRAY, items=text),
        "summary": text,
    }
    if with_has_more:
        properties["hasMore"] = types.Schema(type=types.Type.BOOLEAN)
    return types.Schema(type=types.Type.OBJECT, properties=properties)


# ---------------------------------------------------------------------------
# Model client
# ---------------------------------------------------------------------------


@dataclass
class ModelConfig:
    """Gemini connection and decoding parameters."""

    api_key: str = GEMINI_API_KEY
    model: str = GEMINI_MODEL
    temperature: float = settings.MODEL_TEMPERATURE
    max_output_tokens: int = settings.MODEL_MAX_OUTPUT_TOKENS
    max_attempts: int = settings.MODEL_MAX_ATTEMPTS
    retry_delay: float = settings.MODEL_RETRY_DELAY


class ModelClient(Protocol):
    """Anything that turns (content, prompt, system instruction) into response text."""

    async def generate(
        self,
        items: Sequence[ContentItem],
        prompt: str,
        system_instruction: str,
        schema: Optional[types.Schema] = None,
    ) -> str: ...


def to_parts(items: Sequence[ContentItem], prompt: str) -> List[types.Part]:
    """Images become inline bytes, text items ``[File: name]`` blocks; prompt goes last."""
    parts: List[types.Part] = []
    for item in items:
        if item.is_image:
            parts.append(types.Part.from_bytes(data=item.image_bytes(), mime_type=item.mime_type))
        else:
            parts.append(types.Part.from_text(text=item.to_prompt_text()))
    parts.append(types.Part.from_text(text=prompt))
    return parts


class GeminiModelClient:
    """google-genai backed ModelClient.

    Args:
        config: Connection and decoding parameters.
        client: Pre-built genai.Client (tests pass a stub).
    """

    def __init__(self, config: Optional[ModelConfig] = None, client: Optional[genai.Client] = None):
        self.config = config or ModelConfig()
        if client is None:
            if not self.config.api_key:
                raise GenerationFailedError(
                    "Gemini API key not configured. Set GEMINI_API_KEY environment variable "
                    "or pass api_key= in ModelConfig."
                )
            client = genai.Client(api_key=self.config.api_key)
        self._client = client

    async def generate(
        self,
        items: Sequence[ContentItem],
        prompt: str,
        system_instruction: str,
        schema: Optional[types.Schema] = None,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            max_output_tokens=self.config.max_output_tokens,
            temperature=self.config.temperature,
            response_mime_type="application/json",
            response_schema=schema,
        )
        response = await self._client.aio.models.generate_content(
            model=self.config.model,
            contents=[types.Content(role="user", parts=to_parts(items, prompt))],
            config=config,
        )
        return response.text or ""


# ---------------------------------------------------------------------------
# Retrying invocation
# ---------------------------------------------------------------------------


async def invoke_model(
    model: ModelClient,
    items: Sequence[ContentItem],
    prompt: str,
    system_instruction: str,
    *,
    use_schema: bool = True,
    with_has_more: bool = False,
    max_attempts: int = settings.MODEL_MAX_ATTEMPTS,
    retry_delay: float = settings.MODEL_RETRY_DELAY,
    cancel_token: Optional[CancelToken] = None,
    caller: str = "Gemini",
) -> str:
    """Call the model, retrying on any failure including an empty response.

    Raises:
        GenerationFailedError: every attempt failed.
        OperationCancelled: the token fired (never retried).
    """
    schema = build_response_schema(with_has_more) if use_schema else None
    attempts = max(1, max_attempts)
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        if attempt > 0:
            logger.warning(
                "%s: retry %d/%d after %.1fs (previous error: %s)",
                caller, attempt, attempts - 1, retry_delay, last_error,
            )
            await delay(retry_delay, cancel_token)

        logger.info("%s: request attempt %d/%d", caller, attempt + 1, attempts)
        try:
            call = model.generate(items, prompt, system_instruction, schema)
            text = await (cancel_token.guard(call) if cancel_token else call)
            if not text or not text.strip():
                raise GenerationFailedError("Empty response text")
            return text
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error("%s: attempt %d failed: %s", caller, attempt + 1, e)
            last_error = e

    raise GenerationFailedError(
        f"Failed to get a response from Gemini after {attempts} attempts: {last_error}"
    ) from last_error
