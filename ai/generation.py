"""Generative model client for structured extraction and image description.

All outputs are returned as raw text; callers treat them as untrusted and
parse/validate defensively.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Sequence

import openai
from openai import AsyncOpenAI

from ai.embeddings import build_openai_client
from intent.config import settings

logger = logging.getLogger(__name__)

IMAGE_DESCRIPTION_PROMPT = """
You are an assistant for a home-improvement services marketplace.
Look at the photo and describe the home-improvement work it suggests.

Return ONLY valid JSON with the exact structure:
{
  "description": "what is visible in the photo, in one or two sentences",
  "work": ["short phrase per task that would need doing"],
  "quantities": {"task phrase": 0},
  "recommendation": "next step if there is an obvious issue, otherwise empty"
}
""".strip()


class GenerationError(Exception):
    """Raised when the generation API fails or times out."""
    pass


class GenerativeClient:
    """Thin async wrapper around chat completions."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        text_model: str | None = None,
        vision_model: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client
        self.text_model = text_model or settings.generation.text_model
        self.vision_model = vision_model or settings.generation.vision_model
        self.timeout = timeout or settings.generation.timeout_seconds
        self.max_tokens = max_tokens or settings.generation.max_tokens
        self.temperature = settings.generation.temperature if temperature is None else temperature

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_openai_client()
        return self._client

    async def _complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        json_mode: bool,
        max_tokens: int | None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(f"Generation timed out after {self.timeout}s") from e
        except openai.OpenAIError as e:
            raise GenerationError(f"Generation request failed: {e}") from e

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str | None = None,
        *,
        schema_hint: str | None = None,
        messages: Sequence[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Run one completion and return the raw text.

        Args:
            system_prompt: Instructions, including the candidate whitelist
            user_prompt: Optional user turn
            schema_hint: Name of the requested JSON schema; enables JSON mode
            messages: Prior conversation turns (chat flow)
            max_tokens: Override for the configured token limit

        Raises:
            GenerationError: On API error or timeout
        """
        chat: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        if messages:
            chat.extend({"role": m["role"], "content": m["content"]} for m in messages)
        if user_prompt:
            chat.append({"role": "user", "content": user_prompt})

        logger.debug(f"Generating with {self.text_model} (schema={schema_hint}, turns={len(chat)})")
        return await self._complete(
            self.text_model,
            chat,
            json_mode=schema_hint is not None,
            max_tokens=max_tokens,
        )

    async def describe_image(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        """Ask the vision model to describe the work visible in a photo.

        Returns:
            Raw JSON text following ``IMAGE_DESCRIPTION_PROMPT``

        Raises:
            GenerationError: On API error or timeout
        """
        encoded = base64.b64encode(image_bytes).decode("ascii")
        messages = [
            {"role": "system", "content": IMAGE_DESCRIPTION_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Here is a photo. Describe it according to the instructions."},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{encoded}", "detail": "low"},
                    },
                ],
            },
        ]
        logger.debug(f"Describing image of {len(image_bytes)} bytes with {self.vision_model}")
        return await self._complete(self.vision_model, messages, json_mode=True, max_tokens=300)
