"""Async analyzer client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..suggestions.errors import AnalyzerFailure, ErrorCode
from ..suggestions.models import Persona, Suggestion, coerce_suggestions
from ..suggestions.scheduler import Analyzer

LOGGER = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are Wordwise, a writing assistant. Return a JSON object with a "
    '"suggestions" array; each item has type (grammar, spelling, style, or '
    "vocabulary), original, suggestion, confidence (0-1), position_start, "
    "and position_end."
)
_PERSONA_FOCUS: Mapping[str, str] = {
    Persona.GENERAL.value: "Focus on grammar, spelling, clarity, and readability.",
    Persona.SALES.value: "Focus on concise, professional, action-oriented sales writing.",
}


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the analyzer client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float = 0.3
    max_tokens: int = 2_000
    persona: str = Persona.GENERAL.value
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> ClientSettings:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            temperature=settings.temperature,
            persona=settings.persona,
            default_headers=dict(settings.default_headers or {}),
            debug_logging=settings.debug_logging,
        )


class AnalyzerClient(Analyzer):
    """Analyzer that asks a chat model for suggestions and validates the reply."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def analyze(self, text: str) -> list[Suggestion]:
        """Return validated suggestions for ``text``.

        Raises :class:`AnalyzerFailure` for transport errors that survive the
        retry policy and for replies that are not JSON.
        """

        payload = self._build_payload(text)
        LOGGER.debug("Requesting analysis via %s for %d chars", self._settings.model, len(text))
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.chat.completions.create(**payload)
        except (APIError, APIConnectionError, RateLimitError, httpx.HTTPError) as exc:
            raise AnalyzerFailure(
                f"Analyzer request failed: {exc}",
                reason=ErrorCode.ANALYZER_FAILED,
                details={"model": self._settings.model, "error": type(exc).__name__},
            ) from exc

        content = _first_message_content(response)
        if self._settings.debug_logging:
            LOGGER.debug("Analyzer reply: %s", content[:2_000])
        rows = parse_suggestion_rows(content)
        suggestions = coerce_suggestions(rows, persona=self._settings.persona)
        LOGGER.debug("Analyzer returned %d row(s), %d valid", len(rows), len(suggestions))
        return suggestions

    def _build_payload(self, text: str) -> Dict[str, Any]:
        focus = _PERSONA_FOCUS.get(self._settings.persona, _PERSONA_FOCUS[Persona.GENERAL.value])
        return {
            "model": self._settings.model,
            "messages": [
                {"role": "system", "content": f"{_SYSTEM_PROMPT} {focus}"},
                {"role": "user", "content": text},
            ],
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "response_format": {"type": "json_object"},
        }

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()


def _first_message_content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise AnalyzerFailure("Analyzer returned no choices", reason=ErrorCode.ANALYZER_PAYLOAD_INVALID)
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not content:
        raise AnalyzerFailure("Analyzer returned an empty message", reason=ErrorCode.ANALYZER_PAYLOAD_INVALID)
    return str(content)


def parse_suggestion_rows(content: str) -> List[Mapping[str, Any]]:
    """Extract raw suggestion rows from a model reply.

    Accepts ``{"suggestions": [...]}``, a bare list, and either one wrapped
    in a Markdown code fence.
    """

    body = content.strip()
    if body.startswith("```"):
        body = body.split("\n", 1)[1] if "\n" in body else ""
        if body.rstrip().endswith("```"):
            body = body.rstrip()[:-3]
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise AnalyzerFailure(
            "Analyzer reply is not valid JSON",
            reason=ErrorCode.ANALYZER_PAYLOAD_INVALID,
            details={"position": exc.pos},
        ) from exc
    if isinstance(data, Mapping):
        data = data.get("suggestions", [])
    if not isinstance(data, list):
        raise AnalyzerFailure(
            "Analyzer reply does not contain a suggestion list",
            reason=ErrorCode.ANALYZER_PAYLOAD_INVALID,
        )
    return [row for row in data if isinstance(row, Mapping)]


__all__ = ["AnalyzerClient", "ClientSettings", "parse_suggestion_rows"]
