# Author: Bradley R. Kinnard — pay per token, cache per fingerprint

"""
The upstream analyzer. Async OpenAI client in JSON mode, plus a stub for dev.

Everything that goes wrong in here leaves as UpstreamError(message, status_code)
so the orchestrator's classifier never has to know about openai's exception zoo.
"""

import asyncio
import json
import logging
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from src.codeguard.config import settings
from src.codeguard.core.errors import UpstreamError
from src.codeguard.core.models import RawAnalysis

log = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None
_lock = asyncio.Lock()

SYSTEM = """You are a code reviewer. Respond with valid JSON only.
Assess security, performance, maintainability and style.

Response format:
{"quality_score": 0-100,
 "improvements": [{"category": "security|performance|maintainability|style",
                   "priority": "critical|high|medium|low",
                   "description": "...", "solution": "...", "line": 0,
                   "confidence": 0.0-1.0, "reasoning": "..."}],
 "patterns": ["short-pattern-name", ...],
 "vulnerabilities": [{"type": "...", "severity": "critical|high|medium|low", "description": "...", "cwe": "CWE-89"}]}
If the code is clean, return an empty improvements list."""


class UpstreamAnalyzer(Protocol):
    async def invoke(self, content: str, file_path: str, options: dict[str, Any]) -> RawAnalysis: ...


async def get_llm() -> AsyncOpenAI:
    """
    Get or create the shared OpenAI client.
    No SDK retries: the breaker decides when to stop, not the client.
    """
    global _client
    if _client is not None:
        return _client

    async with _lock:
        if _client is not None:
            return _client

        if not settings.openai_api_key:
            raise UpstreamError("OPENAI_API_KEY not set, cannot authenticate", status_code=401)

        log.info(f"creating AsyncOpenAI client, model={settings.openai_model}")
        _client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.upstream_timeout,
            max_retries=0,
        )
        return _client


def _user_prompt(content: str, file_path: str, options: dict[str, Any]) -> str:
    extra = ""
    if options:
        extra = f"\nOptions: {json.dumps(options, sort_keys=True, default=str)}"
    return f"File: {file_path}{extra}\n```\n{content}\n```"


def parse_analysis(raw: str) -> RawAnalysis:
    """LLM JSON -> RawAnalysis. Garbage is an upstream problem, not ours."""
    try:
        return RawAnalysis.model_validate_json(raw or "{}")
    except ValidationError as e:
        raise UpstreamError(f"upstream returned malformed analysis: {e.error_count()} errors") from e


class OpenAIAnalyzer:

    async def invoke(self, content: str, file_path: str, options: dict[str, Any]) -> RawAnalysis:
        client = await get_llm()
        try:
            resp = await client.chat.completions.create(
                model=settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM},
                    {"role": "user", "content": _user_prompt(content, file_path, options)}
                ],
                temperature=0.0,
                response_format={"type": "json_object"}
            )
        except openai.APITimeoutError as e:
            raise UpstreamError(f"upstream request timed out: {e}", status_code=408) from e
        except openai.APIConnectionError as e:
            raise UpstreamError(f"upstream unavailable: {e}", status_code=503) from e
        except openai.APIStatusError as e:
            raise UpstreamError(e.message, status_code=e.status_code) from e

        return parse_analysis(resp.choices[0].message.content or "{}")


class StubAnalyzer:
    """Canned answer for local dev without an API key."""

    async def invoke(self, content: str, file_path: str, options: dict[str, Any]) -> RawAnalysis:
        await asyncio.sleep(0)
        return RawAnalysis.model_validate({
            "quality_score": 85,
            "improvements": [
                {
                    "category": "security",
                    "priority": "high",
                    "description": "Consider input validation",
                    "solution": "Add proper validation",
                    "confidence": 0.9,
                    "reasoning": "Security best practice",
                }
            ],
            "patterns": ["good-error-handling"],
            "vulnerabilities": [],
        })


def build_analyzer() -> UpstreamAnalyzer:
    if settings.stub_mode:
        log.info("stub mode on, upstream analyzer returns canned results")
        return StubAnalyzer()
    return OpenAIAnalyzer()
