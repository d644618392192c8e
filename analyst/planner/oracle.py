"""Transport for the language-model oracles.

An oracle maps a (system, user) prompt pair to raw JSON text. Nothing coming
back from it is trusted: callers run the text through ``parse_json`` and then
through the pydantic models in ``analyst.planner.intent``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from analyst.config import Settings, get_settings
from analyst.errors import InterpretationFailure

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)


class Oracle(Protocol):
    async def complete_json(self, system_prompt: str, user_message: str, temperature: float = 0.1) -> str: ...


def clean_json(content: str) -> str:
    """Strip markdown code fences an LLM may wrap around its JSON."""
    cleaned = (content or "").strip()
    if "```" in cleaned:
        m = _FENCE_RE.search(cleaned)
        if m and m.group(1):
            cleaned = m.group(1).strip()
        else:
            cleaned = re.sub(r"```[a-z]*\n?", "", cleaned).replace("```", "")
    return cleaned.strip()


def parse_json(content: Optional[str], default: Any = None) -> Any:
    if not content:
        return default
    cleaned = clean_json(content)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                pass
    logger.warning("Could not parse oracle output as JSON: %.200s", content)
    return default


class OpenAIJsonOracle:
    """OpenAI-compatible chat completion constrained to JSON objects."""

    def __init__(
        self,
        model: Optional[str] = None,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._settings = settings or get_settings()
        self.model = model or self._settings.model_name
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._settings.openai_api_key:
                raise InterpretationFailure("OPENAI_API_KEY is not set")
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                base_url=self._settings.openai_base_url,
                timeout=self._settings.oracle_timeout_sec,
            )
        return self._client

    async def complete_json(self, system_prompt: str, user_message: str, temperature: float = 0.1) -> str:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                response_format={"type": "json_object"},
                temperature=temperature,
            )
        except OpenAIError as exc:
            raise InterpretationFailure(f"Oracle request failed: {exc}") from exc
        return resp.choices[0].message.content or ""
