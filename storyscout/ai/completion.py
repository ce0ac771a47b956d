"""AI completion collaborator.

One request shape, one string result. Retrying is owned by the caller
(`storyscout.resilience.retry`), so the SDK's own retries are disabled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import openai

from storyscout.ai.contracts import normalize_message_content


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    system_prompt: str
    user_content: str
    response_schema: Dict[str, Any]
    temperature: float = 0.3
    max_tokens: int = 500


class CompletionClient(Protocol):
    async def complete(self, req: CompletionRequest) -> str: ...


class OpenAICompletionClient:
    def __init__(self, api_key: str, *, base_url: Optional[str] = None, timeout_seconds: float = 60.0):
        self.timeout_seconds = timeout_seconds
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            max_retries=0,
            timeout=timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings) -> "OpenAICompletionClient":
        return cls(
            settings.openai_api_key,
            base_url=settings.openai_base_url or None,
            timeout_seconds=settings.ai_timeout_seconds,
        )

    async def complete(self, req: CompletionRequest) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=req.model,
                messages=[
                    {"role": "system", "content": req.system_prompt},
                    {"role": "user", "content": req.user_content},
                ],
                response_format={"type": "json_schema", "json_schema": req.response_schema},
                temperature=req.temperature,
                max_tokens=req.max_tokens,
            ),
            timeout=self.timeout_seconds,
        )
        if not response.choices:
            return ""
        return normalize_message_content(response.choices[0].message.content)
