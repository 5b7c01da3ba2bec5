"""
OpenAI chat-completions wrapper used by the prose-producing audit stages.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

import openai
from openai import OpenAI
from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The LLM call failed or returned nothing usable."""


class LLMResponse(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def get_openai_client(api_key: str, timeout: Optional[float] = None) -> Optional[OpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


class LLMClient:
    """Synchronous client; callers run it in a worker thread."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        timeout: Optional[float] = None,
        input_cost_per_mtok: float = 0.0,
        output_cost_per_mtok: float = 0.0,
    ):
        self.client = get_openai_client(api_key, timeout)
        self.model = model
        self.input_cost_per_mtok = input_cost_per_mtok
        self.output_cost_per_mtok = output_cost_per_mtok

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        return round(
            input_tokens * self.input_cost_per_mtok / 1_000_000
            + output_tokens * self.output_cost_per_mtok / 1_000_000,
            6,
        )

    def complete(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int = 2000,
        json_mode: bool = True,
    ) -> LLMResponse:
        if self.client is None:
            raise LLMError("OPENAI_API_KEY is not configured")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error(f"Error in LLM call: {e}")
            raise LLMError(str(e)) from e

        content = (response.choices[0].message.content or "") if response.choices else ""
        usage = response.usage
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        return LLMResponse(
            text=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.cost_for(input_tokens, output_tokens),
        )


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of model output.

    Handles bare JSON, fenced code blocks and objects wrapped in prose.
    Returns None when no object can be decoded.
    """
    if not text:
        return None
    candidate = text.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", candidate, re.DOTALL)
    if fenced:
        candidate = fenced.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def create_llm_client() -> LLMClient:
    return LLMClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        input_cost_per_mtok=settings.OPENAI_INPUT_COST_PER_MTOK,
        output_cost_per_mtok=settings.OPENAI_OUTPUT_COST_PER_MTOK,
    )
