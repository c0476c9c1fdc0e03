"""OpenAI provider for the fine-tuned extractor, classifier and duplicator models."""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import AsyncOpenAI

from app.ai.backoff import retry_with_backoff
from app.ai.json_parser import parse_json_with_fallback
from app.ai.providers.base import AIModel, Provider, SimpleModelResponse, StructuredModelResponse, StructuredOutputError

logger = logging.getLogger(__name__)


def _usage_dict(response: Any) -> dict[str, int] | None:
  if not response.usage:
    return None
  return {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}


class OpenAIModel(AIModel):
  """Chat-completions client bound to a single model id."""

  def __init__(self, name: str, client: AsyncOpenAI) -> None:
    self.name: str = name
    self._client = client

  async def generate(self, system_prompt: str, user_content: str, *, n: int = 1) -> SimpleModelResponse:
    """Generate one or more text completions."""
    response = await retry_with_backoff(self._client.chat.completions.create, model=self.name, messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": user_content}], n=n)

    choices = [choice.message.content or "" for choice in response.choices]
    logger.debug("Model %s returned %d choice(s)", self.name, len(choices))
    return SimpleModelResponse(content=choices[0] if choices else "", usage=_usage_dict(response), choices=choices)

  async def generate_structured(self, system_prompt: str, user_content: str, schema: dict[str, Any]) -> StructuredModelResponse:
    """Generate JSON constrained by a json_schema response format."""
    response = await retry_with_backoff(
      self._client.chat.completions.create,
      model=self.name,
      messages=[{"role": "system", "content": system_prompt}, {"role": "user", "content": user_content}],
      response_format={"type": "json_schema", "json_schema": {"name": "stage_response", "schema": schema, "strict": True}},
    )

    content = (response.choices[0].message.content or "") if response.choices else ""
    logger.debug("Model %s structured response (raw): %s", self.name, content)
    try:
      parsed = parse_json_with_fallback(self.strip_json_fences(content))
    except json.JSONDecodeError as exc:
      raise StructuredOutputError(f"Model {self.name} returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
      raise StructuredOutputError(f"Model {self.name} returned {type(parsed).__name__}, expected an object.")
    return StructuredModelResponse(content=parsed, usage=_usage_dict(response))


class OpenAIProvider(Provider):
  """Shares one AsyncOpenAI client across the pipeline models."""

  def __init__(self, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = "openai"
    if not api_key:
      raise ValueError("OPENAI_API_KEY environment variable is required")
    # Retries are handled by retry_with_backoff so SDK retries are disabled.
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

  def get_model(self, model: str | None = None) -> AIModel:
    if not model:
      raise ValueError("A model id is required for the OpenAI provider.")
    return OpenAIModel(model, self._client)
