"""Model interfaces shared by the pipeline stages and their providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class StructuredOutputError(ValueError):
  """The model reply could not be turned into the requested JSON object."""


@dataclass
class SimpleModelResponse:
  """Text reply; choices holds every completion when n > 1."""

  content: str
  usage: dict[str, int] | None = None
  choices: list[str] = field(default_factory=list)


@dataclass
class StructuredModelResponse:
  content: dict[str, Any]
  usage: dict[str, int] | None = None


class AIModel(ABC):
  """One chat model as seen by a pipeline stage."""

  name: str

  @abstractmethod
  async def generate(self, system_prompt: str, user_content: str, *, n: int = 1) -> SimpleModelResponse:
    """Return `n` free-text completions for one system/user exchange."""

  async def generate_structured(self, system_prompt: str, user_content: str, schema: dict[str, Any]) -> StructuredModelResponse:
    """Return a JSON object shaped like `schema`."""
    raise StructuredOutputError(f"{self.name} cannot produce structured output.")

  @staticmethod
  def strip_json_fences(content: str) -> str:
    """Drop a leading ``` (or ```json) line and a closing ``` if present."""
    text = content.strip()
    if not text.startswith("```"):
      return text
    _, _, body = text.partition("\n")
    body = body.rstrip()
    return body.removesuffix("```").strip()


class Provider(ABC):
  """Factory for the models of one vendor account."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return a client for `model`, or the provider default."""
