"""Provider implementations."""

from app.ai.providers.base import AIModel, Provider, SimpleModelResponse, StructuredModelResponse, StructuredOutputError
from app.ai.providers.openai_provider import OpenAIModel, OpenAIProvider

__all__ = ["AIModel", "OpenAIModel", "OpenAIProvider", "Provider", "SimpleModelResponse", "StructuredModelResponse", "StructuredOutputError"]
