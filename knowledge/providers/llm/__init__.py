"""LLM provider adapters used by the optional retrieval stages."""

from knowledge.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
