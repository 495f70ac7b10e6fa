"""Abstract base class for LLM service providers.

Retrieval uses an LLM for two optional stages: generating alternative
phrasings of the query and scoring passages as a cross-encoder.  Both treat
provider failures and unparseable output as "stage skipped".
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAILLMProvider (knowledge/providers/llm/)
class ILLMProvider(ABC):
    """Contract for chat-completion services used by the retrieval stages."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        knowledge.utils.errors.LLMError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has credentials configured."""
