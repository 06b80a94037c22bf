from abc import ABC, abstractmethod
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel

# Generic type variable for the Pydantic model expected in structured responses.
T = TypeVar("T", bound=BaseModel)


class LLMProvider(ABC):
    """
    Contract for the model behind clinical entity extraction and discharge
    summary writing. Callers only ever ask for structured output, so every
    response is validated against a Pydantic model before it reaches a step.
    """

    @abstractmethod
    async def generate_structured_output(
        self,
        messages: List[dict],
        response_model: Type[T],
        temperature: Optional[float] = None,
    ) -> T:
        """
        Generates a response strictly matching `response_model`.

        Args:
            messages: Chat messages ({"role": ..., "content": ...}).
            response_model: The Pydantic model the output must parse into.
            temperature: Sampling temperature; the provider's default when None.
        """
        pass


def build_messages(system_prompt: str, user_prompt: str) -> List[dict]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


class LLMProviderError(Exception):
    """The provider could not produce a response (after its own transport retries)."""
    pass


class StructuredOutputError(LLMProviderError):
    """The provider answered, but not with the requested structure."""
    pass
