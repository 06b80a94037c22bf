import logging
from typing import List, Optional, Type, TypeVar

from openai import (
    AsyncOpenAI,
    ContentFilterFinishReasonError,
    LengthFinishReasonError,
    OpenAIError,
)
from pydantic import BaseModel

from ..interface import LLMProvider, LLMProviderError, StructuredOutputError
from ...config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class OpenAIAdapter(LLMProvider):
    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = settings.OPENAI_MODEL,
        temperature: float = settings.LLM_TEMPERATURE,
        max_retries: int = settings.MAX_RETRIES,
    ):
        # Transient API failures are retried by the client itself.
        self.client = AsyncOpenAI(api_key=api_key, max_retries=max_retries)
        self.model_name = model_name
        self.temperature = temperature

    async def generate_structured_output(
        self,
        messages: List[dict],
        response_model: Type[T],
        temperature: Optional[float] = None,
    ) -> T:
        try:
            completion = await self.client.chat.completions.parse(
                model=self.model_name,
                messages=messages,
                response_format=response_model,
                temperature=self.temperature if temperature is None else temperature,
            )
        except (LengthFinishReasonError, ContentFilterFinishReasonError) as e:
            raise StructuredOutputError(f"LLM output for {response_model.__name__} was cut off: {e}") from e
        except OpenAIError as e:
            raise LLMProviderError(f"OpenAI request failed: {e}") from e

        # Unwrap the OpenAI response structure here so callers only see the model.
        message = completion.choices[0].message
        if message.parsed is None:
            refusal = getattr(message, "refusal", None) or "no parsed content"
            logger.error(f"Structured output for {response_model.__name__} failed: {refusal}")
            raise StructuredOutputError(f"LLM returned no {response_model.__name__}: {refusal}")
        return message.parsed
