from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from vet_discharge.llm.adapters.openai_adapter import OpenAIAdapter
from vet_discharge.llm.interface import LLMProviderError, StructuredOutputError
from vet_discharge.schemas.entities import NormalizedEntities

from conftest import sample_entities

MESSAGES = [{"role": "user", "content": "Bella presented limping."}]


def adapter_answering(**message):
    adapter = OpenAIAdapter(api_key="sk-test", max_retries=0)
    parsed = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(**message))])
    adapter.client.chat.completions.parse = AsyncMock(return_value=parsed)
    return adapter


class TestOpenAIAdapter:
    @pytest.mark.asyncio
    async def test_returns_parsed_model(self):
        adapter = adapter_answering(parsed=sample_entities(), refusal=None)

        entities = await adapter.generate_structured_output(MESSAGES, NormalizedEntities)

        assert entities.patient.name == "Bella"
        kwargs = adapter.client.chat.completions.parse.call_args.kwargs
        assert kwargs["response_format"] is NormalizedEntities
        assert kwargs["messages"] == MESSAGES

    @pytest.mark.asyncio
    async def test_refusal_is_a_structured_output_error(self):
        adapter = adapter_answering(parsed=None, refusal="I can't help with that.")

        with pytest.raises(StructuredOutputError, match="can't help"):
            await adapter.generate_structured_output(MESSAGES, NormalizedEntities)

    @pytest.mark.asyncio
    async def test_api_errors_are_provider_errors(self):
        adapter = OpenAIAdapter(api_key="sk-test", max_retries=0)
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        adapter.client.chat.completions.parse = AsyncMock(
            side_effect=openai.APIConnectionError(request=request)
        )

        with pytest.raises(LLMProviderError, match="OpenAI request failed") as exc_info:
            await adapter.generate_structured_output(MESSAGES, NormalizedEntities)
        assert not isinstance(exc_info.value, StructuredOutputError)
