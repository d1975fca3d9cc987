"""Tests for the model invocation wrapper."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from paperchat.config import GenerationConfig
from paperchat.data.models import GenerationParams
from paperchat.generation.generator import GenerationError, Generator


def _response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
    )


@pytest.fixture
def client():
    client = MagicMock()
    client.messages.create.return_value = _response("The methods section describes block routing.")
    return client


class TestGenerator:
    def test_generate_uses_query_params(self, client):
        generator = Generator(GenerationConfig(), api_key="test", client=client)
        answer = generator.generate("prompt", GenerationParams(temperature=0.2, max_tokens=2000, max_content_units=6))

        assert answer == "The methods section describes block routing."
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 2000
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_generate_falls_back_to_config(self, client):
        config = GenerationConfig(max_tokens=512, temperature=0.7)
        Generator(config, api_key="test", client=client).generate("prompt")

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 512
        assert kwargs["model"] == config.model

    def test_api_error_becomes_generation_error(self, client):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create.side_effect = anthropic.APITimeoutError(request=request)
        generator = Generator(GenerationConfig(), api_key="test", client=client)

        with pytest.raises(GenerationError):
            generator.generate("prompt")

        assert client.messages.create.call_count == 1

    def test_default_client_disables_retries(self):
        generator = Generator(GenerationConfig(timeout_seconds=5.0), api_key="test")
        assert generator.client.max_retries == 0
