"""Tests for fence stripping and AnthropicGenerator (with a fake SDK client)."""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from forgeflow.core.exceptions import AIGenerationError
from forgeflow.integrations.llm import AnthropicGenerator, strip_code_fences

pytestmark = pytest.mark.unit


class FakeMessages:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


def _generator(messages: FakeMessages) -> AnthropicGenerator:
    return AnthropicGenerator(
        api_key="sk-test",
        model="claude-test",
        max_tokens=100,
        client=SimpleNamespace(messages=messages),
    )


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("```tsx\nexport const x = 1;\n```", "export const x = 1;"),
        ("```\nplain\n```\n", "plain"),
        ("no fences here", "no fences here"),
    ],
)
def test_strip_code_fences(raw, expected):
    """Markdown fences and language tags are removed."""
    assert strip_code_fences(raw) == expected


async def test_generate_passes_model_and_system():
    """The per-call model overrides the default; the system prompt is forwarded."""
    messages = FakeMessages(text="hello")

    result = await _generator(messages).generate("prompt", model="claude-other", system="be brief")

    assert result == "hello"
    assert messages.calls[0]["model"] == "claude-other"
    assert messages.calls[0]["system"] == "be brief"
    assert messages.calls[0]["max_tokens"] == 100


async def test_empty_output_is_an_error():
    """Whitespace-only output is not usable code."""
    with pytest.raises(AIGenerationError):
        await _generator(FakeMessages(text="   ")).generate("prompt")


async def test_api_errors_are_wrapped():
    """SDK errors surface as AIGenerationError."""
    error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))

    with pytest.raises(AIGenerationError, match="Anthropic request failed"):
        await _generator(FakeMessages(error=error)).generate("prompt")
