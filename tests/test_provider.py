"""Tests for schedbot.core.providers."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from schedbot.core.config import Config
from schedbot.core.config.schema import PaymentsConfig
from schedbot.core.errors import ContentGenerationError, PaymentError
from schedbot.core.providers import (
    LiteLLMContentGenerator,
    PaymentClient,
    PayUsersRequest,
    PromptGuard,
    TokenRegistry,
)
from schedbot.core.providers.payments import coin_version


# ── Token registry ─────────────────────────────────────────


@pytest.fixture
def tokens():
    return TokenRegistry(
        PaymentsConfig(
            tokens={
                "APT": {"token_type": "0x1::aptos_coin::AptosCoin", "decimals": 8},
                "usdc": {"token_type": "0xusdc", "decimals": 6},
                "🐸": {"token_type": "0xfrog", "decimals": 2},
            }
        )
    )


def test_resolve_is_case_insensitive(tokens):
    assert tokens.resolve("apt").symbol == "APT"
    assert tokens.resolve(" Usdc ").decimals == 6


def test_resolve_alias_and_emoji(tokens):
    assert tokens.resolve("aptos").token_type == "0x1::aptos_coin::AptosCoin"
    assert tokens.resolve("🐸").token_type == "0xfrog"


def test_resolve_unknown(tokens):
    assert tokens.resolve("DOGE") is None
    assert tokens.resolve("") is None


def test_symbols(tokens):
    assert tokens.symbols() == sorted(["APT", "USDC", "🐸"])


def test_coin_version():
    assert coin_version("0x1::aptos_coin::AptosCoin") == "v1"
    assert coin_version("0xbae207659db88bea0cbead6da0ed00aac12edcdda169e591cd41c94180b46f3b") == "v2"


# ── Content generation ─────────────────────────────────────


def _response():
    return {
        "id": "resp_42",
        "output": [
            {"type": "web_search_call", "status": "completed"},
            {"type": "web_search_call", "status": "completed"},
            {"type": "image_generation_call", "result": base64.b64encode(b"png").decode()},
            {
                "type": "message",
                "content": [
                    {"type": "output_text", "text": "APT is up 3%."},
                    {"type": "output_text", "text": ""},
                ],
            },
        ],
        "usage": {"total_tokens": 321},
    }


def test_to_content_parses_output():
    content = LiteLLMContentGenerator._to_content(_response(), "openai/gpt-4.1")
    assert content.text == "APT is up 3%."
    assert content.image == b"png"
    assert content.tool_calls == {"web_search": 2, "image_generation": 1}
    assert content.total_tokens == 321
    assert content.conversation_token == "resp_42"


def test_to_content_empty_response():
    content = LiteLLMContentGenerator._to_content({"id": "r"}, "m")
    assert content.text == ""
    assert content.image is None
    assert content.total_tokens == 0


@pytest.mark.asyncio
async def test_generate_passes_continuation():
    generator = LiteLLMContentGenerator(Config())
    with patch("litellm.aresponses", new_callable=AsyncMock, return_value=_response()) as mock_llm:
        content = await generator.generate(
            "digest", "openai/gpt-4.1", temperature=0.3, conversation_token="resp_41", max_tokens=100
        )

    kwargs = mock_llm.call_args.kwargs
    assert kwargs["previous_response_id"] == "resp_41"
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_output_tokens"] == 100
    assert content.text == "APT is up 3%."


@pytest.mark.asyncio
async def test_generate_without_temperature():
    generator = LiteLLMContentGenerator(Config())
    with patch("litellm.aresponses", new_callable=AsyncMock, return_value=_response()) as mock_llm:
        await generator.generate("digest", "openai/o3")
    assert "temperature" not in mock_llm.call_args.kwargs
    assert "previous_response_id" not in mock_llm.call_args.kwargs


@pytest.mark.asyncio
async def test_generate_wraps_errors():
    generator = LiteLLMContentGenerator(Config())
    with patch("litellm.aresponses", new_callable=AsyncMock, side_effect=RuntimeError("rate limited")):
        with pytest.raises(ContentGenerationError, match="rate limited"):
            await generator.generate("digest", "openai/gpt-4.1")


# ── Prompt guard ───────────────────────────────────────────


def _completion(content: str, tokens: int = 12):
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = content
    resp.usage.total_tokens = tokens
    return resp


@pytest.mark.asyncio
async def test_guard_rejects():
    guard = PromptGuard("openai/gpt-5-nano")
    reply = _completion(json.dumps({"verdict": "F", "reason": "Sends a payment"}))
    with patch("litellm.acompletion", new_callable=AsyncMock, return_value=reply):
        verdict = await guard.check("pay @bob 5 APT every day")
    assert not verdict.allowed
    assert verdict.reason == "Sends a payment"
    assert verdict.total_tokens == 12


@pytest.mark.asyncio
async def test_guard_allows():
    guard = PromptGuard("openai/gpt-5-nano")
    with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_completion('{"verdict": "P"}')):
        verdict = await guard.check("summarize the news")
    assert verdict.allowed


@pytest.mark.asyncio
async def test_guard_fails_open():
    guard = PromptGuard("openai/gpt-5-nano")
    with patch("litellm.acompletion", new_callable=AsyncMock, side_effect=RuntimeError("down")):
        verdict = await guard.check("summarize the news")
    assert verdict.allowed


@pytest.mark.asyncio
async def test_guard_fails_open_on_bad_json():
    guard = PromptGuard("openai/gpt-5-nano")
    with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_completion("not json")):
        verdict = await guard.check("summarize the news")
    assert verdict.allowed


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ['["F"]', '"F"', "1", "null"])
async def test_guard_fails_open_on_non_object_json(content):
    guard = PromptGuard("openai/gpt-5-nano")
    with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_completion(content)):
        verdict = await guard.check("summarize the news")
    assert verdict.allowed
    assert verdict.total_tokens == 12


# ── Payments backend ───────────────────────────────────────


@pytest.mark.asyncio
async def test_pay_members():
    client = PaymentClient("http://backend:3200/")
    request = PayUsersRequest(amount=150_000_000, users=["0xb0b"], coin_type="0x1::aptos_coin::AptosCoin", version="v1")
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = httpx.Response(200, json={"hash": "0xhash"})
        tx = await client.pay_members("jwt-1", request)

    assert tx == "0xhash"
    assert mock_post.call_args.args[0] == "http://backend:3200/pay-users"
    assert mock_post.call_args.kwargs["headers"] == {"Authorization": "Bearer jwt-1"}
    assert mock_post.call_args.kwargs["json"]["users"] == ["0xb0b"]


@pytest.mark.asyncio
async def test_pay_members_missing_hash():
    client = PaymentClient("http://backend:3200")
    request = PayUsersRequest(amount=1, users=["0xb0b"], coin_type="0xusdc")
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = httpx.Response(200, json={})
        with pytest.raises(PaymentError, match="missing transaction hash"):
            await client.pay_members("jwt-1", request)


@pytest.mark.asyncio
async def test_backend_error_status():
    client = PaymentClient("http://backend:3200")
    request = PayUsersRequest(amount=1, users=["0xb0b"], coin_type="0xusdc")
    with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = httpx.Response(402, text="insufficient balance")
        with pytest.raises(PaymentError, match="402"):
            await client.pay_members("jwt-1", request)
