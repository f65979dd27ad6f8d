"""Tests for the Gemini completion client using httpx's mock transport."""

import json

import httpx
import pytest

from tutor_dialogue.errors import CompletionError
from tutor_dialogue.gemini_client import GeminiClient, UnavailableBackend, build_completion_backend
from tutor_dialogue.settings import settings


@pytest.fixture(autouse=True)
def _no_fallback(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)
	monkeypatch.setattr(settings, "gemini_provider", "ai_studio")


def _gemini_payload(text):
	return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.asyncio
async def test_complete_posts_prompt_and_strips_text() -> None:
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["url"] = str(request.url)
		seen["body"] = json.loads(request.content)
		return httpx.Response(200, json=_gemini_payload("  Hello there!  "))

	client = GeminiClient(api_key="test-key", model="gemini-test", transport=httpx.MockTransport(handler))
	try:
		text = await client.complete("Say hello")
	finally:
		await client.aclose()
	assert text == "Hello there!"
	assert "gemini-test:generateContent" in seen["url"]
	assert "key=test-key" in seen["url"]
	assert seen["body"]["contents"][0]["parts"][0]["text"] == "Say hello"
	assert seen["body"]["generationConfig"]["temperature"] == settings.gemini_temperature


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"response",
	[
		httpx.Response(500, json={"error": "internal"}),
		httpx.Response(429, json={"error": "quota"}),
		httpx.Response(200, json={"candidates": []}),
		httpx.Response(200, text="not json"),
		httpx.Response(200, json=_gemini_payload("   ")),
	],
)
async def test_complete_raises_completion_error(response) -> None:
	client = GeminiClient(api_key="k", transport=httpx.MockTransport(lambda request: response))
	async with client:
		with pytest.raises(CompletionError):
			await client.complete("prompt")


@pytest.mark.asyncio
async def test_network_error_raises_completion_error() -> None:
	def handler(request):
		raise httpx.ConnectError("unreachable", request=request)

	async with GeminiClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
		with pytest.raises(CompletionError):
			await client.complete("prompt")


@pytest.mark.asyncio
async def test_openrouter_fallback_used_when_primary_fails(monkeypatch) -> None:
	monkeypatch.setattr(settings, "openrouter_api_key", "router-key")

	def handler(request: httpx.Request) -> httpx.Response:
		if "openrouter" in request.url.host:
			assert request.headers["Authorization"] == "Bearer router-key"
			return httpx.Response(200, json={"choices": [{"message": {"content": "From fallback"}}]})
		return httpx.Response(503)

	async with GeminiClient(api_key="k", transport=httpx.MockTransport(handler)) as client:
		assert await client.complete("prompt") == "From fallback"


@pytest.mark.asyncio
async def test_missing_key_builds_unavailable_backend(monkeypatch) -> None:
	monkeypatch.setattr(settings, "gemini_api_key", None)
	backend = build_completion_backend()
	assert isinstance(backend, UnavailableBackend)
	with pytest.raises(CompletionError):
		await backend.complete("prompt")
