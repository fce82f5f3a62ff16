import json

import httpx
import pytest

from backend.app.feedback import analyze_reading_behavior, build_feedback_prompt, build_parts
from backend.app.gemini_client import GeminiClient
from backend.app.reading_summary import CursorSample, SentenceRegion, summarize


PASSAGE = "The Great Lakes are five lakes. They hold a fifth of the world's fresh water."
REGIONS = [
    SentenceRegion(id=0, text="The Great Lakes are five lakes.", left=0, top=0, right=200, bottom=20),
    SentenceRegion(id=1, text="They hold a fifth of the world's fresh water.", left=0, top=30, right=200, bottom=50),
]
SAMPLES = [
    CursorSample(x=10, y=10, timestamp=1000),
    CursorSample(x=20, y=40, timestamp=2500),
    CursorSample(x=30, y=40, timestamp=3000),
]


def gemini_reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_prompt_embeds_trace_overview_and_summary():
    summary = summarize(SAMPLES, REGIONS)
    prompt = build_feedback_prompt(PASSAGE, SAMPLES, summary)
    assert "Total cursor points: 3" in prompt
    assert "Reading duration: 2.0 seconds" in prompt
    assert "X: 10-30, Y: 10-40" in prompt
    assert '"dwell_ms":1500' in prompt
    assert PASSAGE in prompt


def test_bad_screenshot_is_dropped_from_parts():
    parts = build_parts("prompt", "not-a-data-url")
    assert parts == [{"text": "prompt"}]

    parts = build_parts("prompt", "data:image/jpeg;base64,AAAA")
    assert parts[1] == {"inlineData": {"mimeType": "image/jpeg", "data": "AAAA"}}


@pytest.mark.asyncio
async def test_feedback_sends_prompt_and_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.url.params.get("key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=gemini_reply("- Slow down on sentence 2."))

    client = GeminiClient(api_key="test-key", model="gemini-2.0-flash", transport=httpx.MockTransport(handler))
    summary = summarize(SAMPLES, REGIONS)
    try:
        result = await analyze_reading_behavior(
            PASSAGE, "data:image/png;base64,iVBORw0KGgo=", SAMPLES, summary, client=client
        )
    finally:
        await client.aclose()

    assert result.error is None
    assert result.tips == "- Slow down on sentence 2."
    assert result.reading_summary == summary
    assert seen["key"] == "test-key"
    parts = seen["body"]["contents"][0]["parts"]
    assert "Sentence Reading Summary" in parts[0]["text"]
    assert parts[1]["inlineData"]["mimeType"] == "image/png"


@pytest.mark.asyncio
async def test_rate_limit_becomes_error_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "quota"}})

    client = GeminiClient(api_key="test-key", transport=httpx.MockTransport(handler))
    try:
        result = await analyze_reading_behavior(PASSAGE, None, SAMPLES, client=client)
    finally:
        await client.aclose()

    assert result.tips == ""
    assert result.error == "Rate limit exceeded. Please try again in a minute."


@pytest.mark.asyncio
async def test_unexpected_response_shape_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    client = GeminiClient(api_key="test-key", transport=httpx.MockTransport(handler))
    try:
        result = await analyze_reading_behavior(PASSAGE, None, SAMPLES, client=client)
    finally:
        await client.aclose()

    assert result.error.startswith("Error: Unexpected Gemini response")


@pytest.mark.asyncio
async def test_missing_inputs_short_circuit(monkeypatch):
    from backend.app.settings import settings

    monkeypatch.setattr(settings, "gemini_api_key", None)
    result = await analyze_reading_behavior(PASSAGE, None, SAMPLES)
    assert "not configured" in result.error

    monkeypatch.setattr(settings, "gemini_api_key", "k")
    result = await analyze_reading_behavior("", None, SAMPLES)
    assert result.error == "Reading passage is required for analysis."

    result = await analyze_reading_behavior(PASSAGE, None, [])
    assert result.error.startswith("No cursor tracking data available")


def test_client_requires_api_key(monkeypatch):
    from backend.app.settings import settings

    monkeypatch.setattr(settings, "gemini_api_key", None)
    with pytest.raises(ValueError):
        GeminiClient()
