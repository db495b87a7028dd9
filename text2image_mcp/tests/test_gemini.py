"""Tests for the Gemini REST client (HTTP mocked)."""
import asyncio
import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from text2image_mcp.gemini import GeminiClient, GeminiError, image_part, text_part

PNG = b"\x89PNG\r\n\x1a\nfake"


def _ok_response():
    return httpx.Response(
        200,
        json={
            "candidates": [
                {
                    "content": {
                        "role": "model",
                        "parts": [
                            {"text": "A fox"},
                            {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(PNG).decode()}},
                        ],
                    }
                }
            ]
        },
    )


def _generate(response, **options):
    post = AsyncMock(return_value=response)
    client = GeminiClient("AIza-key", base_url="https://gemini.test/v1beta")
    with patch("text2image_mcp.gemini.httpx.AsyncClient.post", post):
        result = asyncio.run(client.generate([{"role": "user", "parts": [text_part("a fox")]}], **options))
    return result, post


def test_generate_parses_text_and_images():
    result, post = _generate(_ok_response())
    assert result.text == "A fox"
    assert result.images[0].data == PNG
    assert result.images[0].mime_type == "image/png"
    assert result.content["role"] == "model"
    url = post.call_args.args[0]
    assert url == "https://gemini.test/v1beta/models/gemini-2.5-flash-image:generateContent"
    assert post.call_args.kwargs["headers"] == {"x-goog-api-key": "AIza-key"}


def test_flash_ignores_pro_only_options():
    _, post = _generate(_ok_response(), aspect_ratio="1:1", resolution="4K", use_google_search=True)
    payload = post.call_args.kwargs["json"]
    assert payload["generationConfig"]["imageConfig"] == {"aspectRatio": "1:1"}
    assert "tools" not in payload


def test_pro_sends_resolution_and_search():
    _, post = _generate(_ok_response(), model="pro", resolution="2K", use_google_search=True)
    payload = post.call_args.kwargs["json"]
    assert "gemini-3-pro-image-preview" in post.call_args.args[0]
    assert payload["generationConfig"]["imageConfig"] == {"imageSize": "2K"}
    assert payload["tools"] == [{"google_search": {}}]


def test_http_error_raises():
    with pytest.raises(GeminiError) as exc:
        _generate(httpx.Response(403, text="API key not valid"))
    assert "403" in str(exc.value)


def test_blocked_prompt_raises():
    with pytest.raises(GeminiError) as exc:
        _generate(httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
    assert "SAFETY" in str(exc.value)


def test_image_part_encodes_bytes():
    part = image_part(PNG, "image/png")
    assert part["inlineData"]["mimeType"] == "image/png"
    assert base64.b64decode(part["inlineData"]["data"]) == PNG
