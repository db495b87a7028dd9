"""
Minimal Gemini generateContent client (REST over httpx).
Only what the image tools need: text + inline image parts in, text + inline image parts out.
"""
import base64
import logging
from dataclasses import dataclass, field

import httpx

from text2image_mcp.config import GEMINI_API_BASE, GEMINI_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

MODELS = {
    "flash": "gemini-2.5-flash-image",
    "pro": "gemini-3-pro-image-preview",
}


class GeminiError(Exception):
    pass


@dataclass
class GeneratedImage:
    mime_type: str
    data: bytes


@dataclass
class GenerationResult:
    text: str = ""
    images: list[GeneratedImage] = field(default_factory=list)
    # Model turn as returned, kept verbatim for multi-turn editing
    content: dict = field(default_factory=dict)


def text_part(text: str) -> dict:
    return {"text": text}


def image_part(data: bytes, mime_type: str) -> dict:
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}}


class GeminiClient:
    def __init__(self, api_key: str, *, base_url: str = GEMINI_API_BASE, timeout: float = GEMINI_TIMEOUT_SECONDS):
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout

    async def generate(
        self,
        contents: list[dict],
        *,
        model: str = "flash",
        aspect_ratio: str | None = None,
        resolution: str | None = None,
        use_google_search: bool = False,
    ) -> GenerationResult:
        model_id = MODELS[model]
        generation_config: dict = {"responseModalities": ["TEXT", "IMAGE"]}
        image_config = {}
        if aspect_ratio:
            image_config["aspectRatio"] = aspect_ratio
        # imageSize and search grounding are Pro-only
        if resolution and model == "pro":
            image_config["imageSize"] = resolution
        if image_config:
            generation_config["imageConfig"] = image_config
        payload: dict = {"contents": contents, "generationConfig": generation_config}
        if use_google_search and model == "pro":
            payload["tools"] = [{"google_search": {}}]

        url = f"{self._base_url}/models/{model_id}:generateContent"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            r = await client.post(url, json=payload, headers={"x-goog-api-key": self._api_key})
        if r.status_code != 200:
            logger.warning("Gemini API returned %s for model %s", r.status_code, model_id)
            raise GeminiError(f"Gemini API error: {r.status_code} - {r.text[:500]}")
        return _parse_response(r.json())


def _parse_response(data: dict) -> GenerationResult:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback", {}).get("blockReason")
        raise GeminiError(f"No candidates in Gemini response{f' (blocked: {feedback})' if feedback else ''}")
    content = candidates[0].get("content") or {}
    result = GenerationResult(content=content)
    texts = []
    for part in content.get("parts") or []:
        if "text" in part:
            texts.append(part["text"])
        elif "inlineData" in part:
            inline = part["inlineData"]
            result.images.append(
                GeneratedImage(mime_type=inline.get("mimeType", "image/png"), data=base64.b64decode(inline["data"]))
            )
    result.text = "\n".join(t for t in texts if t)
    return result
