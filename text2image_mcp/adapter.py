"""
Per-session MCP server exposing the image tools, bound to one Gemini API key.
Remote sessions get one adapter each; the stdio process has exactly one.
"""
import base64
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from mcp.types import INVALID_REQUEST, ErrorData, ImageContent, TextContent

from text2image_mcp.gemini import GeminiClient, GenerationResult, image_part, text_part
from text2image_mcp.tools import (
    ConfigureGeminiToken,
    ContinueEditing,
    EditImage,
    GenerateImage,
    GetConfigurationStatus,
    GetLastImageInfo,
    list_tools,
    parse_tool_call,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "text2image-mcp"
SERVER_VERSION = "2.1.0"

PRO_ONLY_RESOLUTIONS = ("2K", "4K")
# Flash accepts at most this many reference images
FLASH_MAX_REFERENCE_IMAGES = 3


def select_model(
    requested: str,
    *,
    resolution: str | None = None,
    use_google_search: bool = False,
    reference_count: int = 0,
) -> str:
    """A flash request that asks for a pro-only option runs on pro instead."""
    if requested != "flash":
        return requested
    if resolution in PRO_ONLY_RESOLUTIONS or use_google_search or reference_count > FLASH_MAX_REFERENCE_IMAGES:
        return "pro"
    return requested



@dataclass
class LastImage:
    mime_type: str
    size: int
    prompt: str
    model: str


def _load_image(path: str) -> dict:
    p = Path(path).expanduser()
    if not p.is_file():
        raise ValueError(f"Image not found: {path}")
    mime_type = mimetypes.guess_type(p.name)[0] or "image/png"
    return image_part(p.read_bytes(), mime_type)


class ImageToolAdapter:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        remote: bool = True,
        client_factory: Callable[[str], GeminiClient] = GeminiClient,
    ):
        self.remote = remote
        self._client_factory = client_factory
        self._client: GeminiClient | None = None
        self.config_source = "not_configured"
        if api_key:
            self.configure(api_key, source="session" if remote else "environment")
        self._history: list[dict] = []
        self.last_image: LastImage | None = None
        self.server = self._build_server()

    @property
    def configured(self) -> bool:
        return self._client is not None

    def configure(self, api_key: str, source: str) -> None:
        self._client = self._client_factory(api_key)
        self.config_source = source

    def _build_server(self) -> Server:
        server = Server(SERVER_NAME, version=SERVER_VERSION)

        @server.list_tools()
        async def _list_tools():
            return list_tools(self.remote)

        @server.call_tool()
        async def _call_tool(name: str, arguments: dict):
            return await self.call_tool(name, arguments)

        return server

    async def call_tool(self, name: str, arguments: dict | None) -> list[TextContent | ImageContent]:
        if name not in {t.name for t in list_tools(self.remote)}:
            raise ValueError(f"Unknown tool: {name}")
        call = parse_tool_call(name, arguments)

        if isinstance(call, ConfigureGeminiToken):
            self.configure(call.api_key, source="tool")
            return [TextContent(type="text", text="Gemini API key configured for this process.")]
        if isinstance(call, GetConfigurationStatus):
            status = "configured" if self.configured else "not configured"
            return [TextContent(type="text", text=f"Gemini API key: {status} (source: {self.config_source})")]
        if isinstance(call, GetLastImageInfo):
            return [TextContent(type="text", text=self._describe_last_image())]

        if self._client is None:
            raise McpError(
                ErrorData(
                    code=INVALID_REQUEST,
                    message="Gemini API key not configured. Use configure_gemini_token or set GEMINI_API_KEY.",
                )
            )

        if isinstance(call, GenerateImage):
            self._history = []
            parts = [text_part(call.prompt)]
            use_google_search = call.use_google_search
            requested = call.model
            model = select_model(requested, resolution=call.resolution, use_google_search=use_google_search)
        elif isinstance(call, EditImage):
            # New base image, previous conversation no longer applies
            self._history = []
            parts = [_load_image(call.image_path)]
            parts += [_load_image(p) for p in call.reference_images]
            parts.append(text_part(call.prompt))
            use_google_search = False
            requested = call.model
            model = select_model(requested, resolution=call.resolution, reference_count=len(call.reference_images))
        elif isinstance(call, ContinueEditing):
            if self.last_image is None:
                return [TextContent(type="text", text="No previous image found. Use generate_image or edit_image first.")]
            parts = [_load_image(p) for p in call.reference_images]
            parts.append(text_part(call.prompt))
            use_google_search = False
            requested = self.last_image.model
            model = select_model(requested, resolution=call.resolution)
        else:
            raise ValueError(f"Unknown tool: {name}")

        if model != requested:
            logger.info("Switching %s request from %s to %s for pro-only options", name, requested, model)
        contents = self._history + [{"role": "user", "parts": parts}]
        result = await self._client.generate(
            contents,
            model=model,
            aspect_ratio=call.aspect_ratio,
            resolution=call.resolution,
            use_google_search=use_google_search,
        )
        self._history = contents + [{**result.content, "role": "model"}]
        return self._render(result, call.prompt, model)

    def _render(self, result: GenerationResult, prompt: str, model: str) -> list[TextContent | ImageContent]:
        if not result.images:
            text = result.text or "The model returned no image."
            return [TextContent(type="text", text=text)]
        image = result.images[-1]
        self.last_image = LastImage(mime_type=image.mime_type, size=len(image.data), prompt=prompt, model=model)
        logger.info("Generated %s image (%d bytes) with model=%s", image.mime_type, len(image.data), model)
        content: list[TextContent | ImageContent] = [
            ImageContent(type="image", data=base64.b64encode(img.data).decode("ascii"), mimeType=img.mime_type)
            for img in result.images
        ]
        if result.text:
            content.append(TextContent(type="text", text=result.text))
        return content

    def _describe_last_image(self) -> str:
        if self.last_image is None:
            return "No previous image found. Use generate_image or edit_image first."
        img = self.last_image
        return (
            f"Last Image:\n\nType: {img.mime_type}\nSize: {round(img.size / 1024)} KB\n"
            f"Model: {img.model}\nPrompt: {img.prompt}\n\nUse continue_editing to make changes."
        )
