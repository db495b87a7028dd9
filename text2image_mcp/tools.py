"""
Tool catalogue and argument validation.
Each tool call is parsed once, at the MCP boundary, into one member of the ToolCall union.
"""
from typing import Annotated, Literal, Union

from mcp.types import Tool
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

AspectRatio = Literal["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
Resolution = Literal["1K", "2K", "4K"]
ModelKey = Literal["flash", "pro"]


class _ToolArgs(BaseModel):
    # Public argument names are camelCase (imagePath, aspectRatio, ...); snake_case is accepted too
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class _ImageOptions(_ToolArgs):
    aspect_ratio: AspectRatio | None = Field(None, description="Aspect ratio for the output image")
    resolution: Resolution | None = Field(None, description="Image resolution (Pro model only): 1K, 2K or 4K")


class GenerateImage(_ImageOptions):
    tool: Literal["generate_image"] = "generate_image"
    prompt: str = Field(..., min_length=1, description="Text prompt describing the image to create")
    model: ModelKey = Field("flash", description="flash (default, fast) or pro (higher quality, 4K, search grounding)")
    use_google_search: bool = Field(False, description="Ground the image on Google Search (Pro model only)")


class EditImage(_ImageOptions):
    tool: Literal["edit_image"] = "edit_image"
    image_path: str = Field(..., min_length=1, description="Full file path to the image to edit")
    prompt: str = Field(..., min_length=1, description="Text describing the modifications to make")
    reference_images: list[str] = Field(
        default_factory=list, description="Optional reference image paths (up to 3 for flash, up to 14 for pro)"
    )
    model: ModelKey = Field("flash", description="flash (default) for speed, pro for quality and more reference images")


class ContinueEditing(_ImageOptions):
    """Model follows the last image; only pro-only options can move it to pro."""

    tool: Literal["continue_editing"] = "continue_editing"
    prompt: str = Field(..., min_length=1, description="Text describing the changes to make to the last image")
    reference_images: list[str] = Field(
        default_factory=list, description="Optional reference image paths for style or content guidance"
    )


class GetLastImageInfo(_ToolArgs):
    tool: Literal["get_last_image_info"] = "get_last_image_info"


class ConfigureGeminiToken(_ToolArgs):
    tool: Literal["configure_gemini_token"] = "configure_gemini_token"
    api_key: str = Field(..., min_length=1, description="Gemini API key")


class GetConfigurationStatus(_ToolArgs):
    tool: Literal["get_configuration_status"] = "get_configuration_status"


ToolCall = Annotated[
    Union[GenerateImage, EditImage, ContinueEditing, GetLastImageInfo, ConfigureGeminiToken, GetConfigurationStatus],
    Field(discriminator="tool"),
]
_tool_call_adapter = TypeAdapter(ToolCall)

_DESCRIPTIONS = {
    GenerateImage: "Generate a new image from a text prompt. Starts a fresh editing conversation.",
    EditImage: "Edit an existing image file with a text prompt.",
    ContinueEditing: "Keep editing the last generated or edited image, with conversation context.",
    GetLastImageInfo: "Get information about the last generated or edited image.",
    ConfigureGeminiToken: "Configure the Gemini API key for this server process.",
    GetConfigurationStatus: "Report whether a Gemini API key is configured.",
}

REMOTE_TOOLS = (GenerateImage, EditImage, ContinueEditing, GetLastImageInfo)
LOCAL_ONLY_TOOLS = (ConfigureGeminiToken, GetConfigurationStatus)


def tool_name(model: type[_ToolArgs]) -> str:
    return model.model_fields["tool"].default


def _input_schema(model: type[_ToolArgs]) -> dict:
    schema = model.model_json_schema(by_alias=True)
    schema.get("properties", {}).pop("tool", None)
    schema["required"] = [r for r in schema.get("required", []) if r != "tool"]
    schema.pop("title", None)
    return schema


def list_tools(remote: bool) -> list[Tool]:
    models = REMOTE_TOOLS if remote else LOCAL_ONLY_TOOLS + REMOTE_TOOLS
    return [Tool(name=tool_name(m), description=_DESCRIPTIONS[m], inputSchema=_input_schema(m)) for m in models]


def parse_tool_call(name: str, arguments: dict | None):
    """Validate raw MCP arguments into a ToolCall. Raises pydantic.ValidationError."""
    return _tool_call_adapter.validate_python({**(arguments or {}), "tool": name})
