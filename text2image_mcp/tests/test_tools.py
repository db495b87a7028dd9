"""Tests for the tool catalogue and argument parsing."""
import pytest
from pydantic import ValidationError

from text2image_mcp.tools import (
    ConfigureGeminiToken,
    ContinueEditing,
    EditImage,
    GenerateImage,
    list_tools,
    parse_tool_call,
)


def _schemas(remote=True):
    return {t.name: t.inputSchema for t in list_tools(remote=remote)}


def test_remote_tools_exclude_key_configuration():
    names = [t.name for t in list_tools(remote=True)]
    assert names == ["generate_image", "edit_image", "continue_editing", "get_last_image_info"]


def test_local_tools_include_key_configuration():
    names = {t.name for t in list_tools(remote=False)}
    assert {"configure_gemini_token", "get_configuration_status", "generate_image"} <= names
    assert len(names) == 6


def test_input_schema_hides_discriminator():
    schema = _schemas()["generate_image"]
    assert "tool" not in schema["properties"]
    assert schema["required"] == ["prompt"]
    assert "title" not in schema


def test_input_schemas_use_camel_case_arguments():
    schemas = _schemas(remote=False)
    assert set(schemas["generate_image"]["properties"]) == {
        "prompt",
        "model",
        "aspectRatio",
        "resolution",
        "useGoogleSearch",
    }
    assert set(schemas["edit_image"]["properties"]) == {
        "imagePath",
        "prompt",
        "referenceImages",
        "model",
        "aspectRatio",
        "resolution",
    }
    assert sorted(schemas["edit_image"]["required"]) == ["imagePath", "prompt"]
    assert set(schemas["continue_editing"]["properties"]) == {"prompt", "referenceImages", "aspectRatio", "resolution"}
    assert schemas["configure_gemini_token"]["required"] == ["apiKey"]


def test_parse_generate_image_defaults():
    call = parse_tool_call("generate_image", {"prompt": "a red fox"})
    assert isinstance(call, GenerateImage)
    assert call.model == "flash"
    assert call.aspect_ratio is None
    assert call.use_google_search is False


def test_parse_generate_image_camel_case():
    call = parse_tool_call("generate_image", {"prompt": "weather map", "aspectRatio": "16:9", "useGoogleSearch": True})
    assert call.aspect_ratio == "16:9"
    assert call.use_google_search is True


def test_parse_edit_image():
    call = parse_tool_call(
        "edit_image", {"imagePath": "/tmp/a.png", "prompt": "make it blue", "referenceImages": ["/tmp/b.png"]}
    )
    assert isinstance(call, EditImage)
    assert call.image_path == "/tmp/a.png"
    assert call.reference_images == ["/tmp/b.png"]


def test_parse_accepts_snake_case_names():
    call = parse_tool_call("edit_image", {"image_path": "/tmp/a.png", "prompt": "p"})
    assert call.image_path == "/tmp/a.png"


def test_parse_continue_editing_with_options():
    call = parse_tool_call("continue_editing", {"prompt": "zoom", "resolution": "4K", "aspectRatio": "16:9"})
    assert isinstance(call, ContinueEditing)
    assert (call.resolution, call.aspect_ratio) == ("4K", "16:9")


def test_parse_configure_gemini_token():
    call = parse_tool_call("configure_gemini_token", {"apiKey": "AIza-key"})
    assert isinstance(call, ConfigureGeminiToken)
    assert call.api_key == "AIza-key"


def test_parse_tool_without_arguments():
    assert parse_tool_call("get_last_image_info", None).tool == "get_last_image_info"


@pytest.mark.parametrize(
    "name,arguments",
    [
        ("generate_image", {}),
        ("generate_image", {"prompt": ""}),
        ("generate_image", {"prompt": "x", "model": "ultra"}),
        ("generate_image", {"prompt": "x", "aspectRatio": "7:3"}),
        ("generate_image", {"prompt": "x", "unexpected": 1}),
        ("edit_image", {"prompt": "x"}),
        ("edit_image", {"imagePath": "/a.png", "prompt": "x", "useGoogleSearch": True}),
        ("continue_editing", {"prompt": "x", "model": "pro"}),
        ("continue_editing", {"prompt": "x", "useGoogleSearch": True}),
        ("no_such_tool", {}),
    ],
)
def test_parse_rejects_invalid_arguments(name, arguments):
    with pytest.raises(ValidationError):
        parse_tool_call(name, arguments)
