"""Tests for the vision fallback client."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from dockmatch.config import Settings
from dockmatch.services.vision import (
    OpenAIVisionClient,
    VisionAuthorizationError,
    build_vision_fallback,
    encode_png_data_url,
)


def _response(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return _response(self.content)


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _status_error(cls, status):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("denied", response=response, body=None)


@pytest.fixture
def vision_settings():
    return Settings(vision_assist_enabled=True, openai_api_key="sk-test", vision_model="gpt-4o-mini")


class TestOpenAIVisionClient:
    """Test the chat completions call."""

    def test_returns_cleaned_reference(self, vision_settings):
        completions = FakeCompletions(content=" fba15-abcdef \n")
        client = OpenAIVisionClient(vision_settings, client=_client(completions))

        assert client.extract_reference(b"\x89PNG") == "FBA15ABCDEF"
        assert completions.kwargs["model"] == "gpt-4o-mini"

    def test_sends_png_data_url(self, vision_settings):
        completions = FakeCompletions(content="NONE")
        OpenAIVisionClient(vision_settings, client=_client(completions)).extract_reference(b"png")

        content = completions.kwargs["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == encode_png_data_url(b"png")

    def test_none_answer(self, vision_settings):
        client = OpenAIVisionClient(vision_settings, client=_client(FakeCompletions(content="NONE")))
        assert client.extract_reference(b"png") is None

    def test_auth_error_raised(self, vision_settings):
        error = _status_error(openai.AuthenticationError, 401)
        client = OpenAIVisionClient(vision_settings, client=_client(FakeCompletions(error=error)))

        with pytest.raises(VisionAuthorizationError):
            client.extract_reference(b"png")

    def test_permission_error_raised(self, vision_settings):
        error = _status_error(openai.PermissionDeniedError, 403)
        client = OpenAIVisionClient(vision_settings, client=_client(FakeCompletions(error=error)))

        with pytest.raises(VisionAuthorizationError):
            client.extract_reference(b"png")

    def test_other_api_error_is_no_result(self, vision_settings):
        error = _status_error(openai.InternalServerError, 500)
        client = OpenAIVisionClient(vision_settings, client=_client(FakeCompletions(error=error)))

        assert client.extract_reference(b"png") is None


class TestBuildVisionFallback:
    """Test configuration gating."""

    def test_disabled(self):
        assert build_vision_fallback(Settings(vision_assist_enabled=False, openai_api_key="sk-test")) is None

    def test_enabled_without_key(self):
        assert build_vision_fallback(Settings(vision_assist_enabled=True, openai_api_key=None)) is None

    def test_enabled(self, vision_settings):
        assert isinstance(build_vision_fallback(vision_settings), OpenAIVisionClient)

    def test_data_url(self):
        assert encode_png_data_url(b"abc") == "data:image/png;base64,YWJj"
