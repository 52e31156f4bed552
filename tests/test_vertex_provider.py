import asyncio
import base64
import json

import httpx
import pytest

from nano_banana.core.config import get_settings
from nano_banana.core.errors import ImageProviderError, MissingConfiguration
from nano_banana.media.auth import reset_credentials_for_tests
from nano_banana.media.providers import GenerationConfig, GenerationPart, VertexImageProvider
from nano_banana.media.providers.vertex_provider import vertex_api_host


async def _token() -> str:
    return "test-token"


def _provider(handler, **kwargs) -> VertexImageProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VertexImageProvider(
        model=kwargs.pop("model", "gemini-3-pro-image-preview"),
        location=kwargs.pop("location", "global"),
        project_id=kwargs.pop("project_id", "banana-proj"),
        token_source=_token,
        client=client,
        **kwargs,
    )


def test_api_host_depends_on_location() -> None:
    assert vertex_api_host("global") == "aiplatform.googleapis.com"
    assert vertex_api_host("us-central1") == "us-central1-aiplatform.googleapis.com"


def test_generate_posts_parts_and_parses_candidates() -> None:
    seen = {}
    image_b64 = base64.b64encode(b"png-bytes").decode("ascii")

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {"content": {"parts": [{"text": "here you go"}, {"inlineData": {"mimeType": "image/png", "data": image_b64}}]}},
                    {"content": {"parts": [{"inlineData": {"mimeType": "image/jpeg", "data": image_b64}}]}},
                ]
            },
        )

    parts = [GenerationPart.from_text("banana"), GenerationPart.file("image/png", "gs://b/ref.png", "ref")]
    config = GenerationConfig(response_modalities=["TEXT", "IMAGE"], candidate_count=2, image_size="2K")

    output = asyncio.run(_provider(handler).generate(parts, config))

    assert seen["url"] == (
        "https://aiplatform.googleapis.com/v1/projects/banana-proj/locations/global"
        "/publishers/google/models/gemini-3-pro-image-preview:generateContent"
    )
    assert seen["auth"] == "Bearer test-token"
    assert seen["body"]["contents"][0]["parts"][1] == {
        "fileData": {"mimeType": "image/png", "fileUri": "gs://b/ref.png", "displayName": "ref"}
    }
    assert seen["body"]["generationConfig"] == {
        "responseModalities": ["TEXT", "IMAGE"],
        "candidateCount": 2,
        "imageConfig": {"imageSize": "2K"},
    }
    assert output.texts == ["here you go"]
    assert [image.mime_type for image in output.images] == ["image/png", "image/jpeg"]
    assert output.images[0].content == b"png-bytes"


def test_request_overrides_model_and_location() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"candidates": []})

    config = GenerationConfig(model="gemini-2.5-flash-image", location="europe-west4", project_id="other")
    output = asyncio.run(_provider(handler).generate([GenerationPart.from_text("x")], config))

    assert seen["url"].startswith("https://europe-west4-aiplatform.googleapis.com/v1/projects/other/locations/europe-west4/")
    assert seen["url"].endswith("/models/gemini-2.5-flash-image:generateContent")
    assert output.model == "gemini-2.5-flash-image"
    assert output.images == []


def test_http_errors_are_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="x" * 500)

    with pytest.raises(ImageProviderError) as excinfo:
        asyncio.run(_provider(handler).generate([GenerationPart.from_text("x")], GenerationConfig()))
    message = str(excinfo.value)
    assert "status=500" in message
    assert message.endswith("x" * 240 + "...")


def test_transport_errors_become_provider_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(ImageProviderError):
        asyncio.run(_provider(handler).generate([GenerationPart.from_text("x")], GenerationConfig()))


def test_missing_project_is_reported_before_any_request(monkeypatch) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", json.dumps({"client_email": "svc@example.iam.gserviceaccount.com"}))
    for name in ("VERTEX_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_credentials_for_tests()

    with pytest.raises(MissingConfiguration):
        asyncio.run(_provider(handler, project_id="").generate([GenerationPart.from_text("x")], GenerationConfig()))
    assert calls == []
