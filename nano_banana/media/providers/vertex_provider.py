"""Gemini image generation on Vertex AI."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from nano_banana.core.errors import ImageProviderError, MissingConfiguration
from nano_banana.media.auth import get_access_token, resolve_project_id
from nano_banana.media.providers.base import (
    GeneratedImage,
    GenerationConfig,
    GenerationOutput,
    GenerationPart,
    ImageProvider,
)


TokenSource = Callable[[], Awaitable[str]]


def vertex_api_host(location: str) -> str:
    if location == "global":
        return "aiplatform.googleapis.com"
    return f"{location}-aiplatform.googleapis.com"


class VertexImageProvider(ImageProvider):
    provider_name = "vertex"

    def __init__(
        self,
        *,
        model: str,
        location: str = "global",
        project_id: str = "",
        timeout_seconds: int = 180,
        token_source: TokenSource = get_access_token,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model = model.strip()
        self._location = location.strip() or "global"
        self._project_id = project_id.strip()
        self._timeout_seconds = max(1, timeout_seconds)
        self._token_source = token_source
        self._client = client

    def _endpoint(self, config: GenerationConfig) -> tuple[str, str]:
        model = (config.model or self._model).strip()
        if not model:
            raise MissingConfiguration("Vertex model id is empty.")
        location = (config.location or self._location).strip()
        project_id = resolve_project_id(config.project_id or self._project_id)
        url = (
            f"https://{vertex_api_host(location)}/v1/projects/{project_id}/locations/{location}"
            f"/publishers/google/models/{model}:generateContent"
        )
        return url, model

    @staticmethod
    def _decode_inline_data(data: Dict[str, Any]) -> bytes:
        try:
            return base64.b64decode(str(data.get("data") or ""), validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ImageProviderError("Vertex returned an undecodable inline image.") from exc

    async def _post(self, url: str, body: Dict[str, Any], token: str) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            if self._client is not None:
                return await self._client.post(url, json=body, headers=headers)
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                return await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ImageProviderError(f"Vertex request failed: {exc}") from exc

    async def generate(self, parts: Sequence[GenerationPart], config: GenerationConfig) -> GenerationOutput:
        url, model = self._endpoint(config)
        request_body = {
            "contents": [{"role": "user", "parts": [part.to_payload() for part in parts]}],
            "generationConfig": config.to_payload(),
        }
        token = await self._token_source()
        response = await self._post(url, request_body, token)

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise ImageProviderError(f"Vertex request failed status={response.status_code} detail={detail}")

        try:
            body: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise ImageProviderError("Vertex returned an invalid JSON response.") from exc

        images: List[GeneratedImage] = []
        texts: List[str] = []
        for candidate in body.get("candidates") or []:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if not isinstance(content, dict):
                continue
            for part in content.get("parts") or []:
                if not isinstance(part, dict):
                    continue
                text_value = part.get("text")
                if isinstance(text_value, str) and text_value:
                    texts.append(text_value)
                inline_data = part.get("inlineData") or part.get("inline_data")
                if isinstance(inline_data, dict) and inline_data.get("data"):
                    images.append(
                        GeneratedImage(
                            mime_type=str(inline_data.get("mimeType") or "image/png"),
                            content=self._decode_inline_data(inline_data),
                        )
                    )

        return GenerationOutput(provider=self.provider_name, model=model, images=images, texts=texts)
