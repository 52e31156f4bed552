"""Provider contracts for image generation backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class GenerationPart:
    """One ordered request part: text, inline image, or file reference."""

    text: Optional[str] = None
    mime_type: Optional[str] = None
    data: Optional[str] = None
    file_uri: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_text(cls, text: str) -> "GenerationPart":
        return cls(text=text)

    @classmethod
    def inline(cls, mime_type: str, data: str) -> "GenerationPart":
        return cls(mime_type=mime_type, data=data)

    @classmethod
    def file(cls, mime_type: str, file_uri: str, display_name: Optional[str] = None) -> "GenerationPart":
        return cls(mime_type=mime_type, file_uri=file_uri, display_name=display_name)

    def to_payload(self) -> Dict[str, Any]:
        if self.text is not None:
            return {"text": self.text}
        if self.data is not None:
            return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}
        file_data: Dict[str, Any] = {"mimeType": self.mime_type, "fileUri": self.file_uri}
        if self.display_name:
            file_data["displayName"] = self.display_name
        return {"fileData": file_data}


@dataclass(frozen=True)
class GenerationConfig:
    response_modalities: List[str] = field(default_factory=lambda: ["IMAGE"])
    candidate_count: Optional[int] = None
    aspect_ratio: Optional[str] = None
    image_size: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    project_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"responseModalities": list(self.response_modalities)}
        if self.candidate_count is not None:
            payload["candidateCount"] = self.candidate_count
        image_config: Dict[str, Any] = {}
        if self.aspect_ratio:
            image_config["aspectRatio"] = self.aspect_ratio
        if self.image_size:
            image_config["imageSize"] = self.image_size
        if image_config:
            payload["imageConfig"] = image_config
        return payload


@dataclass(frozen=True)
class GeneratedImage:
    mime_type: str
    content: bytes


@dataclass(frozen=True)
class GenerationOutput:
    provider: str
    model: str
    images: List[GeneratedImage] = field(default_factory=list)
    texts: List[str] = field(default_factory=list)


class ImageProvider(Protocol):
    provider_name: str

    async def generate(self, parts: Sequence[GenerationPart], config: GenerationConfig) -> GenerationOutput:
        raise NotImplementedError
