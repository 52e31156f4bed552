"""Schemas for tool requests and uniform tool responses."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _ToolModel(BaseModel):
    # Tool callers send camelCase; Python callers use field names.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolContent(_ToolModel):
    type: Literal["text", "image"]
    text: Optional[str] = None
    mime_type: Optional[str] = None
    data: Optional[str] = None


class ToolResult(_ToolModel):
    content: List[ToolContent] = Field(default_factory=list)
    is_error: bool = False
    task_id: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[ToolContent(type="text", text=f"Nano Banana error: {message}")], is_error=True)

    def texts(self) -> List[str]:
        return [item.text for item in self.content if item.type == "text" and item.text is not None]

    def images(self) -> List[ToolContent]:
        return [item for item in self.content if item.type == "image"]


class ReferenceImage(_ToolModel):
    mime_type: str = Field(min_length=1)
    data: str = Field(min_length=1)


class ReferenceImageUri(_ToolModel):
    mime_type: str = Field(min_length=1)
    file_uri: str = Field(min_length=1)
    display_name: Optional[str] = None


class ReferenceImagePath(_ToolModel):
    path: str = Field(min_length=1)
    mime_type: Optional[str] = None
    display_name: Optional[str] = None
    object_name: Optional[str] = None


class GenerateImageRequest(_ToolModel):
    prompt: Optional[str] = None
    reference_images: List[ReferenceImage] = Field(default_factory=list)
    reference_image_uris: List[ReferenceImageUri] = Field(default_factory=list)
    reference_image_paths: List[ReferenceImagePath] = Field(default_factory=list)
    aspect_ratio: Optional[str] = None
    image_size: Optional[str] = None
    include_text: bool = False
    response_modalities: Optional[List[Literal["TEXT", "IMAGE"]]] = None
    candidate_count: Optional[int] = Field(default=None, ge=1, le=8)
    model: Optional[str] = None
    location: Optional[str] = None
    project_id: Optional[str] = None
    gcs_bucket: Optional[str] = None
    gcs_upload_prefix: Optional[str] = None
    output_dir: Optional[str] = None
    output_file_prefix: Optional[str] = None
    transparent_background: bool = False
    background: Optional[str] = None
    run_as_task: bool = False


class TransparencyInput(_ToolModel):
    data: Optional[str] = None
    path: Optional[str] = None
    gcs_uri: Optional[str] = None
    mime_type: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "TransparencyInput":
        sources = [value for value in (self.data, self.path, self.gcs_uri) if value]
        if len(sources) != 1:
            raise ValueError("Provide exactly one of data, path or gcsUri.")
        return self


class MakeTransparentRequest(_ToolModel):
    images: List[TransparencyInput] = Field(min_length=1)
    mode: Literal["auto", "color_key", "flatten"] = "auto"
    color: Optional[str] = None
    tolerance: Optional[int] = Field(default=None, ge=0, le=255)
    feather: Optional[int] = Field(default=None, ge=0, le=255)
    fallback_color: Optional[str] = None
    background: Optional[str] = None
    output_dir: Optional[str] = None
    output_file_prefix: Optional[str] = None


class TaskStatusResponse(_ToolModel):
    task_id: str
    status: Literal["queued", "working", "completed", "failed"]
    created_at: datetime
    expires_at: Optional[datetime] = None
    result: Optional[ToolResult] = None
