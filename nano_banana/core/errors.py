"""Error taxonomy shared by the imaging pipeline, task layer and collaborators."""

from __future__ import annotations

from typing import Any, Dict, Optional


class NanoBananaError(RuntimeError):
    """Base class for every failure surfaced to tool callers."""

    code = "NANO_BANANA_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "details": self.details,
        }


class InvalidColorFormat(NanoBananaError, ValueError):
    """Raised when a hex color string is malformed. Caller error."""

    code = "INVALID_COLOR_FORMAT"

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid color {value!r}; expected #rgb or #rrggbb.",
            details={"value": value},
        )


class EmptyReferenceColorSet(NanoBananaError):
    """Raised when neither detection nor a fallback produced a key color."""

    code = "EMPTY_REFERENCE_COLOR_SET"

    def __init__(self, message: str = "At least one reference background color is required.") -> None:
        super().__init__(message)


class TaskNotFound(NanoBananaError):
    """Raised when polling an unknown or expired task id."""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' not found or expired.", details={"task_id": task_id})
        self.task_id = task_id


class UnreachableCollaborator(NanoBananaError):
    """Raised when a network or storage collaborator call fails."""

    code = "UNREACHABLE_COLLABORATOR"


class ImageProviderError(UnreachableCollaborator):
    """Raised when an image provider cannot fulfill a generation request."""

    code = "IMAGE_PROVIDER_ERROR"


class ObjectStoreError(UnreachableCollaborator):
    """Raised when an object store put/get fails."""

    code = "OBJECT_STORE_ERROR"


class TaskBackendError(UnreachableCollaborator):
    """Raised when the external task store cannot be reached."""

    code = "TASK_BACKEND_ERROR"


class MissingConfiguration(NanoBananaError):
    """Raised before any network call when a required input is absent."""

    code = "MISSING_CONFIGURATION"
