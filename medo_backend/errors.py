from dataclasses import dataclass, field, asdict
from typing import Optional

from .config import MAX_ATTACHMENT_BYTES
from .messages import t

IMAGE_OR_PDF = "image_or_pdf"
IMAGES_ONLY = "images_only"


class FileValidationError(ValueError):
    """Raised before any network call when a selected file is unacceptable."""

    def __init__(self, kind: str, message: str, file_name: Optional[str] = None):
        super().__init__(message)
        self.kind = kind # "too_large" | "invalid_type"
        self.message = message
        self.file_name = file_name

    @property
    def status_code(self) -> int:
        return 413 if self.kind == "too_large" else 415


@dataclass
class FirestorePermissionError:
    """Structured diagnostic for a rejected Firestore write."""
    path: str
    operation: str
    request_resource_data: dict = field(default_factory=dict)
    reason: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class StorageDeleteError(Exception):
    """A blob could not be deleted for a reason other than it being absent."""


class ImageDecodeError(Exception):
    def __init__(self, index: int, file_name: str, reason: str):
        super().__init__(f"Could not decode image #{index + 1} ({file_name}): {reason}")
        self.index = index
        self.file_name = file_name


class QuizStateError(Exception):
    """An action was attempted in a quiz state that does not allow it."""


def validate_attachment(file_name: str, content_type: Optional[str], size: int,
                        language: str = "ar", accept: Optional[str] = IMAGE_OR_PDF,
                        max_bytes: Optional[int] = MAX_ATTACHMENT_BYTES) -> None:
    """
    Size and MIME checks shared by every entry point that accepts a file.
    `accept=None` skips the MIME check (the general file uploader) and
    `max_bytes=None` skips the size check.
    """
    if max_bytes is not None and size > max_bytes:
        raise FileValidationError(
            "too_large",
            t("file_too_large", language, limit_mb=max_bytes // (1024 * 1024)),
            file_name,
        )
    content_type = content_type or ""
    if accept == IMAGE_OR_PDF:
        ok = content_type.startswith("image/") or content_type == "application/pdf"
        if not ok:
            raise FileValidationError("invalid_type", t("invalid_file_type", language), file_name)
    elif accept == IMAGES_ONLY:
        if not content_type.startswith("image/"):
            raise FileValidationError("invalid_type", t("images_only", language), file_name)
