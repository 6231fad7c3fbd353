from __future__ import annotations

from typing import Any


# User-facing messages keyed by error_code. `{name}` placeholders are filled by `error_message`.
_MESSAGES: dict[str, str] = {
    "human_detected": "You have uploaded an image with human appearance. Please upload only property images without any people.",
    "animal_detected": "You have uploaded an image with animal appearance ({animal_name}). Please upload only property images without any animals or pets.",
    "adult_content": "This image contains inappropriate content and cannot be uploaded.",
    "violence_content": "This image contains violent content and cannot be uploaded.",
    "racy_content": "This image contains suggestive content and cannot be uploaded.",
    "file_too_large": "Image file is too large. Maximum size is {max_mb}MB.",
    "empty_file": "Empty upload.",
    "bad_request": "Bad request.",
    "invalid_url": "Invalid image URL.",
    "firebase_download_failed": "Failed to download image: {reason}",
    "method_not_allowed": "Method not allowed",
    "unauthorized": "Please login to upload images",
    "forbidden": "You do not have permission to upload images for this property",
    "not_found": "Property not found",
    "config_missing": "Server configuration error: upload paths not configured",
    "directory_error": "Failed to prepare upload directory",
    "processing_error": "An error occurred while processing the image",
    "fatal_error": "A fatal error occurred while processing the image",
}


def error_message(code: str, **replacements: Any) -> str:
    message = _MESSAGES.get(code, "An error occurred.")
    for key, value in replacements.items():
        message = message.replace("{" + key + "}", str(value))
    return message


class UploadError(Exception):
    """
    Raised anywhere in the upload pipeline; rendered by the app as

        {"status": "error", "message": ..., "error_code": ..., "details": {...}}
    """

    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = int(status_code)
        self.error_code = error_code
        self.message = message or error_message(error_code)
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {
            "status": "error",
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class StorageError(Exception):
    """Directory creation or file relocation failed; the candidate stays in temp storage."""

    def __init__(self, message: str, *, path: str = "", error_code: str = "processing_error") -> None:
        super().__init__(message)
        self.path = path
        self.error_code = error_code


class RemoteFetchError(Exception):
    pass


# Status codes the framework may raise before our handlers run.
HTTP_ERROR_CODES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "file_too_large",
}
