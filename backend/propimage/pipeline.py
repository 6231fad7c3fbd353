"""
Upload pipeline: intake -> temporary store -> classify -> decide -> relocate -> persist.

One `UploadPipeline.process()` call handles one request synchronously. The
candidate file lives in temporary storage only for the duration of the call and
is removed on every exit path, including unexpected failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Protocol, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propimage.config import ModerationSettings, StorageSettings, is_development
from propimage.errors import RemoteFetchError, StorageError, UploadError, error_message
from propimage.moderation import SAFE, ModerationDecision, evaluate
from propimage.persistence import record_image
from propimage.relocation import Placement, RelocationManager
from propimage.utils.file_store import PermanentStore, TemporaryStore, generate_filename, sniff_content_type
from propimage.utils.remote_fetch import (
    FetchedImage,
    RemoteImageTooLarge,
    fetch_image,
    is_allowed_remote_url,
    url_host,
)
from propimage.vision import ClassificationResult


logger = logging.getLogger(__name__)

SourceKind = Literal["local-upload", "remote-url"]


@dataclass(frozen=True)
class LocalFile:
    raw: bytes
    filename: str = ""
    content_type: str = ""


@dataclass(frozen=True)
class RemoteUrl:
    url: str


ImageSource = Union[LocalFile, RemoteUrl]


@dataclass(frozen=True)
class UploadRequest:
    source: ImageSource
    property_id: int = 0
    validate_only: bool = False

    @property
    def persists(self) -> bool:
        return not self.validate_only and self.property_id > 0


@dataclass(frozen=True)
class UploadCandidate:
    raw: bytes
    filename: str
    original_filename: str
    content_type: str
    source_kind: SourceKind
    source_url: str = ""

    @property
    def size(self) -> int:
        return len(self.raw)


class Classifier(Protocol):
    def classify(self, raw: bytes) -> ClassificationResult: ...


Fetcher = Callable[..., FetchedImage]


def _max_mb(max_bytes: int) -> str:
    mb = max_bytes / (1024 * 1024)
    return f"{mb:g}"


class UploadPipeline:
    def __init__(
        self,
        *,
        moderation: ModerationSettings,
        storage: StorageSettings,
        classifier_factory: Callable[[], Classifier],
        fetcher: Fetcher = fetch_image,
        relocation: Optional[RelocationManager] = None,
    ) -> None:
        self.moderation = moderation
        self.storage = storage
        self.classifier_factory = classifier_factory
        self.fetcher = fetcher
        self._relocation = relocation

    # -----------------------
    # Intake
    # -----------------------
    def _too_large(self, size: int | None = None) -> UploadError:
        details: dict[str, Any] = {"max_bytes": self.storage.max_upload_bytes}
        if size is not None:
            details["file_size"] = size
        return UploadError(
            status_code=400,
            error_code="file_too_large",
            message=error_message("file_too_large", max_mb=_max_mb(self.storage.max_upload_bytes)),
            details=details,
        )

    def build_candidate(self, source: ImageSource) -> UploadCandidate:
        if isinstance(source, LocalFile):
            raw = source.raw or b""
            if not raw:
                raise UploadError(status_code=400, error_code="empty_file")
            if len(raw) > self.storage.max_upload_bytes:
                raise self._too_large(len(raw))
            original = (source.filename or "").strip() or "upload.jpg"
            declared = source.content_type
            kind: SourceKind = "local-upload"
            url = ""
        elif isinstance(source, RemoteUrl):
            url = (source.url or "").strip()
            if not is_allowed_remote_url(url, self.storage.remote_hosts):
                raise UploadError(status_code=400, error_code="invalid_url", details={"host": url_host(url)})
            try:
                fetched = self.fetcher(url, max_bytes=self.storage.max_upload_bytes, timeout=self.storage.remote_fetch_timeout)
            except RemoteImageTooLarge:
                raise self._too_large()
            except RemoteFetchError as exc:
                raise UploadError(
                    status_code=400,
                    error_code="firebase_download_failed",
                    message=error_message("firebase_download_failed", reason=str(exc)),
                    details={"host": url_host(url)},
                )
            raw = fetched.raw
            original = fetched.filename
            declared = fetched.content_type
            kind = "remote-url"
        else:
            raise UploadError(status_code=400, error_code="bad_request", message="Provide an image file or an image URL")

        content_type = sniff_content_type(raw=raw, filename=original, declared=declared)
        return UploadCandidate(
            raw=raw,
            filename=generate_filename(original_filename=original, content_type=content_type),
            original_filename=original,
            content_type=content_type,
            source_kind=kind,
            source_url=url,
        )

    # -----------------------
    # Classification
    # -----------------------
    def classify(self, raw: bytes) -> ClassificationResult:
        try:
            classifier = self.classifier_factory()
        except Exception as exc:
            logger.warning("Classifier initialization failed: %s", exc.__class__.__name__)
            return ClassificationResult.unavailable(f"client initialization failed ({exc.__class__.__name__})")
        try:
            return classifier.classify(raw)
        except Exception as exc:
            logger.exception("Classifier raised")
            return ClassificationResult.unavailable(f"classifier error ({exc.__class__.__name__})")

    # -----------------------
    # Relocation
    # -----------------------
    @property
    def relocation(self) -> RelocationManager:
        if self._relocation is None:
            self._relocation = RelocationManager(
                PermanentStore(self.storage.properties_dir, self.storage.base_url),
                watermark_enabled=self.storage.watermark_enabled,
                watermark_text=self.storage.watermark_text,
            )
        return self._relocation

    def _place(self, temp_path: str, candidate: UploadCandidate, property_id: int) -> Placement:
        try:
            if candidate.source_kind == "remote-url":
                return self.relocation.place_remote(
                    temp_path,
                    property_id=property_id,
                    filename=candidate.filename,
                    source_url=candidate.source_url,
                    content_type=candidate.content_type,
                )
            return self.relocation.place_local(temp_path, property_id=property_id, filename=candidate.filename)
        except StorageError as exc:
            logger.exception("Relocation failed property_id=%s filename=%s", property_id, candidate.filename)
            raise UploadError(
                status_code=500,
                error_code=exc.error_code,
                details={"error": str(exc)} if is_development() else {},
            )

    # -----------------------
    # Orchestration
    # -----------------------
    def process(self, request: UploadRequest, *, db: Session | None = None) -> dict[str, Any]:
        """
        Run the whole pipeline and return the `data` object of the success response.

        Raises UploadError for rejections (400) and infrastructure faults (500).
        """
        candidate = self.build_candidate(request.source)
        try:
            temp = TemporaryStore(self.storage.temp_dir)
            with temp.candidate(candidate.filename, candidate.raw) as temp_path:
                result = self.classify(temp.read(temp_path))
                decision = evaluate(result, self.moderation)
                logger.info(
                    "Moderation decision property_id=%s filename=%s status=%s reason=%s",
                    request.property_id,
                    candidate.filename,
                    decision.status,
                    decision.reason_code,
                )

                if decision.rejected:
                    raise UploadError(
                        status_code=400,
                        error_code=decision.reason_code,
                        message=decision.reason_message,
                        details=decision.details,
                    )

                if not request.persists:
                    return self._validated(candidate, decision)

                if db is None:
                    raise UploadError(status_code=500, error_code="config_missing", message="Database session not available")

                placement = self._place(temp_path, candidate, request.property_id)
                try:
                    row = record_image(
                        db,
                        property_id=request.property_id,
                        placement=placement,
                        filename=candidate.filename,
                        original_filename=candidate.original_filename,
                        file_size=candidate.size,
                        mime_type=candidate.content_type,
                        decision=decision,
                        result=result,
                    )
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    # Placed file is kept for repair.
                    logger.exception("Failed to save image record property_id=%s url=%s", request.property_id, placement.image_url)
                    raise UploadError(
                        status_code=500,
                        error_code="processing_error",
                        message="Failed to save image record",
                        details={"error": str(exc)} if is_development() else {},
                    )
                return self._stored(candidate, decision, placement, row.id)
        except StorageError as exc:
            # Temporary store could not be prepared.
            logger.exception("Temporary storage failed filename=%s", candidate.filename)
            raise UploadError(
                status_code=500,
                error_code=exc.error_code,
                details={"error": str(exc)} if is_development() else {},
            )

    @staticmethod
    def _validated(candidate: UploadCandidate, decision: ModerationDecision) -> dict[str, Any]:
        return {
            "validated": True,
            "filename": candidate.filename,
            "moderation_status": decision.status,
            "moderation_reason": decision.reason_message,
            "moderation_reason_code": decision.reason_code,
            "validate_only": True,
        }

    @staticmethod
    def _stored(candidate: UploadCandidate, decision: ModerationDecision, placement: Placement, image_id: int | None) -> dict[str, Any]:
        return {
            "image_id": image_id,
            "image_url": placement.image_url,
            "relative_path": placement.relative_path,
            "filename": candidate.filename,
            "moderation_status": decision.status,
            "moderation_reason": decision.reason_message,
            "moderation_reason_code": decision.reason_code,
            "storage_type": placement.storage_type,
        }


def response_message(data: dict[str, Any]) -> str:
    return "Image approved" if data.get("moderation_status") == SAFE else "Image requires review"
