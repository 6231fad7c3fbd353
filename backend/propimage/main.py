from __future__ import annotations

import logging
import os
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from propimage.config import (
    StorageSettings,
    allowed_hosts,
    cors_origins,
    enforce_secure_secrets,
    is_development,
    moderation_settings,
    storage_settings,
)
from propimage.db import session_scope
from propimage.errors import HTTP_ERROR_CODES, UploadError, error_message
from propimage.models import Property, User
from propimage.pipeline import LocalFile, RemoteUrl, UploadPipeline, UploadRequest, response_message
from propimage.security import decode_access_token
from propimage.vision import VisionClient


logger = logging.getLogger(__name__)

app = FastAPI(title="Property Image Moderation API")

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    return resp


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)


# -----------------------
# Error envelope
# -----------------------
def _error_response(status_code: int, error_code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message, "error_code": error_code, "details": details or {}},
    )


@app.exception_handler(UploadError)
async def upload_error_handler(request, exc: UploadError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "error")
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else error_message(code)
    resp = _error_response(exc.status_code, code, message)
    for k, v in (exc.headers or {}).items():
        resp.headers[k] = v
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    return _error_response(400, "bad_request", error_message("bad_request"), {"errors": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("Unhandled error path=%s", request.url.path)
    details = {"error": str(exc), "type": exc.__class__.__name__} if is_development() else {}
    return _error_response(500, "processing_error", error_message("processing_error"), details)


# -----------------------
# Dependencies
# -----------------------
def get_db():
    with session_scope() as db:
        yield db


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail=error_message("unauthorized"))
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub") or 0)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_storage() -> StorageSettings:
    return storage_settings()


def get_pipeline(storage: Annotated[StorageSettings, Depends(get_storage)]) -> UploadPipeline:
    return UploadPipeline(
        moderation=moderation_settings(),
        storage=storage,
        classifier_factory=VisionClient.from_env,
    )


def _require_listing_owner(db: Session, me: User, property_id: int) -> Property:
    prop = db.get(Property, int(property_id))
    if not prop:
        raise HTTPException(status_code=404, detail=error_message("not_found"))
    if int(prop.owner_id) != int(me.id):
        raise HTTPException(status_code=403, detail=error_message("forbidden"))
    return prop


def _truthy(raw: str | None) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes", "on"}


# -----------------------
# Routes
# -----------------------
@app.get("/health")
def health():
    return {"ok": True}


@app.options("/images/moderate-and-upload", include_in_schema=False)
def moderate_and_upload_preflight():
    return Response(status_code=200)


@app.post("/images/moderate-and-upload")
def moderate_and_upload(
    me: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    image: UploadFile | None = File(None),
    firebase_url: str | None = Form(None),
    property_id: int = Form(0),
    validate_only: str | None = Form(None),
) -> dict[str, Any]:
    """
    Moderate one property image and, unless validating only, store it.

    Exactly one source: `image` (multipart file) or `firebase_url` (remote image URL).
    `property_id` 0 or absent, or `validate_only=true`, runs the checks without storing.
    """
    url = (firebase_url or "").strip()
    if image is not None and url:
        raise UploadError(status_code=400, error_code="bad_request", message="Provide either an image file or an image URL, not both")
    if image is None and not url:
        raise UploadError(status_code=400, error_code="bad_request", message="No image file or image URL provided")
    if property_id < 0:
        raise UploadError(status_code=400, error_code="bad_request", message="Invalid property ID")

    if property_id > 0:
        _require_listing_owner(db, me, property_id)

    if image is not None:
        max_bytes = pipeline.storage.max_upload_bytes
        try:
            # One byte past the ceiling is enough to detect an oversized upload.
            raw = image.file.read(max_bytes + 1)
        except Exception:
            raise UploadError(status_code=400, error_code="bad_request", message="Invalid upload")
        source = LocalFile(raw=raw, filename=image.filename or "", content_type=image.content_type or "")
    else:
        source = RemoteUrl(url=url)

    request = UploadRequest(source=source, property_id=property_id, validate_only=_truthy(validate_only))
    data = pipeline.process(request, db=db)
    return {"status": "success", "message": response_message(data), "data": data}


@app.get("/uploads/{path:path}", include_in_schema=False)
def uploads_proxy(path: str, storage: Annotated[StorageSettings, Depends(get_storage)]):
    """
    Serve locally-stored listing images from disk.

    `{UPLOAD_BASE_URL}/properties/{id}/{file}` maps onto the permanent properties
    directory. Missing files return 204 like any stale reference.
    """
    rel = (path or "").lstrip("/").replace("\\", "/")
    if not rel.startswith("properties/"):
        return Response(status_code=204)
    rel = rel[len("properties/"):]
    base = os.path.realpath(storage.properties_dir)
    target = os.path.realpath(os.path.join(base, rel))
    if not target.startswith(base + os.sep):
        raise HTTPException(status_code=404, detail="Not found")
    if os.path.isfile(target):
        return FileResponse(target)
    return Response(status_code=204)
