"""
Firebase Storage helpers: parse download URLs and overwrite the object in place.

Download URLs look like

    https://firebasestorage.googleapis.com/v0/b/<bucket>/o/<percent-encoded object>?alt=media&token=<t>

Re-upload goes through the Cloud Storage JSON API with service-account
credentials (google-auth). The download token is written back into the object
metadata so the original URL keeps working.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qs, quote, unquote, urlparse

from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from propimage.config import firebase_credentials_file, firebase_storage_bucket


logger = logging.getLogger(__name__)

FIREBASE_HOST = "firebasestorage.googleapis.com"
STORAGE_SCOPES = ["https://www.googleapis.com/auth/devstorage.full_control"]
UPLOAD_URL = "https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o"
OBJECT_URL = "https://storage.googleapis.com/storage/v1/b/{bucket}/o/{object}"
UPLOAD_TIMEOUT = (10.0, 60.0)

_PATH_RE = re.compile(r"^/v0/b/([^/]+)/o/(.+)$")


@dataclass(frozen=True)
class FirebaseObject:
    bucket: str
    name: str
    token: str = ""


def parse_firebase_url(url: str) -> FirebaseObject | None:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    if (parsed.hostname or "").lower() != FIREBASE_HOST:
        return None
    m = _PATH_RE.match(parsed.path or "")
    if not m:
        return None
    token = (parse_qs(parsed.query).get("token") or [""])[0]
    return FirebaseObject(bucket=m.group(1), name=unquote(m.group(2)), token=token)


def is_firebase_url(url: str) -> bool:
    return parse_firebase_url(url) is not None


def _session(credentials_file: str) -> AuthorizedSession:
    creds = service_account.Credentials.from_service_account_file(credentials_file, scopes=STORAGE_SCOPES)
    return AuthorizedSession(creds)


def reupload(*, path: str, url: str, content_type: str) -> bool:
    """
    Overwrite the object behind `url` with the bytes at `path`.

    Returns False (and logs) on any failure so the caller can fall back to
    local storage.
    """
    obj = parse_firebase_url(url)
    if obj is None:
        logger.warning("Firebase re-upload skipped: unparseable URL")
        return False
    creds_file = firebase_credentials_file()
    if not creds_file:
        logger.warning("Firebase re-upload skipped: no service account credentials configured")
        return False
    bucket = firebase_storage_bucket() or obj.bucket

    try:
        with open(path, "rb") as f:
            raw = f.read()
        with _session(creds_file) as session:
            resp = session.post(
                UPLOAD_URL.format(bucket=quote(bucket, safe="")),
                params={"uploadType": "media", "name": obj.name},
                data=raw,
                headers={"Content-Type": content_type or "image/jpeg"},
                timeout=UPLOAD_TIMEOUT,
            )
            if not (200 <= resp.status_code < 300):
                logger.warning("Firebase re-upload failed HTTP %s bucket=%s object=%s", resp.status_code, bucket, obj.name)
                return False
            if obj.token:
                meta = session.patch(
                    OBJECT_URL.format(bucket=quote(bucket, safe=""), object=quote(obj.name, safe="")),
                    json={"metadata": {"firebaseStorageDownloadTokens": obj.token}},
                    timeout=UPLOAD_TIMEOUT,
                )
                if not (200 <= meta.status_code < 300):
                    # Object is replaced but the old download URL may no longer resolve.
                    logger.warning("Firebase token restore failed HTTP %s object=%s", meta.status_code, obj.name)
                    return False
    except Exception:
        logger.exception("Firebase re-upload failed bucket=%s object=%s", bucket, obj.name)
        return False
    return True
