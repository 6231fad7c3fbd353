from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import cloudinary.uploader

from propimage.utils.cloudinary_config import configure_cloudinary


logger = logging.getLogger(__name__)

CLOUDINARY_HOST = "res.cloudinary.com"

# /<cloud>/<resource_type>/<type>/[<transformations>/][v<version>/]<public_id>.<ext>
_PATH_RE = re.compile(r"^/(?P<cloud>[^/]+)/image/(?P<type>upload|private|authenticated)/(?P<rest>.+)$")
_VERSION_RE = re.compile(r"^v\d+$")


@dataclass(frozen=True)
class CloudinaryAsset:
    cloud_name: str
    delivery_type: str
    public_id: str


def parse_cloudinary_url(url: str) -> CloudinaryAsset | None:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    if (parsed.hostname or "").lower() != CLOUDINARY_HOST:
        return None
    m = _PATH_RE.match(unquote(parsed.path or ""))
    if not m:
        return None
    parts = m.group("rest").split("/")
    # Drop transformation segments (contain "," or "_" directives) up to the version marker.
    for i, seg in enumerate(parts):
        if _VERSION_RE.match(seg):
            parts = parts[i + 1:]
            break
    else:
        while len(parts) > 1 and ("," in parts[0] or re.match(r"^[a-z]{1,3}_", parts[0])):
            parts = parts[1:]
    public_path = "/".join(parts)
    public_id = public_path.rsplit(".", 1)[0] if "." in parts[-1] else public_path
    if not public_id:
        return None
    return CloudinaryAsset(cloud_name=m.group("cloud"), delivery_type=m.group("type"), public_id=public_id)


def is_cloudinary_url(url: str) -> bool:
    return parse_cloudinary_url(url) is not None


def reupload(*, path: str, url: str) -> str:
    """
    Overwrite the asset behind `url` with the file at `path`.

    Returns the new secure URL, or "" on any failure.
    """
    asset = parse_cloudinary_url(url)
    if asset is None:
        logger.warning("Cloudinary re-upload skipped: unparseable URL")
        return ""
    if not configure_cloudinary():
        logger.warning("Cloudinary re-upload skipped: credentials not configured")
        return ""
    try:
        res = cloudinary.uploader.upload(
            path,
            resource_type="image",
            public_id=asset.public_id,
            type=asset.delivery_type,
            overwrite=True,
            invalidate=True,
        )
    except Exception:
        logger.exception("Cloudinary re-upload failed public_id=%s", asset.public_id)
        return ""
    return str(res.get("secure_url") or "").strip()
