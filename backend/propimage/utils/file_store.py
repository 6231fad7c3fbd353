from __future__ import annotations

import errno
import logging
import mimetypes
import os
import re
import secrets
import shutil
import time
from contextlib import contextmanager
from io import BytesIO
from typing import Iterator

from PIL import Image, UnidentifiedImageError

try:
    import pillow_heif
    pillow_heif.register_heif_opener()
except Exception:
    pass

from propimage.errors import StorageError


logger = logging.getLogger(__name__)

DIR_MODE = 0o755

_PIL_FORMAT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "HEIF": "image/heic",
}


def safe_upload_ext(*, filename: str, content_type: str) -> str:
    fn = (filename or "").strip()
    ext = os.path.splitext(fn)[1].lower()
    if ext and len(ext) <= 12 and re.match(r"^\.[a-z0-9]+$", ext):
        return ext
    ct = (content_type or "").lower().strip()
    if ct in {"image/jpeg", "image/jpg"}:
        return ".jpg"
    if ct == "image/png":
        return ".png"
    if ct == "image/webp":
        return ".webp"
    if ct == "image/gif":
        return ".gif"
    return ".jpg"


def generate_filename(*, original_filename: str, content_type: str) -> str:
    """img_{unix_ts}_{random}.{ext}; unique per request so concurrent uploads never collide."""
    ext = safe_upload_ext(filename=original_filename, content_type=content_type)
    return f"img_{int(time.time())}_{secrets.token_hex(8)}{ext}"


def sniff_content_type(*, raw: bytes, filename: str, declared: str) -> str:
    """
    Best-effort media type for metadata only.

    Order: declared type, guess from filename, Pillow sniffing, image/jpeg.
    Unreadable bytes are not an error here; the classifier gets to judge them.
    """
    ct = (declared or "").lower().strip()
    if ct and ct != "application/octet-stream":
        return ct
    guessed = (mimetypes.guess_type(filename or "")[0] or "").lower().strip()
    if guessed:
        return guessed
    try:
        with Image.open(BytesIO(raw)) as img:
            fmt = (img.format or "").upper()
        if fmt in _PIL_FORMAT_TYPES:
            return _PIL_FORMAT_TYPES[fmt]
    except (UnidentifiedImageError, OSError, ValueError):
        pass
    return "image/jpeg"


def ensure_dir(path: str) -> str:
    # exist_ok makes concurrent creators harmless.
    try:
        os.makedirs(path, mode=DIR_MODE, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"Failed to create directory: {exc.strerror or exc}", path=path, error_code="directory_error") from exc
    if not os.path.isdir(path):
        raise StorageError("Upload path exists but is not a directory", path=path, error_code="directory_error")
    return path


def delete_file(path: str | None) -> bool:
    """Delete if present. Returns False only when the file exists and could not be removed."""
    if not path:
        return True
    try:
        os.unlink(path)
    except FileNotFoundError:
        return True
    except OSError:
        logger.warning("Failed to delete file path=%r", path)
        return False
    return True


class TemporaryStore:
    """Holds candidates until a moderation decision is reached."""

    def __init__(self, root: str) -> None:
        if not (root or "").strip():
            raise StorageError("Temporary upload directory is not configured", error_code="config_missing")
        self.root = root

    def path_for(self, filename: str) -> str:
        return os.path.join(self.root, os.path.basename(filename))

    def write(self, filename: str, raw: bytes) -> str:
        ensure_dir(self.root)
        path = self.path_for(filename)
        try:
            with open(path, "wb") as out:
                out.write(raw)
        except OSError as exc:
            delete_file(path)
            raise StorageError(f"Failed to save uploaded file: {exc.strerror or exc}", path=path) from exc
        return path

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    @contextmanager
    def candidate(self, filename: str, raw: bytes) -> Iterator[str]:
        """Write the candidate and remove it again on every exit path."""
        path = self.write(filename, raw)
        try:
            yield path
        finally:
            delete_file(path)


class PermanentStore:
    """Per-listing storage: {root}/{property_id}/{filename}, served at {base_url}/properties/..."""

    def __init__(self, root: str, base_url: str) -> None:
        if not (root or "").strip():
            raise StorageError("Permanent upload directory is not configured", error_code="config_missing")
        self.root = root
        self.base_url = (base_url or "").rstrip("/")

    def listing_dir(self, property_id: int) -> str:
        return os.path.join(self.root, str(int(property_id)))

    def final_path(self, property_id: int, filename: str) -> str:
        return os.path.join(self.listing_dir(property_id), os.path.basename(filename))

    def relative_path(self, property_id: int, filename: str) -> str:
        return f"properties/{int(property_id)}/{os.path.basename(filename)}"

    def public_url(self, property_id: int, filename: str) -> str:
        return f"{self.base_url}/{self.relative_path(property_id, filename)}"

    def move_in(self, src: str, property_id: int, filename: str) -> str:
        """
        Move `src` into the listing directory.

        rename() first; across devices fall back to copy-then-delete. On failure the
        source is left untouched and no partial destination remains.
        """
        ensure_dir(self.listing_dir(property_id))
        dest = self.final_path(property_id, filename)
        try:
            os.rename(src, dest)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                logger.info("rename failed (%s), falling back to copy src=%r dest=%r", exc.strerror, src, dest)
            self._copy(src, dest)
            delete_file(src)
        if not os.path.exists(dest):
            raise StorageError("Image file was not saved correctly", path=dest)
        return dest

    def _copy(self, src: str, dest: str) -> None:
        try:
            shutil.copyfile(src, dest)
        except OSError as exc:
            delete_file(dest)
            raise StorageError(f"Failed to save image file: {exc.strerror or exc}", path=dest) from exc
