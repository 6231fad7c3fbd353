"""
Relocation of accepted candidates out of temporary storage.

Local mode moves the file into `{properties_dir}/{property_id}/` and watermarks
it there. Remote mode (the candidate came from a Firebase or Cloudinary URL)
watermarks the temporary copy and overwrites the remote object; if that fails
the image falls back to local mode so it is never lost.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Literal

from propimage.utils import cloudinary_storage, firebase_storage
from propimage.utils.file_store import PermanentStore
from propimage.watermark import apply_watermark


logger = logging.getLogger(__name__)

StorageType = Literal["server", "firebase", "cloudinary"]


@dataclass(frozen=True)
class Placement:
    image_url: str
    # Relative to the uploads root; None when the bytes live on a remote origin.
    relative_path: str | None
    storage_type: StorageType
    watermarked: bool = False


def with_cache_buster(url: str, ts: int | None = None) -> str:
    v = int(ts if ts is not None else time.time())
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}v={v}"


class RelocationManager:
    def __init__(
        self,
        store: PermanentStore,
        *,
        watermark_enabled: bool = True,
        watermark_text: str = "",
        watermark: Callable[[str, str], bool] = apply_watermark,
    ) -> None:
        self.store = store
        self.watermark_enabled = bool(watermark_enabled and (watermark_text or "").strip())
        self.watermark_text = watermark_text
        self._watermark = watermark

    def _apply_watermark(self, path: str) -> bool:
        if not self.watermark_enabled:
            return False
        ok = self._watermark(path, self.watermark_text)
        if not ok:
            logger.warning("Watermark not applied path=%r", path)
        return ok

    def place_local(self, temp_path: str, *, property_id: int, filename: str, watermark: bool = True) -> Placement:
        """Raises StorageError when the directory or the move fails; temp_path is then left in place."""
        dest = self.store.move_in(temp_path, property_id, filename)
        marked = self._apply_watermark(dest) if watermark else False
        return Placement(
            image_url=self.store.public_url(property_id, filename),
            relative_path=self.store.relative_path(property_id, filename),
            storage_type="server",
            watermarked=marked,
        )

    def place_remote(
        self,
        temp_path: str,
        *,
        property_id: int,
        filename: str,
        source_url: str,
        content_type: str,
    ) -> Placement:
        marked = self._apply_watermark(temp_path)

        if firebase_storage.is_firebase_url(source_url):
            if firebase_storage.reupload(path=temp_path, url=source_url, content_type=content_type):
                return Placement(image_url=with_cache_buster(source_url), relative_path=None, storage_type="firebase", watermarked=marked)
        elif cloudinary_storage.is_cloudinary_url(source_url):
            new_url = cloudinary_storage.reupload(path=temp_path, url=source_url)
            if new_url:
                return Placement(image_url=with_cache_buster(new_url), relative_path=None, storage_type="cloudinary", watermarked=marked)

        logger.warning("Remote re-upload failed, storing locally property_id=%s filename=%s", property_id, filename)
        placement = self.place_local(temp_path, property_id=property_id, filename=filename, watermark=not marked)
        return replace(placement, watermarked=True) if marked else placement
