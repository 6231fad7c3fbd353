from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propimage.models import Property, PropertyImage
from propimage.moderation import ModerationDecision
from propimage.relocation import Placement
from propimage.vision import ClassificationResult


logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


def record_image(
    db: Session,
    *,
    property_id: int,
    placement: Placement,
    filename: str,
    original_filename: str,
    file_size: int,
    mime_type: str,
    decision: ModerationDecision,
    result: ClassificationResult | None,
) -> PropertyImage:
    """
    Insert the image row (flushed, so `id` is set) and try to make it the cover image.

    Raises SQLAlchemyError when the insert fails; the cover update never does.
    """
    row = PropertyImage(
        property_id=int(property_id),
        image_url=placement.image_url,
        file_name=filename,
        file_path=placement.relative_path,
        original_filename=(original_filename or "")[:255],
        file_size=int(file_size),
        mime_type=mime_type or "image/jpeg",
        moderation_status=decision.status,
        moderation_reason=decision.reason_message,
        moderation_reason_code=decision.reason_code,
        apis_used=_dumps(result.apis_used if result is not None else []),
        confidence_scores=_dumps(result.safety.as_dict() if result is not None and result.available else {}),
        api_response=_dumps(result.raw if result is not None else {}),
        checked_at=dt.datetime.now(dt.timezone.utc),
    )
    db.add(row)
    db.flush()

    set_cover_image_if_missing(db, property_id=property_id, image_url=placement.image_url)
    return row


def set_cover_image_if_missing(db: Session, *, property_id: int, image_url: str) -> bool:
    """Best-effort; a failure rolls back only its own savepoint."""
    try:
        with db.begin_nested():
            res = db.execute(
                update(Property)
                .where(Property.id == int(property_id))
                .where((Property.cover_image == "") | (Property.cover_image.is_(None)))
                .values(cover_image=image_url)
            )
        return bool(res.rowcount)
    except SQLAlchemyError:
        logger.warning("Cover image update failed property_id=%s", property_id, exc_info=True)
        return False
