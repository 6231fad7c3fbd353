"""
Visible watermark for accepted listing photos.

A few rotated copies of the text are spread across the image plus one upright
copy in the bottom-right corner. The file is rewritten in place in its own
format. `apply_watermark()` reports failure with False and never raises; a
missing watermark is not a reason to lose an approved upload.
"""

from __future__ import annotations

import logging
import os

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

try:
    import pillow_heif
    pillow_heif.register_heif_opener()
except Exception:
    pass


logger = logging.getLogger(__name__)

ANGLE_DEGREES = 30
OPACITY = 110  # 0..255
# (x, y) centers as fractions of the usable area (10% margins).
DIAGONAL_POSITIONS = ((0.2, 0.3), (0.5, 0.3), (0.8, 0.3), (0.2, 0.7), (0.5, 0.7))
SAVE_FORMATS = {"JPEG": {"quality": 90}, "PNG": {"optimize": True}, "WEBP": {"quality": 90}}


def _font(size: int):
    return ImageFont.load_default(size=size)


def _text_tile(text: str, font, fill: tuple[int, int, int, int]) -> Image.Image:
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    left, top, right, bottom = probe.textbbox((0, 0), text, font=font)
    tile = Image.new("RGBA", (max(1, right - left + 4), max(1, bottom - top + 4)), (0, 0, 0, 0))
    ImageDraw.Draw(tile).text((2 - left, 2 - top), text, font=font, fill=fill)
    return tile


def _fit(tile: Image.Image, width: int, height: int) -> Image.Image:
    if tile.width <= width and tile.height <= height:
        return tile
    return tile.crop((0, 0, min(tile.width, width), min(tile.height, height)))


def render_watermark(img: Image.Image, text: str) -> Image.Image:
    """Return an RGBA copy of `img` with the watermark composited on top."""
    base = img.convert("RGBA")
    width, height = base.size
    scale = max(1, min(2, min(width, height) // 280))
    font = _font(16 * scale)
    fill = (255, 255, 255, OPACITY)

    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    diagonal = _fit(_text_tile(text, font, fill).rotate(ANGLE_DEGREES, expand=True), width, height)
    margin_x, margin_y = width * 0.1, height * 0.1
    for fx, fy in DIAGONAL_POSITIONS:
        cx = margin_x + fx * (width - 2 * margin_x)
        cy = margin_y + fy * (height - 2 * margin_y)
        x = int(max(0, min(cx - diagonal.width / 2, width - diagonal.width)))
        y = int(max(0, min(cy - diagonal.height / 2, height - diagonal.height)))
        overlay.alpha_composite(diagonal, (x, y))

    corner = _fit(_text_tile(text, font, (255, 255, 255, min(255, OPACITY + 60))), width, height)
    pad = 10 * scale
    overlay.alpha_composite(corner, (max(0, width - corner.width - pad), max(0, height - corner.height - pad)))

    return Image.alpha_composite(base, overlay)


def apply_watermark(path: str, text: str) -> bool:
    """Watermark the image at `path` in place. Returns True on success."""
    text = (text or "").strip()
    if not text:
        return False
    if not os.path.isfile(path):
        logger.warning("Watermark skipped, file not found path=%r", path)
        return False
    try:
        with Image.open(path) as src:
            fmt = (src.format or "").upper()
            if fmt not in SAVE_FORMATS:
                logger.warning("Watermark skipped, unsupported format=%s path=%r", fmt or "unknown", path)
                return False
            src = ImageOps.exif_transpose(src)
            marked = render_watermark(src, text)
        if fmt == "JPEG":
            marked = marked.convert("RGB")
        marked.save(path, format=fmt, **SAVE_FORMATS[fmt])
        return True
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Watermark failed path=%r: %s", path, exc)
        return False
