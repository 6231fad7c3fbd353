from __future__ import annotations

from PIL import Image

from propimage.watermark import apply_watermark, render_watermark

from conftest import image_bytes


class TestWatermark:
    def test_marks_jpeg_in_place(self, tmp_path):
        path = tmp_path / "a.jpg"
        path.write_bytes(image_bytes("JPEG", (640, 480)))
        before = path.read_bytes()
        assert apply_watermark(str(path), "360coordinates") is True
        after = path.read_bytes()
        assert after != before
        with Image.open(path) as img:
            assert img.format == "JPEG"
            assert img.size == (640, 480)

    def test_keeps_png_format(self, tmp_path):
        path = tmp_path / "a.png"
        path.write_bytes(image_bytes("PNG", (300, 300)))
        assert apply_watermark(str(path), "mark") is True
        with Image.open(path) as img:
            assert img.format == "PNG"

    def test_render_changes_pixels(self):
        src = Image.new("RGB", (400, 300), (0, 0, 0))
        out = render_watermark(src, "mark")
        assert out.size == src.size
        assert out.convert("L").getextrema()[1] > 0

    def test_tiny_image(self, tmp_path):
        path = tmp_path / "tiny.png"
        path.write_bytes(image_bytes("PNG", (8, 8)))
        assert apply_watermark(str(path), "a long watermark text") is True

    def test_not_an_image(self, tmp_path):
        path = tmp_path / "a.jpg"
        path.write_bytes(b"definitely not an image")
        assert apply_watermark(str(path), "mark") is False
        assert path.read_bytes() == b"definitely not an image"

    def test_missing_file(self, tmp_path):
        assert apply_watermark(str(tmp_path / "nope.jpg"), "mark") is False

    def test_empty_text(self, tmp_path):
        path = tmp_path / "a.jpg"
        path.write_bytes(image_bytes())
        assert apply_watermark(str(path), "  ") is False
