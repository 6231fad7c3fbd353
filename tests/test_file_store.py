from __future__ import annotations

import errno
import os
import re
from unittest.mock import patch

import pytest

from propimage.errors import StorageError
from propimage.utils.file_store import (
    PermanentStore,
    TemporaryStore,
    generate_filename,
    safe_upload_ext,
    sniff_content_type,
)

from conftest import image_bytes


class TestFilenames:
    def test_generated_name_shape(self):
        name = generate_filename(original_filename="Living Room.PNG", content_type="image/png")
        assert re.fullmatch(r"img_\d+_[0-9a-f]{16}\.png", name)

    def test_names_are_unique(self):
        names = {generate_filename(original_filename="a.jpg", content_type="") for _ in range(50)}
        assert len(names) == 50

    @pytest.mark.parametrize(
        "filename,content_type,expected",
        [
            ("photo.JPEG", "", ".jpeg"),
            ("no_extension", "image/webp", ".webp"),
            ("weird.ext!", "image/png", ".png"),
            ("", "application/octet-stream", ".jpg"),
        ],
    )
    def test_safe_upload_ext(self, filename, content_type, expected):
        assert safe_upload_ext(filename=filename, content_type=content_type) == expected


class TestSniffContentType:
    def test_declared_type_wins(self):
        assert sniff_content_type(raw=b"", filename="a.png", declared="image/webp") == "image/webp"

    def test_guess_from_filename(self):
        assert sniff_content_type(raw=b"", filename="a.png", declared="application/octet-stream") == "image/png"

    def test_sniff_bytes(self):
        assert sniff_content_type(raw=image_bytes("PNG"), filename="blob", declared="") == "image/png"

    def test_unreadable_bytes_fall_back_to_jpeg(self):
        assert sniff_content_type(raw=b"not an image", filename="blob", declared="") == "image/jpeg"


class TestTemporaryStore:
    def test_creates_directory_and_cleans_up(self, tmp_path):
        store = TemporaryStore(str(tmp_path / "temp" / "nested"))
        with store.candidate("img_1.jpg", b"abc") as path:
            assert os.path.isfile(path)
            assert store.read(path) == b"abc"
        assert not os.path.exists(path)

    def test_cleans_up_on_error(self, tmp_path):
        store = TemporaryStore(str(tmp_path / "temp"))
        with pytest.raises(RuntimeError):
            with store.candidate("img_2.jpg", b"abc") as path:
                raise RuntimeError("boom")
        assert os.listdir(tmp_path / "temp") == []

    def test_cleanup_tolerates_file_already_moved(self, tmp_path):
        store = TemporaryStore(str(tmp_path / "temp"))
        with store.candidate("img_3.jpg", b"abc") as path:
            os.rename(path, tmp_path / "moved.jpg")
        assert (tmp_path / "moved.jpg").exists()

    def test_filename_cannot_escape_root(self, tmp_path):
        store = TemporaryStore(str(tmp_path / "temp"))
        assert store.path_for("../../etc/passwd") == os.path.join(str(tmp_path / "temp"), "passwd")

    def test_unconfigured_root(self):
        with pytest.raises(StorageError) as exc:
            TemporaryStore("")
        assert exc.value.error_code == "config_missing"

    def test_directory_failure_is_directory_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StorageError) as exc:
            TemporaryStore(str(blocker / "temp")).write("a.jpg", b"x")
        assert exc.value.error_code == "directory_error"


class TestPermanentStore:
    def _src(self, tmp_path, data: bytes = b"image-bytes") -> str:
        src = tmp_path / "temp.jpg"
        src.write_bytes(data)
        return str(src)

    def test_move_into_listing_directory(self, tmp_path):
        store = PermanentStore(str(tmp_path / "properties"), "https://cdn.example.com/uploads/")
        src = self._src(tmp_path)
        dest = store.move_in(src, 42, "img_1_ab.jpg")
        assert dest == os.path.join(str(tmp_path / "properties"), "42", "img_1_ab.jpg")
        assert not os.path.exists(src)
        assert open(dest, "rb").read() == b"image-bytes"
        assert store.relative_path(42, "img_1_ab.jpg") == "properties/42/img_1_ab.jpg"
        assert store.public_url(42, "img_1_ab.jpg") == "https://cdn.example.com/uploads/properties/42/img_1_ab.jpg"

    def test_cross_device_falls_back_to_copy(self, tmp_path):
        store = PermanentStore(str(tmp_path / "properties"), "http://x/uploads")
        src = self._src(tmp_path)
        with patch("propimage.utils.file_store.os.rename", side_effect=OSError(errno.EXDEV, "Invalid cross-device link")):
            dest = store.move_in(src, 7, "img.jpg")
        assert os.path.isfile(dest)
        assert not os.path.exists(src)

    def test_failed_copy_leaves_source_and_no_destination(self, tmp_path):
        store = PermanentStore(str(tmp_path / "properties"), "http://x/uploads")
        src = self._src(tmp_path)
        with patch("propimage.utils.file_store.os.rename", side_effect=OSError(errno.EXDEV, "xdev")), patch(
            "propimage.utils.file_store.shutil.copyfile", side_effect=OSError(errno.ENOSPC, "No space left on device")
        ):
            with pytest.raises(StorageError):
                store.move_in(src, 7, "img.jpg")
        assert os.path.exists(src)
        assert not os.path.exists(store.final_path(7, "img.jpg"))

    def test_existing_directory_is_reused(self, tmp_path):
        store = PermanentStore(str(tmp_path / "properties"), "http://x/uploads")
        os.makedirs(store.listing_dir(3))
        store.move_in(self._src(tmp_path), 3, "a.jpg")
        assert os.listdir(store.listing_dir(3)) == ["a.jpg"]
