from __future__ import annotations

from pathlib import Path

import pytest

from mediaforge.conversions.models import MediaDescriptor
from mediaforge.core.config import get_settings
from mediaforge.core.storage import LocalStorage, get_storage


@pytest.fixture()
def media() -> MediaDescriptor:
    return MediaDescriptor.for_file("media-7", "report.pdf")


def test_copy_original_into_working_directory(tmp_path: Path, media):
    storage = LocalStorage(tmp_path / "library")
    upload = tmp_path / "report.pdf"
    upload.write_bytes(b"%PDF-1.4 original")
    storage.add_original(upload, media)

    copied = storage.copy_from_library(media, tmp_path / "work" / "report.pdf")

    assert copied.read_bytes() == b"%PDF-1.4 original"
    assert storage.original_path(media) == (tmp_path / "library" / "media-7" / "report.pdf").resolve()


def test_missing_original_raises(tmp_path: Path, media):
    storage = LocalStorage(tmp_path / "library")
    with pytest.raises(FileNotFoundError):
        storage.copy_from_library(media, tmp_path / "work" / "report.pdf")


def test_copy_to_library_overwrites_by_default(tmp_path: Path, media):
    storage = LocalStorage(tmp_path / "library")
    derived = tmp_path / "thumb.jpg"

    derived.write_bytes(b"first")
    storage.copy_to_library(derived, media)
    derived.write_bytes(b"second")
    stored = storage.copy_to_library(derived, media)

    assert stored == storage.conversions_directory(media) / "thumb.jpg"
    assert stored.read_bytes() == b"second"


def test_copy_to_library_can_refuse_overwrite(tmp_path: Path, media):
    storage = LocalStorage(tmp_path / "library")
    derived = tmp_path / "abc123.pdf"
    derived.write_bytes(b"%PDF")
    storage.copy_to_library(derived, media, name="thumb.pdf")

    with pytest.raises(FileExistsError):
        storage.copy_to_library(derived, media, name="thumb.pdf", overwrite=False)


def test_settings_select_local_storage():
    storage = get_storage(get_settings())
    assert isinstance(storage, LocalStorage)
    assert storage.base_path == get_settings().library_root
