from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from mediaforge.conversions.models import MediaDescriptor

from .config import Settings


class Storage(ABC):
    @abstractmethod
    def copy_from_library(self, media: MediaDescriptor, destination: Path) -> Path: ...

    @abstractmethod
    def copy_to_library(
        self,
        local_path: Path,
        media: MediaDescriptor,
        *,
        overwrite: bool = True,
        name: str | None = None,
    ) -> Path: ...


class LocalStorage(Storage):
    """Filesystem-backed media library.

    Originals live at ``<base>/<media id>/<file name>`` and derived files at
    ``<base>/<media id>/conversions/<name>``.
    """

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def media_directory(self, media: MediaDescriptor) -> Path:
        return (self.base_path / media.id).resolve()

    def original_path(self, media: MediaDescriptor) -> Path:
        return self.media_directory(media) / media.original_name

    def conversions_directory(self, media: MediaDescriptor) -> Path:
        return self.media_directory(media) / "conversions"

    def add_original(self, source: Path, media: MediaDescriptor) -> Path:
        target = self.original_path(media)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return target

    def copy_from_library(self, media: MediaDescriptor, destination: Path) -> Path:
        source = self.original_path(media)
        if not source.exists():
            raise FileNotFoundError(str(source))
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        return destination

    def copy_to_library(
        self,
        local_path: Path,
        media: MediaDescriptor,
        *,
        overwrite: bool = True,
        name: str | None = None,
    ) -> Path:
        target = self.conversions_directory(media) / (name or local_path.name)
        if target.exists() and not overwrite:
            raise FileExistsError(str(target))
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local_path, target)
        return target


def get_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "local":
        return LocalStorage(base_path=Path(settings.library_root))
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "Storage",
    "LocalStorage",
    "get_storage",
]
