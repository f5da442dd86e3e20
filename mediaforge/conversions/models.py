from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

__all__ = [
    "MediaType",
    "MediaDescriptor",
    "Manipulation",
    "ConversionDefinition",
    "ConversionSet",
]

Manipulation = Mapping[str, Any]

_EXTENSION_TYPES: dict[str, str] = {
    **{ext: "image" for ext in ("jpg", "jpeg", "png", "gif", "bmp", "webp", "tif", "tiff")},
    "pdf": "pdf",
    **{ext: "word" for ext in ("doc", "docx", "odt", "rtf")},
    **{ext: "ppt" for ext in ("ppt", "pptx", "odp")},
    **{ext: "video" for ext in ("mp4", "mov", "avi", "mkv", "webm", "wmv", "flv", "m4v")},
    **{ext: "audio" for ext in ("mp3", "wav", "aac", "m4a", "ogg", "flac", "wma")},
}

_REENCODED_EXTENSIONS: dict[str, str] = {"gif": "png"}


class MediaType(str, enum.Enum):
    image = "image"
    pdf = "pdf"
    word = "word"
    ppt = "ppt"
    video = "video"
    audio = "audio"
    other = "other"

    @classmethod
    def from_extension(cls, extension: str) -> "MediaType":
        """Classify a file extension, falling back to ``other``."""
        return cls(_EXTENSION_TYPES.get(extension.lower().lstrip("."), "other"))

    @property
    def needs_rasterizer(self) -> bool:
        return self in {MediaType.pdf, MediaType.word, MediaType.ppt}


@dataclass(frozen=True, slots=True)
class MediaDescriptor:
    """Facts about one media item that the pipeline reads."""

    id: str
    type: MediaType
    extension: str
    collection_name: str = "default"
    file_name: str = ""

    @classmethod
    def for_file(cls, media_id: str, file_name: str, *, collection_name: str = "default") -> "MediaDescriptor":
        extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
        return cls(
            id=media_id,
            type=MediaType.from_extension(extension),
            extension=extension,
            collection_name=collection_name,
            file_name=file_name,
        )

    @property
    def original_name(self) -> str:
        return self.file_name or f"{self.id}.{self.extension}"


@dataclass(frozen=True, slots=True)
class ConversionDefinition:
    """A declared derived output and the manipulations that produce it."""

    name: str
    manipulations: tuple[Manipulation, ...] = field(default_factory=tuple)
    queued: bool = True
    collections: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("conversion name must not be empty")
        # Normalise list input so definitions stay immutable and picklable.
        object.__setattr__(self, "manipulations", tuple(dict(m) for m in self.manipulations))
        object.__setattr__(self, "collections", tuple(self.collections))

    def applies_to(self, collection_name: str) -> bool:
        if not self.collections or "*" in self.collections:
            return True
        return collection_name in self.collections

    def result_extension(self, source_extension: str = "") -> str:
        for manipulation in reversed(self.manipulations):
            fmt = manipulation.get("fm")
            if fmt:
                return "jpg" if fmt == "pjpg" else str(fmt)
        if not self.manipulations:
            return source_extension
        # Sources OpenCV can read but not write are re-encoded by the transformer.
        return _REENCODED_EXTENSIONS.get(source_extension.lower(), source_extension)


@dataclass(frozen=True, slots=True)
class ConversionSet:
    """Definitions applicable to one collection, split by execution mode."""

    nonqueued: tuple[ConversionDefinition, ...] = ()
    queued: tuple[ConversionDefinition, ...] = ()

    @classmethod
    def partition(cls, definitions: Iterable[ConversionDefinition]) -> "ConversionSet":
        nonqueued: list[ConversionDefinition] = []
        queued: list[ConversionDefinition] = []
        for definition in definitions:
            (queued if definition.queued else nonqueued).append(definition)
        return cls(nonqueued=tuple(nonqueued), queued=tuple(queued))

    def __len__(self) -> int:
        return len(self.nonqueued) + len(self.queued)
