from __future__ import annotations

import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from .logging import get_logger


def random_name() -> str:
    return uuid4().hex


def random_filename(extension: str = "") -> str:
    extension = extension.lstrip(".")
    return f"{random_name()}.{extension}" if extension else random_name()


def rename_in_directory(path: Path, new_name: str) -> Path:
    target = path.with_name(new_name)
    path.replace(target)
    return target


@contextmanager
def working_directory(root: Path) -> Iterator[Path]:
    """Create a randomly named directory under ``root`` and remove it on exit."""
    logger = get_logger(component="working_directory")
    directory = Path(root) / random_name()
    directory.mkdir(parents=True, exist_ok=False)
    logger.debug("working_directory_created", path=str(directory))
    try:
        yield directory
    finally:
        shutil.rmtree(directory, ignore_errors=True)
        logger.debug("working_directory_released", path=str(directory))


__all__ = ["random_name", "random_filename", "rename_in_directory", "working_directory"]
