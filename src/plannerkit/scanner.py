"""Recursive source tree walking with extension-based file classification."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator

from .errors import SourceTreeError


class FileKind(str, Enum):
    """Classification applied to every file found in a source tree."""

    IMAGE = "image"
    SCRIPT = "script"
    ARCHIVE = "archive"
    PARTIAL_ARCHIVE = "partial-archive"
    DATA = "data"
    TEXTURE = "texture"
    OTHER = "other"


IMAGE_EXTENSIONS = frozenset({".png", ".jpg"})
SCRIPT_EXTENSIONS = frozenset({".lua"})
ARCHIVE_EXTENSIONS = frozenset({".zip"})
TEXTURE_SUFFIX = ".dds.zst"

# Kinds listed in the catalog and shipped as zero-byte placeholders.
CATALOGUED_KINDS = frozenset({FileKind.IMAGE, FileKind.TEXTURE})

# Kinds whose full byte content is shipped inside the bundle.
CONTENT_KINDS = frozenset(
    {FileKind.SCRIPT, FileKind.ARCHIVE, FileKind.PARTIAL_ARCHIVE, FileKind.DATA}
)


@dataclass(frozen=True)
class ScanEntry:
    """A single regular file discovered during a walk."""

    path: Path
    relative_path: str
    kind: FileKind


def classify(relative_path: str) -> FileKind:
    """Return the :class:`FileKind` for ``relative_path`` based on its extension."""

    if relative_path.lower().endswith(TEXTURE_SUFFIX):
        return FileKind.TEXTURE
    suffix = os.path.splitext(relative_path)[1].lower()
    if suffix in IMAGE_EXTENSIONS:
        return FileKind.IMAGE
    if suffix in SCRIPT_EXTENSIONS:
        return FileKind.SCRIPT
    if suffix in ARCHIVE_EXTENSIONS:
        return FileKind.ARCHIVE
    if suffix.startswith(".part"):
        return FileKind.PARTIAL_ARCHIVE
    if suffix.startswith(".json"):
        return FileKind.DATA
    return FileKind.OTHER


def is_excluded(relative_path: str, excluded: tuple[str, ...]) -> bool:
    """Return ``True`` when ``relative_path`` starts with one of ``excluded``.

    Matching is on the raw path prefix, so ``Export`` also covers siblings such
    as ``ExportData/`` and ``ExportTools.lua``.
    """

    return any(relative_path.startswith(prefix) for prefix in excluded)


def iter_tree(base: Path) -> Iterator[ScanEntry]:
    """Yield every regular file under ``base`` depth-first.

    Entries within a directory are visited in name order so repeated walks of an
    unmodified tree, including a fresh checkout of the same tag, produce the
    same sequence. When ``base`` is itself a file it is yielded on its own.
    Each call starts a new walk.

    Raises:
        SourceTreeError: If ``base`` does not exist.
    """

    base_path = Path(base)
    if not base_path.exists():
        raise SourceTreeError(
            f"Source tree '{base_path}' does not exist.", path=base_path
        )

    if base_path.is_file():
        yield ScanEntry(
            path=base_path.resolve(),
            relative_path=base_path.name,
            kind=classify(base_path.name),
        )
        return

    yield from _walk(base_path.resolve(), base_path.resolve())


def _walk(directory: Path, base: Path) -> Iterator[ScanEntry]:
    with os.scandir(directory) as iterator:
        children = sorted(iterator, key=lambda child: child.name)

    for child in children:
        child_path = Path(child.path)
        if child.is_dir():
            yield from _walk(child_path, base)
        elif child.is_file():
            relative = child_path.relative_to(base).as_posix()
            yield ScanEntry(
                path=child_path,
                relative_path=relative,
                kind=classify(relative),
            )


__all__ = [
    "ARCHIVE_EXTENSIONS",
    "CATALOGUED_KINDS",
    "CONTENT_KINDS",
    "FileKind",
    "IMAGE_EXTENSIONS",
    "SCRIPT_EXTENSIONS",
    "TEXTURE_SUFFIX",
    "ScanEntry",
    "classify",
    "is_excluded",
    "iter_tree",
]
