"""Image catalog construction and manifest stamping."""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

import zstandard
from PIL import Image, UnidentifiedImageError

from .errors import SourceTreeError
from .scanner import CATALOGUED_KINDS, FileKind, ScanEntry, is_excluded, iter_tree

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES: tuple[str, ...] = ("Export",)

MANIFEST_PLATFORM = "win32"
MANIFEST_BRANCH = "master"

_VERSION_DECLARATION = re.compile(rb'<Version number="([0-9.]+)" />')

_DDS_MAGIC = b"DDS "
_DDS_HEADER_SIZE = 128


@dataclass(frozen=True)
class CatalogRecord:
    """Pixel dimensions of one image, addressed by its path relative to the tree."""

    relative_path: str
    width: int
    height: int

    def to_line(self) -> str:
        return f"{self.relative_path}\t{self.width}\t{self.height}\n"


def probe_image_size(path: Path) -> tuple[int, int]:
    """Return ``(width, height)`` of the image at ``path``.

    Pillow parses the header on open and defers pixel decoding, so only the
    leading bytes of the file are read.
    """

    try:
        with Image.open(path) as image:
            width, height = image.size
    except (OSError, UnidentifiedImageError) as exc:
        raise SourceTreeError(
            f"Unable to read image dimensions from '{path}': {exc}", path=path
        ) from exc
    return int(width), int(height)


def probe_texture_size(path: Path) -> tuple[int, int]:
    """Return ``(width, height)`` of the zstd-compressed DDS texture at ``path``.

    Only the fixed 128-byte DDS header is decompressed; height and width are
    the little-endian words at offsets 12 and 16.
    """

    try:
        with open(path, "rb") as compressed:
            reader = zstandard.ZstdDecompressor().stream_reader(compressed)
            with reader:
                header = _read_exactly(reader, _DDS_HEADER_SIZE)
    except (OSError, zstandard.ZstdError) as exc:
        raise SourceTreeError(
            f"Unable to decompress texture '{path}': {exc}", path=path
        ) from exc

    if len(header) < _DDS_HEADER_SIZE or not header.startswith(_DDS_MAGIC):
        raise SourceTreeError(f"'{path}' does not hold a DDS texture.", path=path)
    height, width = struct.unpack_from("<II", header, 12)
    return int(width), int(height)


def _read_exactly(stream: Any, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def catalog_record(entry: ScanEntry) -> CatalogRecord:
    """Probe ``entry`` and return its :class:`CatalogRecord`."""

    if entry.kind is FileKind.TEXTURE:
        width, height = probe_texture_size(entry.path)
    else:
        width, height = probe_image_size(entry.path)
    return CatalogRecord(relative_path=entry.relative_path, width=width, height=height)


def iter_catalog(
    entries: Iterable[ScanEntry],
    *,
    excluded: tuple[str, ...] = EXCLUDED_PREFIXES,
) -> Iterator[CatalogRecord]:
    """Yield a record for each image and texture in ``entries`` in scan order."""

    for entry in entries:
        if entry.kind not in CATALOGUED_KINDS:
            continue
        if is_excluded(entry.relative_path, excluded):
            continue
        yield catalog_record(entry)


def build_catalog(
    root: Path, *, excluded: tuple[str, ...] = EXCLUDED_PREFIXES
) -> list[CatalogRecord]:
    """Walk ``root`` and return the catalog of every image and texture outside ``excluded``."""

    return list(iter_catalog(iter_tree(root), excluded=excluded))


def format_catalog(records: Sequence[CatalogRecord]) -> bytes:
    """Serialise ``records`` as tab-separated, newline-terminated UTF-8 text."""

    return "".join(record.to_line() for record in records).encode("utf-8")


def parse_catalog(payload: bytes | str) -> list[CatalogRecord]:
    """Parse catalog text produced by :func:`format_catalog`."""

    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    records: list[CatalogRecord] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) != 3:
            raise ValueError(
                f"Catalog line {line_number} must have 3 tab-separated fields."
            )
        relative_path, width, height = parts
        try:
            records.append(
                CatalogRecord(
                    relative_path=relative_path, width=int(width), height=int(height)
                )
            )
        except ValueError as exc:
            raise ValueError(
                f"Catalog line {line_number} has non-integer dimensions."
            ) from exc
    return records


def stamp_manifest(
    document: bytes,
    *,
    platform: str = MANIFEST_PLATFORM,
    branch: str = MANIFEST_BRANCH,
) -> bytes:
    """Add ``platform`` and ``branch`` attributes to the manifest version declaration.

    Only the first ``<Version number="..." />`` declaration is replaced. Input
    without such a declaration is returned unchanged.
    """

    replacement = (
        b'<Version number="\\1" platform="'
        + platform.encode("utf-8")
        + b'" branch="'
        + branch.encode("utf-8")
        + b'" />'
    )
    stamped, count = _VERSION_DECLARATION.subn(replacement, document, count=1)
    if count == 0:
        logger.warning("Manifest has no version declaration; left unstamped.")
    return stamped


def read_stamped_manifest(path: Path) -> bytes:
    """Read the manifest at ``path`` and return it stamped."""

    return stamp_manifest(read_required(path))


def read_required(path: Path) -> bytes:
    """Return the bytes at ``path`` or raise :class:`SourceTreeError`."""

    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise SourceTreeError(
            f"Required file '{path}' could not be read: {exc}", path=path
        ) from exc


__all__ = [
    "CatalogRecord",
    "EXCLUDED_PREFIXES",
    "MANIFEST_BRANCH",
    "MANIFEST_PLATFORM",
    "build_catalog",
    "catalog_record",
    "format_catalog",
    "iter_catalog",
    "parse_catalog",
    "probe_image_size",
    "probe_texture_size",
    "read_required",
    "read_stamped_manifest",
    "stamp_manifest",
]
