"""Packaging of a planner source checkout into the distributable ``root.zip``."""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path

from .catalog import (
    EXCLUDED_PREFIXES,
    CatalogRecord,
    catalog_record,
    format_catalog,
    parse_catalog,
    read_required,
    read_stamped_manifest,
)
from .errors import SourceTreeError
from .scanner import (
    CATALOGUED_KINDS,
    CONTENT_KINDS,
    FileKind,
    ScanEntry,
    is_excluded,
    iter_tree,
)

logger = logging.getLogger(__name__)

BUNDLE_NAME = "root.zip"
CATALOG_ENTRY = ".image.tsv"
MANIFEST_ENTRY = "manifest.xml"
INSTALLED_ENTRY = "installed.cfg"
RUNTIME_PREFIX = "lua/"
METADATA_FILES: tuple[str, ...] = ("changelog.txt", "help.txt", "LICENSE.md")
STAGING_DIR = "vfs"
STAGING_CATALOG = "vfs.tsv"

# The engine resolves this directory name case-sensitively in lower case.
STAT_DESCRIPTIONS_DIR = b"Specific_Skill_Stat_Descriptions"
STAT_DESCRIBER_SCRIPT = "StatDescriber.lua"

# Fixed entry timestamp so identical inputs produce identical archives.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o100644 << 16
_DIR_MODE = (0o040755 << 16) | 0x10


@dataclass(frozen=True)
class CheckoutLayout:
    """Locations of the inputs inside a source checkout."""

    root: Path

    @property
    def source_root(self) -> Path:
        return self.root / "src"

    @property
    def runtime_root(self) -> Path:
        return self.root / "runtime" / "lua"

    @property
    def manifest(self) -> Path:
        return self.root / MANIFEST_ENTRY


@dataclass(frozen=True)
class BundleResult:
    """Outcome of packaging a checkout."""

    archive_path: Path
    catalog: list[CatalogRecord]
    entries: list[str]
    mirror_root: Path | None

    @property
    def catalog_bytes(self) -> bytes:
        return format_catalog(self.catalog)


class _ArchiveWriter:
    """Append entries to a zip archive with fixed metadata and unique names."""

    def __init__(self, archive: zipfile.ZipFile) -> None:
        self._archive = archive
        self.names: list[str] = []
        self._seen: set[str] = set()

    def add_file(self, name: str, content: bytes) -> None:
        self._ensure_parents(name)
        self._claim(name)
        info = zipfile.ZipInfo(name, date_time=_ZIP_EPOCH)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = _FILE_MODE
        self._archive.writestr(info, content)

    def _ensure_parents(self, name: str) -> None:
        parts = name.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            directory = "/".join(parts[:depth]) + "/"
            if directory in self._seen:
                continue
            self._claim(directory)
            info = zipfile.ZipInfo(directory, date_time=_ZIP_EPOCH)
            info.external_attr = _DIR_MODE
            self._archive.writestr(info, b"")

    def _claim(self, name: str) -> None:
        if name in self._seen:
            raise SourceTreeError(f"Duplicate bundle entry '{name}'.")
        self._seen.add(name)
        self.names.append(name)


def case_fold_entry_name(relative_path: str) -> str:
    """Return the bundle entry name for a shipped file at ``relative_path``."""

    folded = STAT_DESCRIPTIONS_DIR.decode("ascii")
    return relative_path.replace(folded, folded.lower())


def patch_content(relative_path: str, content: bytes) -> bytes:
    """Rewrite references to the stat description directory in the describer script."""

    if not relative_path.endswith(STAT_DESCRIBER_SCRIPT):
        return content
    return content.replace(STAT_DESCRIPTIONS_DIR, STAT_DESCRIPTIONS_DIR.lower())


def build_bundle(
    checkout: Path,
    archive_path: Path,
    *,
    mirror_root: Path | None = None,
    excluded: tuple[str, ...] = EXCLUDED_PREFIXES,
) -> BundleResult:
    """Package ``checkout`` into ``archive_path``.

    Images and ``.dds.zst`` textures are stored as zero-byte placeholders and
    described by the catalog entry; scripts, archives and data files carry their
    full content, with the stat description directory folded to lower case.
    Runtime scripts are added under ``lua/``, followed by the catalog, the
    stamped manifest, the static metadata files and the ``installed.cfg`` marker.

    The archive is written to a temporary sibling and moved into place only once
    complete, so a failed build never leaves a partial ``archive_path``. When
    ``mirror_root`` is given, the finished archive and the real image and texture
    bytes (under ``root/``) are copied there for publishing.
    """

    layout = CheckoutLayout(root=Path(checkout))
    if not layout.root.is_dir():
        raise SourceTreeError(
            f"Checkout '{layout.root}' must be a directory.", path=layout.root
        )

    destination = Path(archive_path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".partial")

    catalog: list[CatalogRecord] = []
    images: list[ScanEntry] = []
    try:
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            writer = _ArchiveWriter(archive)
            for entry in iter_tree(layout.source_root):
                if is_excluded(entry.relative_path, excluded):
                    continue
                if entry.kind in CATALOGUED_KINDS:
                    catalog.append(catalog_record(entry))
                    images.append(entry)
                    writer.add_file(entry.relative_path, b"")
                elif entry.kind in CONTENT_KINDS:
                    writer.add_file(
                        case_fold_entry_name(entry.relative_path),
                        patch_content(entry.relative_path, read_required(entry.path)),
                    )

            for entry in iter_tree(layout.runtime_root):
                if entry.kind is FileKind.SCRIPT:
                    writer.add_file(
                        f"{RUNTIME_PREFIX}{entry.relative_path}",
                        read_required(entry.path),
                    )

            writer.add_file(CATALOG_ENTRY, format_catalog(catalog))
            writer.add_file(MANIFEST_ENTRY, read_stamped_manifest(layout.manifest))
            for name in METADATA_FILES:
                writer.add_file(name, read_required(layout.root / name))
            writer.add_file(INSTALLED_ENTRY, b"")
            names = list(writer.names)
        os.replace(partial, destination)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise

    logger.info(
        "Wrote %s with %d entries (%d images catalogued)",
        destination,
        len(names),
        len(catalog),
    )

    if mirror_root is not None:
        _write_mirror(Path(mirror_root), destination, images)

    return BundleResult(
        archive_path=destination,
        catalog=catalog,
        entries=names,
        mirror_root=Path(mirror_root) if mirror_root is not None else None,
    )


def _write_mirror(mirror_root: Path, archive_path: Path, images: list[ScanEntry]) -> None:
    content_root = mirror_root / "root"
    for entry in images:
        target = content_root / entry.relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(entry.path, target)
    mirror_root.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(archive_path, mirror_root / BUNDLE_NAME)
    logger.info("Mirrored %d images to %s", len(images), content_root)


def read_bundle_catalog(archive_path: Path) -> list[CatalogRecord]:
    """Return the catalog stored inside the bundle at ``archive_path``."""

    with zipfile.ZipFile(archive_path) as archive:
        return parse_catalog(archive.read(CATALOG_ENTRY))


def write_staging_tree(archive_path: Path, output: Path) -> Path:
    """Extract the bundle at ``archive_path`` into ``output / "vfs"``.

    The staging tree holds exactly the bundle entries, so a client reading it
    sees the same files it would find inside ``root.zip``. The catalog is also
    written next to the tree as ``vfs.tsv``, whose path is returned.
    """

    output_path = Path(output)
    vfs_root = output_path / STAGING_DIR
    if vfs_root.exists():
        shutil.rmtree(vfs_root)
    vfs_root.mkdir(parents=True)

    with zipfile.ZipFile(archive_path) as archive:
        archive.extractall(vfs_root)
        catalog = archive.read(CATALOG_ENTRY)

    catalog_path = output_path / STAGING_CATALOG
    catalog_path.write_bytes(catalog)
    logger.info("Staged %s into %s", archive_path, vfs_root)
    return catalog_path


__all__ = [
    "BUNDLE_NAME",
    "BundleResult",
    "CATALOG_ENTRY",
    "CheckoutLayout",
    "INSTALLED_ENTRY",
    "MANIFEST_ENTRY",
    "METADATA_FILES",
    "RUNTIME_PREFIX",
    "STAGING_CATALOG",
    "STAGING_DIR",
    "build_bundle",
    "case_fold_entry_name",
    "patch_content",
    "read_bundle_catalog",
    "write_staging_tree",
]
