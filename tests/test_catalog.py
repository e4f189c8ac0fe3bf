from __future__ import annotations

from pathlib import Path

import pytest
import zstandard

from conftest import write_image, write_texture
from plannerkit.catalog import (
    CatalogRecord,
    build_catalog,
    format_catalog,
    parse_catalog,
    probe_image_size,
    probe_texture_size,
    stamp_manifest,
)
from plannerkit.errors import SourceTreeError


def test_build_catalog_records_true_dimensions_in_scan_order(tmp_path: Path) -> None:
    write_image(tmp_path / "b" / "wide.png", 64, 8)
    write_image(tmp_path / "a" / "tall.jpg", 3, 90)
    write_image(tmp_path / "Export" / "skip.png", 5, 5)
    (tmp_path / "a" / "script.lua").write_text("--", encoding="utf-8")

    catalog = build_catalog(tmp_path)

    assert catalog == [
        CatalogRecord("a/tall.jpg", 3, 90),
        CatalogRecord("b/wide.png", 64, 8),
    ]


def test_format_catalog_is_tab_separated_and_newline_terminated() -> None:
    records = [CatalogRecord("Assets/ä.png", 1, 2), CatalogRecord("b.jpg", 30, 40)]

    payload = format_catalog(records)

    assert payload == "Assets/ä.png\t1\t2\nb.jpg\t30\t40\n".encode("utf-8")
    assert parse_catalog(payload) == records


def test_format_catalog_of_no_images_is_empty() -> None:
    assert format_catalog([]) == b""


def test_parse_catalog_rejects_malformed_lines() -> None:
    with pytest.raises(ValueError):
        parse_catalog("only-a-path\n")
    with pytest.raises(ValueError):
        parse_catalog("a.png\twide\t2\n")


def test_probe_image_size_rejects_non_images(tmp_path: Path) -> None:
    bogus = tmp_path / "broken.png"
    bogus.write_bytes(b"not an image")

    with pytest.raises(SourceTreeError):
        probe_image_size(bogus)


def test_stamp_manifest_adds_platform_and_branch() -> None:
    assert (
        stamp_manifest(b'<Version number="2.42.0" />')
        == b'<Version number="2.42.0" platform="win32" branch="master" />'
    )


def test_stamp_manifest_preserves_surrounding_bytes() -> None:
    document = (
        b'<?xml version="1.0"?>\r\n<PoBVersion>\r\n\t<Version number="1.4.170" />'
        b'\r\n\t<Source part="default" />\r\n</PoBVersion>\r\n'
    )

    stamped = stamp_manifest(document)

    expected = document.replace(
        b'<Version number="1.4.170" />',
        b'<Version number="1.4.170" platform="win32" branch="master" />',
    )
    assert stamped == expected


@pytest.mark.parametrize(
    "document",
    [
        b"",
        b"<PoBVersion></PoBVersion>",
        b'<Version number="2.42.0"/>',
        b'<Version number="beta" />',
    ],
)
def test_stamp_manifest_is_noop_without_declaration(document: bytes) -> None:
    assert stamp_manifest(document) == document


def test_probe_texture_size_reads_dds_header(tmp_path: Path) -> None:
    texture = write_texture(tmp_path / "atlas.dds.zst", 2048, 512)

    assert probe_texture_size(texture) == (2048, 512)


@pytest.mark.parametrize(
    "payload",
    [b"not zstd at all", zstandard.ZstdCompressor().compress(b"PNG" + b"\x00" * 200)],
)
def test_probe_texture_size_rejects_non_textures(tmp_path: Path, payload: bytes) -> None:
    bogus = tmp_path / "bogus.dds.zst"
    bogus.write_bytes(payload)

    with pytest.raises(SourceTreeError):
        probe_texture_size(bogus)


def test_build_catalog_includes_textures_and_skips_export_siblings(tmp_path: Path) -> None:
    write_image(tmp_path / "Art" / "b.png", 4, 2)
    write_texture(tmp_path / "Art" / "a.dds.zst", 64, 32)
    write_image(tmp_path / "ExportArt" / "skip.png", 5, 5)
    write_texture(tmp_path / "ExportAtlas.dds.zst", 8, 8)

    assert build_catalog(tmp_path) == [
        CatalogRecord("Art/a.dds.zst", 64, 32),
        CatalogRecord("Art/b.png", 4, 2),
    ]
