from __future__ import annotations

import subprocess
import zipfile
from pathlib import Path
from typing import Any

import pytest

from plannerkit.errors import ConfigurationError, SourceTreeError, TransportError
from plannerkit.products import PRODUCTS, resolve_product
from plannerkit.release import (
    ReleasePaths,
    clone_checkout,
    pack_release,
    validate_publish_tag,
    validate_tag,
)
from plannerkit.settings import PipelineSettings


class _FakeGit:
    """Stand-in for ``subprocess.run`` that materialises a checkout."""

    def __init__(self, make_checkout: Any) -> None:
        self._make_checkout = make_checkout
        self.commands: list[list[str]] = []

    def __call__(self, command: list[str], check: bool = False) -> None:
        self.commands.append(command)
        self._make_checkout(Path(command[-1]))


def _failing_git(command: list[str], check: bool = False) -> None:
    raise subprocess.CalledProcessError(128, command)


@pytest.mark.parametrize("tag", ["v2.42.0", "v0.1.0-beta", "2024_05"])
def test_validate_tag_accepts_release_tags(tag: str) -> None:
    assert validate_tag(f"  {tag} ") == tag


@pytest.mark.parametrize("tag", [None, "", "   ", "../v1", "v1 2", "-v1"])
def test_validate_tag_rejects_invalid_tags(tag: str | None) -> None:
    with pytest.raises(ConfigurationError):
        validate_tag(tag)


def test_validate_publish_tag_requires_v_prefix() -> None:
    assert validate_publish_tag(" v2.42.0 ") == "v2.42.0"
    assert validate_publish_tag("v1") == "v1"

    with pytest.raises(ConfigurationError):
        validate_publish_tag("2024_05")
    with pytest.raises(ConfigurationError):
        validate_publish_tag("../v1")


def test_resolve_product_accepts_slug_or_id() -> None:
    assert resolve_product("poe1") is PRODUCTS["poe1"]
    assert resolve_product("2") is PRODUCTS["poe2"]
    assert resolve_product(" LE ") is PRODUCTS["le"]

    with pytest.raises(ConfigurationError):
        resolve_product("poe3")
    with pytest.raises(ConfigurationError):
        resolve_product(None)


def test_publish_prefix_depends_on_product() -> None:
    assert PRODUCTS["poe1"].publish_prefix("v2.42.0") == "versions/v2.42.0"
    assert PRODUCTS["poe2"].publish_prefix("v0.1.0") == "versions.2/v0.1.0"
    assert PRODUCTS["le"].publish_prefix("v1") == "versions.le/v1"


def test_pack_release_clones_and_builds_artifacts(tmp_path: Path, make_checkout) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")
    git = _FakeGit(make_checkout)
    product = PRODUCTS["poe2"]

    result = pack_release("v0.1.0", product, settings=settings, runner=git)

    paths = result.paths
    assert paths.build_dir == tmp_path / "build" / "poe2" / "v0.1.0"
    assert git.commands == [
        [
            "git",
            "clone",
            "--depth",
            "1",
            "--branch=v0.1.0",
            "https://github.com/PathOfBuildingCommunity/PathOfBuilding-PoE2.git",
            str(paths.checkout),
        ]
    ]
    assert paths.archive.exists()
    assert (paths.mirror_root / "root.zip").exists()
    assert (paths.mirror_root / "root" / "Assets" / "icon.png").exists()
    assert paths.staging_catalog.read_bytes() == result.bundle.catalog_bytes
    with zipfile.ZipFile(paths.archive) as archive:
        assert archive.read(".image.tsv") == paths.staging_catalog.read_bytes()


def test_pack_release_is_idempotent(tmp_path: Path, make_checkout) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")
    product = PRODUCTS["poe1"]

    first = pack_release("v2.42.0", product, settings=settings, runner=_FakeGit(make_checkout))
    first_archive = first.paths.archive.read_bytes()
    first_catalog = first.paths.staging_catalog.read_bytes()

    second = pack_release("v2.42.0", product, settings=settings, runner=_FakeGit(make_checkout))

    assert second.paths.archive.read_bytes() == first_archive
    assert second.paths.staging_catalog.read_bytes() == first_catalog


def test_pack_release_wipes_previous_build(tmp_path: Path, make_checkout) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")
    product = PRODUCTS["poe1"]
    stale = ReleasePaths.for_release(settings, product, "v1").mirror_root / "stale.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    pack_release("v1", product, settings=settings, runner=_FakeGit(make_checkout))

    assert not stale.exists()


def test_pack_release_reports_clone_failure(tmp_path: Path) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")

    with pytest.raises(TransportError):
        pack_release("v1", PRODUCTS["poe1"], settings=settings, runner=_failing_git)

    assert not (tmp_path / "build" / "poe1" / "v1" / "root.zip").exists()


def test_pack_release_without_clone_reuses_checkout(
    tmp_path: Path, make_checkout
) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")
    product = PRODUCTS["le"]
    paths = ReleasePaths.for_release(settings, product, "v3")
    make_checkout(paths.checkout)

    def _unexpected(*args: Any, **kwargs: Any) -> None:
        raise AssertionError("git must not run")

    result = pack_release("v3", product, settings=settings, clone=False, runner=_unexpected)

    assert result.paths.archive.exists()


def test_pack_release_without_clone_requires_checkout(tmp_path: Path) -> None:
    settings = PipelineSettings(build_root=tmp_path / "build")

    with pytest.raises(SourceTreeError):
        pack_release("v3", PRODUCTS["le"], settings=settings, clone=False)


def test_clone_checkout_translates_missing_git(tmp_path: Path) -> None:
    def _missing(*args: Any, **kwargs: Any) -> None:
        raise FileNotFoundError("git")

    with pytest.raises(TransportError):
        clone_checkout(PRODUCTS["poe1"], "v1", tmp_path / "repo", runner=_missing)
