"""End-to-end ``pack`` step: fetch a tagged checkout and build its artifacts."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .bundle import (
    BUNDLE_NAME,
    STAGING_CATALOG,
    BundleResult,
    build_bundle,
    write_staging_tree,
)
from .errors import ConfigurationError, SourceTreeError, TransportError
from .products import Product
from .settings import PipelineSettings

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
PUBLISH_TAG_PREFIX = "v"

CommandRunner = Callable[..., Any]


def validate_tag(tag: str | None) -> str:
    """Return ``tag`` stripped of whitespace, or raise :class:`ConfigurationError`."""

    if tag is None or not tag.strip():
        raise ConfigurationError("A release tag is required.")
    trimmed = tag.strip()
    if not _TAG_PATTERN.match(trimmed):
        raise ConfigurationError(f"Invalid release tag '{tag}'.")
    return trimmed


def validate_publish_tag(tag: str | None) -> str:
    """Return a valid release tag that is also eligible for publishing.

    Only version tags (``v2.42.0``) are published; other tags can still be
    packed for local testing.
    """

    release_tag = validate_tag(tag)
    if not release_tag.startswith(PUBLISH_TAG_PREFIX):
        raise ConfigurationError(
            f"Only tags starting with '{PUBLISH_TAG_PREFIX}' can be published, "
            f"got '{release_tag}'."
        )
    return release_tag


@dataclass(frozen=True)
class ReleasePaths:
    """Directory layout of one product/tag build."""

    build_dir: Path

    @property
    def checkout(self) -> Path:
        return self.build_dir / "repo"

    @property
    def archive(self) -> Path:
        return self.build_dir / BUNDLE_NAME

    @property
    def mirror_root(self) -> Path:
        return self.build_dir / "r2"

    @property
    def staging_catalog(self) -> Path:
        return self.build_dir / STAGING_CATALOG

    @classmethod
    def for_release(
        cls, settings: PipelineSettings, product: Product, tag: str
    ) -> "ReleasePaths":
        return cls(build_dir=settings.build_dir(product.slug, tag))


@dataclass(frozen=True)
class PackResult:
    """Artifacts produced by :func:`pack_release`."""

    product: Product
    tag: str
    paths: ReleasePaths
    bundle: BundleResult


def clone_checkout(
    product: Product,
    tag: str,
    destination: Path,
    *,
    runner: CommandRunner = subprocess.run,
) -> None:
    """Shallow-clone ``product``'s repository at ``tag`` into ``destination``."""

    command = [
        "git",
        "clone",
        "--depth",
        "1",
        f"--branch={tag}",
        product.clone_url,
        str(destination),
    ]
    logger.info("Cloning %s at %s", product.clone_url, tag)
    try:
        runner(command, check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise TransportError(
            f"Failed to clone {product.clone_url} at '{tag}': {exc}"
        ) from exc


def pack_release(
    tag: str,
    product: Product,
    *,
    settings: PipelineSettings | None = None,
    clone: bool = True,
    runner: CommandRunner = subprocess.run,
) -> PackResult:
    """Build the bundle, publish mirror and staging tree for ``product`` at ``tag``.

    With ``clone`` enabled the build directory is wiped and the tag is cloned
    afresh, so re-running after any failure starts from a clean state. Without
    it an existing checkout under the build directory is reused and only the
    generated artifacts are replaced.
    """

    resolved_settings = settings or PipelineSettings.from_env()
    release_tag = validate_tag(tag)
    paths = ReleasePaths.for_release(resolved_settings, product, release_tag)

    if clone:
        if paths.build_dir.exists():
            shutil.rmtree(paths.build_dir)
        paths.build_dir.mkdir(parents=True)
        clone_checkout(product, release_tag, paths.checkout, runner=runner)
    else:
        if not paths.checkout.is_dir():
            raise SourceTreeError(
                f"No checkout at '{paths.checkout}'; run without --no-clone first.",
                path=paths.checkout,
            )
        if paths.mirror_root.exists():
            shutil.rmtree(paths.mirror_root)

    bundle = build_bundle(
        paths.checkout,
        paths.archive,
        mirror_root=paths.mirror_root,
    )
    write_staging_tree(paths.archive, paths.build_dir)

    logger.info("Packed %s %s into %s", product.name, release_tag, paths.build_dir)
    return PackResult(product=product, tag=release_tag, paths=paths, bundle=bundle)


__all__ = [
    "PackResult",
    "ReleasePaths",
    "clone_checkout",
    "pack_release",
    "validate_publish_tag",
    "validate_tag",
]
