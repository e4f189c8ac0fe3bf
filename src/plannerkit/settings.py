"""Configuration helpers for the release packaging pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _normalise_optional_string(value: str | None) -> str | None:
    if value is None:
        return None

    trimmed = value.strip()
    return trimmed or None


def _parse_positive_int(value: str | None, *, name: str, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class PipelineSettings:
    """Locations and credentials used by the ``pack`` and ``sync`` commands.

    Values are read from environment variables so CI jobs can configure the
    pipeline without code changes. Empty strings are treated as unset.
    """

    build_root: Path = Path("build")
    publish_bucket: str = "pob-web"
    publish_endpoint_url: str | None = None
    publish_region: str = "auto"

    def build_dir(self, product_slug: str, tag: str) -> Path:
        return self.build_root / product_slug / tag

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineSettings":
        """Return settings populated from ``environ`` (defaults to :data:`os.environ`)."""

        source = environ if environ is not None else os.environ

        return cls(
            build_root=_normalise_path(source.get("PLANNERKIT_BUILD_ROOT"))
            or Path("build"),
            publish_bucket=_normalise_string(
                source.get("PLANNERKIT_PUBLISH_BUCKET"), default="pob-web"
            ),
            publish_endpoint_url=_normalise_optional_string(
                source.get("R2_ENDPOINT_URL")
            ),
            publish_region=_normalise_string(
                source.get("PLANNERKIT_PUBLISH_REGION"), default="auto"
            ),
        )


__all__ = ["PipelineSettings"]
