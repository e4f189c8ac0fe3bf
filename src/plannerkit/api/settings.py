"""Configuration helpers for deploying the virtual file API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ..settings import (
    _normalise_optional_string,
    _normalise_path,
    _normalise_string,
    _parse_positive_int,
)

DEFAULT_ISSUER = "https://pob-web.us.auth0.com/"
DEFAULT_AUDIENCE = "https://pob.cool/api"


@dataclass(frozen=True)
class VfsApiSettings:
    """Deployment settings for the FastAPI application.

    The helper reads from environment variables so the API can be configured
    without modifying application code. When no ``jwks_url`` is configured the
    issuer's well-known key set location is used. Leaving ``store_root`` unset
    keeps files in process memory.
    """

    issuer: str = DEFAULT_ISSUER
    audience: str = DEFAULT_AUDIENCE
    jwks_url: str | None = None
    algorithms: tuple[str, ...] = ("RS256",)
    store_root: Path | None = None
    list_page_size: int = 1000

    @property
    def resolved_jwks_url(self) -> str:
        if self.jwks_url:
            return self.jwks_url
        base = self.issuer if self.issuer.endswith("/") else f"{self.issuer}/"
        return f"{base}.well-known/jwks.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VfsApiSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        algorithms_raw = _normalise_string(
            source.get("PLANNERKIT_AUTH_ALGORITHMS"), default="RS256"
        )
        algorithms = tuple(
            part.strip() for part in algorithms_raw.split(",") if part.strip()
        )

        return cls(
            issuer=_normalise_string(
                source.get("PLANNERKIT_AUTH_ISSUER"), default=DEFAULT_ISSUER
            ),
            audience=_normalise_string(
                source.get("PLANNERKIT_AUTH_AUDIENCE"), default=DEFAULT_AUDIENCE
            ),
            jwks_url=_normalise_optional_string(source.get("PLANNERKIT_AUTH_JWKS_URL")),
            algorithms=algorithms,
            store_root=_normalise_path(source.get("PLANNERKIT_STORE_ROOT")),
            list_page_size=_parse_positive_int(
                source.get("PLANNERKIT_LIST_PAGE_SIZE"),
                name="PLANNERKIT_LIST_PAGE_SIZE",
                default=1000,
            ),
        )


__all__ = ["DEFAULT_AUDIENCE", "DEFAULT_ISSUER", "VfsApiSettings"]
