"""FastAPI application exposing the per-user virtual file store."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from ..products import kv_namespaces
from .auth import (
    JwksFetcher,
    KeySetCache,
    TokenVerifier,
    build_principal_dependency,
    fetch_jwks,
    key_set_cache_for,
)
from .settings import VfsApiSettings
from .storage import FileKeyValueBackend, InMemoryKeyValueBackend, KeyValueBackend
from .vfs import METADATA_ROUTES, SIMPLE_ROUTES, VirtualFileService, build_vfs_router

logger = logging.getLogger(__name__)


def create_backend(settings: VfsApiSettings) -> KeyValueBackend:
    """Return the backend selected by ``settings``."""

    if settings.store_root is not None:
        logger.info("Storing virtual files under %s", settings.store_root)
        return FileKeyValueBackend(settings.store_root)
    logger.info("Storing virtual files in process memory")
    return InMemoryKeyValueBackend()


def create_app(
    backend: KeyValueBackend | None = None,
    *,
    settings: VfsApiSettings | None = None,
    key_set: KeySetCache | None = None,
    jwks_fetcher: JwksFetcher = fetch_jwks,
) -> FastAPI:
    """Create a FastAPI app serving both virtual file route families."""

    resolved_settings = settings or VfsApiSettings.from_env()
    resolved_backend = backend or create_backend(resolved_settings)
    resolved_key_set = key_set or key_set_cache_for(
        resolved_settings.resolved_jwks_url, fetcher=jwks_fetcher
    )

    verifier = TokenVerifier(
        issuer=resolved_settings.issuer,
        audience=resolved_settings.audience,
        key_set=resolved_key_set,
        algorithms=resolved_settings.algorithms,
    )
    require_principal = build_principal_dependency(verifier)
    service = VirtualFileService(
        resolved_backend, page_size=resolved_settings.list_page_size
    )

    app = FastAPI(
        title="Planner Virtual File API",
        version="0.1.0",
        description=(
            "Per-user file storage for the browser build planner. Every request "
            "must carry a bearer token; files are isolated by token subject."
        ),
        openapi_tags=[
            {
                "name": "Files",
                "description": "Path-addressed files with JSON metadata.",
            },
            {
                "name": "Key-Value",
                "description": "Plain values with create-only writes by default.",
            },
        ],
    )

    app.include_router(
        build_vfs_router(
            service,
            require_principal,
            METADATA_ROUTES,
            namespaces=kv_namespaces(),
        ),
        prefix="/api/vfs",
        tags=["Files"],
    )
    app.include_router(
        build_vfs_router(service, require_principal, SIMPLE_ROUTES),
        prefix="/api/kv",
        tags=["Key-Value"],
    )

    return app


__all__ = ["create_app", "create_backend"]
