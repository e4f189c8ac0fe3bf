"""Per-subject virtual file operations and the HTTP routes exposing them."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Collection, List

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ..errors import StorageError, StorageUnavailableError
from .auth import Principal
from .storage import KeyValueBackend, Metadata, StoredValue

logger = logging.getLogger(__name__)

MAX_METADATA_BYTES = 1024


class OverwritePolicy(str, Enum):
    """How a write treats a value already stored at the same path."""

    REPLACE = "replace"
    REJECT_IF_EXISTS = "reject-if-exists"


@dataclass(frozen=True)
class VfsEntry:
    """A stored path as returned by a listing, without the key namespace."""

    path: str
    metadata: Metadata | None


def namespace_prefix(subject: str, namespace: str | None = None) -> str:
    """Return the key prefix isolating ``subject``'s files."""

    if namespace:
        return f"user:{subject}:ns-vfs:{namespace}:"
    return f"user:{subject}:vfs:"


def validate_path(path: str) -> str:
    if not path:
        raise ValueError("Path must not be empty.")
    if path.startswith("/"):
        raise ValueError("Path must be relative (no leading '/').")
    if "\x00" in path:
        raise ValueError("Path must not contain NUL characters.")
    return path


def parse_metadata_header(raw: str | None) -> Metadata:
    """Decode an ``x-metadata`` header; an absent header means empty metadata."""

    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("x-metadata must be valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise ValueError("x-metadata must be a JSON object.")
    return parsed


class VirtualFileService:
    """CRUD and listing over subject-namespaced keys of a :class:`KeyValueBackend`.

    Writes replace both value and metadata. With
    :attr:`OverwritePolicy.REJECT_IF_EXISTS` the write only happens when the path
    is empty. Backends offering an atomic create-if-absent make that check
    exact; otherwise the service reads and then writes, so two concurrent
    writers can both observe an empty path and the later write wins.
    """

    def __init__(self, backend: KeyValueBackend, *, page_size: int = 1000) -> None:
        if page_size < 1:
            raise ValueError("page_size must be greater than zero")
        self.backend = backend
        self.page_size = page_size

    def key_for(self, subject: str, path: str, namespace: str | None = None) -> str:
        return namespace_prefix(subject, namespace) + validate_path(path)

    def list(
        self, subject: str, prefix: str = "", namespace: str | None = None
    ) -> list[VfsEntry]:
        key_prefix = namespace_prefix(subject, namespace)
        entries: list[VfsEntry] = []
        cursor: str | None = None
        while True:
            page = self.backend.list(
                key_prefix + prefix, cursor=cursor, limit=self.page_size
            )
            entries.extend(
                VfsEntry(path=item.key[len(key_prefix) :], metadata=item.metadata)
                for item in page.keys
            )
            if page.cursor is None:
                return entries
            cursor = page.cursor

    def head(
        self, subject: str, path: str, namespace: str | None = None
    ) -> Metadata | None:
        return self.get(subject, path, namespace).metadata

    def get(self, subject: str, path: str, namespace: str | None = None) -> StoredValue:
        """Return the stored value.

        Raises:
            KeyError: If nothing is stored at ``path``.
        """

        stored = self.backend.get(self.key_for(subject, path, namespace))
        if stored is None:
            raise KeyError(f"'{path}' does not exist")
        return stored

    def put(
        self,
        subject: str,
        path: str,
        value: bytes,
        *,
        metadata: Metadata | None = None,
        overwrite: OverwritePolicy = OverwritePolicy.REPLACE,
        namespace: str | None = None,
    ) -> bool:
        """Store ``value`` at ``path`` and return whether it was written."""

        key = self.key_for(subject, path, namespace)
        stored_metadata = dict(metadata or {})
        if len(json.dumps(stored_metadata).encode("utf-8")) > MAX_METADATA_BYTES:
            raise ValueError(f"Metadata must not exceed {MAX_METADATA_BYTES} bytes.")

        if overwrite is OverwritePolicy.REPLACE:
            self.backend.put(key, value, stored_metadata)
            return True

        if self.backend.supports_conditional_put:
            return self.backend.put_if_absent(key, value, stored_metadata)

        if self.backend.get(key) is not None:
            return False
        self.backend.put(key, value, stored_metadata)
        return True

    def delete(self, subject: str, path: str, namespace: str | None = None) -> None:
        self.backend.delete(self.key_for(subject, path, namespace))


@dataclass(frozen=True)
class VfsRouteOptions:
    """Behaviour of one mounted route family."""

    supports_metadata: bool = True
    supports_namespaces: bool = True
    default_overwrite: OverwritePolicy = OverwritePolicy.REPLACE

    def resolve_overwrite(self, overwrite: bool | None) -> OverwritePolicy:
        if overwrite is None:
            return self.default_overwrite
        return OverwritePolicy.REPLACE if overwrite else OverwritePolicy.REJECT_IF_EXISTS


METADATA_ROUTES = VfsRouteOptions()
SIMPLE_ROUTES = VfsRouteOptions(
    supports_metadata=False,
    supports_namespaces=False,
    default_overwrite=OverwritePolicy.REJECT_IF_EXISTS,
)


class VfsListEntry(BaseModel):
    """A listed path and its stored metadata."""

    name: str
    metadata: dict[str, Any] | None = None


def build_vfs_router(
    service: VirtualFileService,
    principal_dependency: Callable[..., Principal],
    options: VfsRouteOptions = METADATA_ROUTES,
    *,
    namespaces: Collection[str] | None = None,
) -> APIRouter:
    """Create the routes of one family backed by ``service``.

    ``namespaces`` limits the values accepted in the ``x-user-namespace``
    header; ``None`` accepts any value without a ``:``.
    """

    router = APIRouter()

    def resolve_namespace(raw: str | None) -> str | None:
        if not options.supports_namespaces or raw is None or not raw.strip():
            return None
        namespace = raw.strip()
        if ":" in namespace or (namespaces is not None and namespace not in namespaces):
            raise HTTPException(status_code=400, detail=f"Unknown namespace '{namespace}'.")
        return namespace

    def metadata_headers(metadata: Metadata | None) -> dict[str, str]:
        if not options.supports_metadata:
            return {}
        return {"x-metadata": json.dumps(metadata)}

    list_model: Any = List[VfsListEntry] if options.supports_metadata else List[str]

    @router.get("", response_model=list_model)
    @router.get("/", response_model=list_model, include_in_schema=False)
    def list_files(
        prefix: str = Query("", description="Only return paths starting with this prefix."),
        x_user_namespace: str | None = Header(default=None),
        principal: Principal = Depends(principal_dependency),
    ) -> Any:
        namespace = resolve_namespace(x_user_namespace)
        try:
            entries = service.list(principal.subject, prefix, namespace)
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        if options.supports_metadata:
            return [VfsListEntry(name=entry.path, metadata=entry.metadata) for entry in entries]
        return [entry.path for entry in entries]

    if options.supports_metadata:

        @router.head("/{path:path}")
        def head_file(
            path: str,
            x_user_namespace: str | None = Header(default=None),
            principal: Principal = Depends(principal_dependency),
        ) -> Response:
            namespace = resolve_namespace(x_user_namespace)
            try:
                metadata = service.head(principal.subject, path, namespace)
            except KeyError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except StorageError as exc:
                raise _storage_failure(exc) from exc
            return Response(
                status_code=200,
                headers=metadata_headers(metadata),
                media_type="application/json",
            )

    @router.get("/{path:path}")
    def get_file(
        path: str,
        x_user_namespace: str | None = Header(default=None),
        principal: Principal = Depends(principal_dependency),
    ) -> Response:
        namespace = resolve_namespace(x_user_namespace)
        try:
            stored = service.get(principal.subject, path, namespace)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        return Response(
            content=stored.value,
            media_type="application/octet-stream",
            headers=metadata_headers(stored.metadata),
        )

    @router.put("/{path:path}", status_code=204)
    async def put_file(
        path: str,
        request: Request,
        overwrite: bool | None = Query(
            None, description="Replace an existing value (defaults per route family)."
        ),
        x_metadata: str | None = Header(default=None),
        x_user_namespace: str | None = Header(default=None),
        principal: Principal = Depends(principal_dependency),
    ) -> Response:
        namespace = resolve_namespace(x_user_namespace)
        try:
            metadata = (
                parse_metadata_header(x_metadata) if options.supports_metadata else None
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        body = await request.body()
        try:
            written = await run_in_threadpool(
                service.put,
                principal.subject,
                path,
                body,
                metadata=metadata,
                overwrite=options.resolve_overwrite(overwrite),
                namespace=namespace,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        if not written:
            raise HTTPException(status_code=409, detail=f"'{path}' already exists")
        return Response(status_code=204)

    @router.delete("/{path:path}", status_code=204)
    def delete_file(
        path: str,
        x_user_namespace: str | None = Header(default=None),
        principal: Principal = Depends(principal_dependency),
    ) -> Response:
        namespace = resolve_namespace(x_user_namespace)
        try:
            service.delete(principal.subject, path, namespace)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        return Response(status_code=204)

    return router


def _storage_failure(exc: StorageError) -> HTTPException:
    logger.error("Key-value backend failure: %s", exc)
    status_code = 503 if isinstance(exc, StorageUnavailableError) else 500
    return HTTPException(status_code=status_code, detail="Storage unavailable")


__all__ = [
    "MAX_METADATA_BYTES",
    "METADATA_ROUTES",
    "OverwritePolicy",
    "SIMPLE_ROUTES",
    "VfsEntry",
    "VfsListEntry",
    "VfsRouteOptions",
    "VirtualFileService",
    "build_vfs_router",
    "namespace_prefix",
    "parse_metadata_header",
    "validate_path",
]
