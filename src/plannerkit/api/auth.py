"""Bearer token verification for the virtual file API."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import jwt
import requests
from fastapi import Header, HTTPException, Request

from ..errors import (
    AuthError,
    InvalidTokenError,
    KeySetUnavailableError,
    MissingTokenError,
)

logger = logging.getLogger(__name__)

JwksFetcher = Callable[[str], Mapping[str, Any]]

_JWKS_TIMEOUT_SECONDS = 10
DEFAULT_REFRESH_COOLDOWN_SECONDS = 60.0


def fetch_jwks(url: str) -> Mapping[str, Any]:
    """Download the JSON Web Key Set published at ``url``."""

    response = requests.get(url, timeout=_JWKS_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.json()


class KeySetCache:
    """Signing keys of one issuer, indexed by key id.

    The set is fetched on first use and fetched again when a token names a key
    id the cache does not know, which picks up rotated keys. Such refetches are
    spaced at least ``refresh_cooldown`` seconds apart, so tokens carrying
    made-up key ids cannot make every request reach the issuer. Lookups do not
    lock; refreshes are serialised and replace the whole mapping at once.
    """

    def __init__(
        self,
        url: str,
        *,
        fetcher: JwksFetcher = fetch_jwks,
        refresh_cooldown: float = DEFAULT_REFRESH_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url
        self.refresh_cooldown = refresh_cooldown
        self._fetcher = fetcher
        self._clock = clock
        self._keys: dict[str, jwt.PyJWK] = {}
        self._refresh_lock = threading.Lock()
        self._last_attempt: float | None = None
        self._last_error: KeySetUnavailableError | None = None

    def get_signing_key(self, key_id: str) -> jwt.PyJWK:
        key = self._keys.get(key_id)
        if key is not None:
            return key

        self._refresh_unless_recent()
        key = self._keys.get(key_id)
        if key is None:
            raise InvalidTokenError(f"Unknown signing key id '{key_id}'.")
        return key

    def refresh(self) -> None:
        """Fetch the key set now, regardless of the cooldown."""

        with self._refresh_lock:
            self._fetch_locked()

    def _refresh_unless_recent(self) -> None:
        with self._refresh_lock:
            if (
                self._last_attempt is not None
                and self._clock() - self._last_attempt < self.refresh_cooldown
            ):
                if self._last_error is not None and not self._keys:
                    raise self._last_error
                return
            self._fetch_locked()

    def _fetch_locked(self) -> None:
        self._last_attempt = self._clock()
        try:
            payload = self._fetcher(self.url)
            key_set = jwt.PyJWKSet.from_dict(dict(payload))
        except (requests.RequestException, ValueError, jwt.PyJWKSetError) as exc:
            self._last_error = KeySetUnavailableError(
                f"Unable to load signing keys from {self.url}: {exc}"
            )
            raise self._last_error from exc
        self._last_error = None
        self._keys = {key.key_id: key for key in key_set.keys if key.key_id}
        logger.info("Loaded %d signing keys from %s", len(self._keys), self.url)


_KEY_SET_CACHES: dict[str, KeySetCache] = {}
_KEY_SET_CACHES_LOCK = threading.Lock()


def key_set_cache_for(url: str, *, fetcher: JwksFetcher = fetch_jwks) -> KeySetCache:
    """Return the process-wide cache for ``url``, creating it on first use."""

    with _KEY_SET_CACHES_LOCK:
        cache = _KEY_SET_CACHES.get(url)
        if cache is None:
            cache = KeySetCache(url, fetcher=fetcher)
            _KEY_SET_CACHES[url] = cache
        return cache


def clear_key_set_caches() -> None:
    """Forget every process-wide key set cache."""

    with _KEY_SET_CACHES_LOCK:
        _KEY_SET_CACHES.clear()


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    subject: str
    claims: Mapping[str, Any] = field(default_factory=dict, repr=False)


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an ``Authorization: Bearer`` header value."""

    if authorization is None or not authorization.strip():
        raise MissingTokenError("Missing Authorization header.")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MissingTokenError("Authorization header must carry a bearer token.")
    return token.strip()


class TokenVerifier:
    """Validate JWTs against a fixed issuer and audience."""

    def __init__(
        self,
        *,
        issuer: str,
        audience: str,
        key_set: KeySetCache,
        algorithms: Sequence[str] = ("RS256",),
        leeway: int = 0,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self.key_set = key_set
        self.algorithms = list(algorithms)
        self.leeway = leeway

    def verify(self, token: str) -> Principal:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as exc:
            raise MissingTokenError(f"Malformed bearer token: {exc}") from exc

        key_id = header.get("kid")
        if not key_id:
            raise InvalidTokenError("Token header does not name a signing key.")
        signing_key = self.key_set.get_signing_key(str(key_id))

        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError(f"Token rejected: {exc}") from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject or ":" in subject:
            raise InvalidTokenError("Token subject must be a non-empty string without ':'.")
        return Principal(subject=subject, claims=claims)


def build_principal_dependency(
    verifier: TokenVerifier,
) -> Callable[..., Principal]:
    """Return a FastAPI dependency resolving the request's :class:`Principal`."""

    def require_principal(
        request: Request,
        authorization: str | None = Header(default=None),
    ) -> Principal:
        try:
            token = extract_bearer_token(authorization)
            principal = verifier.verify(token)
        except AuthError as exc:
            logger.info(
                "Rejected %s %s: %s", request.method, request.url.path, exc
            )
            raise HTTPException(
                status_code=exc.status_code,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            ) from exc

        request.state.subject = principal.subject
        return principal

    return require_principal


__all__ = [
    "DEFAULT_REFRESH_COOLDOWN_SECONDS",
    "JwksFetcher",
    "KeySetCache",
    "Principal",
    "TokenVerifier",
    "build_principal_dependency",
    "clear_key_set_caches",
    "extract_bearer_token",
    "fetch_jwks",
    "key_set_cache_for",
]
