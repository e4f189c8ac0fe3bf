"""Test configuration for the planner packaging and file API project."""

from __future__ import annotations

import json
import struct
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from collections.abc import Callable, Mapping
from typing import Any

import jwt
import pytest
import zstandard
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from PIL import Image

from plannerkit.api.auth import KeySetCache
from plannerkit.api.settings import VfsApiSettings

ISSUER = "https://issuer.example.com/"
AUDIENCE = "https://planner.example.com/api"
KEY_ID = "test-key"


def write_image(path: Path, width: int, height: int) -> Path:
    """Write a solid-colour image of the requested size."""

    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (width, height), color=(200, 40, 40)).save(path)
    return path


def write_texture(path: Path, width: int, height: int) -> Path:
    """Write a zstd-compressed DDS texture whose header declares the given size."""

    header = bytearray(128)
    header[0:4] = b"DDS "
    struct.pack_into("<IIII", header, 4, 124, 0x1007, height, width)
    pixels = bytes(range(256)) * 4
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(zstandard.ZstdCompressor().compress(bytes(header) + pixels))
    return path


def public_jwk(private_key: Any, key_id: str) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = key_id
    jwk["alg"] = "RS256"
    jwk["use"] = "sig"
    return jwk


class StubJwksFetcher:
    """Serve a mutable JWKS document and record every fetch."""

    def __init__(self, keys: list[dict[str, Any]]) -> None:
        self.keys = keys
        self.calls: list[str] = []

    def __call__(self, url: str) -> Mapping[str, Any]:
        self.calls.append(url)
        return {"keys": list(self.keys)}


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def signing_key() -> Any:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_signing_key() -> Any:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def jwks_fetcher(signing_key: Any) -> StubJwksFetcher:
    return StubJwksFetcher([public_jwk(signing_key, KEY_ID)])


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def key_set(jwks_fetcher: StubJwksFetcher, clock: ManualClock) -> KeySetCache:
    return KeySetCache(
        f"{ISSUER}.well-known/jwks.json", fetcher=jwks_fetcher, clock=clock
    )


@pytest.fixture()
def api_settings() -> VfsApiSettings:
    return VfsApiSettings(issuer=ISSUER, audience=AUDIENCE, list_page_size=2)


@pytest.fixture()
def make_token(signing_key: Any) -> Callable[..., str]:
    """Factory fixture minting RS256 tokens with overridable claims."""

    def _factory(
        subject: str = "auth0|alice",
        *,
        key: Any = None,
        key_id: str = KEY_ID,
        expires_in: int = 300,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": subject,
            "iss": ISSUER,
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        return jwt.encode(
            payload,
            key if key is not None else signing_key,
            algorithm="RS256",
            headers={"kid": key_id},
        )

    return _factory


@pytest.fixture()
def make_checkout(tmp_path: Path) -> Callable[..., Path]:
    """Create a minimal planner source checkout and return its root."""

    def _factory(root: Path | None = None, *, manifest: str | None = None) -> Path:
        checkout = root or tmp_path / "repo"
        src = checkout / "src"
        write_image(src / "Assets" / "icon.png", 16, 8)
        write_image(src / "TreeData" / "3_19" / "skills.jpg", 40, 30)
        write_image(src / "Export" / "preview.png", 4, 4)
        (src / "Modules").mkdir(parents=True)
        (src / "Modules" / "Main.lua").write_text("return {}\n", encoding="utf-8")
        (src / "Launch.lua").write_text("-- launch\n", encoding="utf-8")
        (src / "Data").mkdir()
        (src / "Data" / "Bases.zip").write_bytes(b"PK\x05\x06" + b"\x00" * 18)
        (src / "Data" / "Uniques.part0").write_bytes(b"part-zero")
        (src / "Data" / "Gems.json").write_text('{"gems": []}', encoding="utf-8")
        (src / "Export" / "Scripts.lua").write_text("-- export\n", encoding="utf-8")
        (src / "ExportTools.lua").write_text("-- export tools\n", encoding="utf-8")
        (src / "ExportData").mkdir()
        (src / "ExportData" / "x.lua").write_text("-- export data\n", encoding="utf-8")
        (src / "README.txt").write_text("not shipped", encoding="utf-8")

        runtime = checkout / "runtime" / "lua"
        (runtime / "sha1").mkdir(parents=True)
        (runtime / "xml.lua").write_text("-- xml\n", encoding="utf-8")
        (runtime / "sha1" / "init.lua").write_text("-- sha1\n", encoding="utf-8")
        (runtime / "notes.md").write_text("ignored", encoding="utf-8")

        default_manifest = (
            '<?xml version="1.0"?>\r\n<PoBVersion>\r\n'
            '\t<Version number="2.42.0" />\r\n</PoBVersion>\r\n'
        )
        (checkout / "manifest.xml").write_bytes(
            (manifest if manifest is not None else default_manifest).encode("utf-8")
        )
        (checkout / "changelog.txt").write_text("VERSION[2.42.0]\n", encoding="utf-8")
        (checkout / "help.txt").write_text("Help text\n", encoding="utf-8")
        (checkout / "LICENSE.md").write_text("MIT\n", encoding="utf-8")
        return checkout

    return _factory
