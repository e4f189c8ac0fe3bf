"""FastAPI application exposing per-user virtual files."""

from .app import create_app
from .settings import VfsApiSettings

__all__ = ["create_app", "VfsApiSettings"]
