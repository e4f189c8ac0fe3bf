"""Release packaging pipeline and per-user virtual file store for the build planner."""

from .bundle import (
    BundleResult,
    build_bundle,
    read_bundle_catalog,
    write_staging_tree,
)
from .catalog import (
    CatalogRecord,
    build_catalog,
    format_catalog,
    parse_catalog,
    stamp_manifest,
)
from .errors import (
    AuthError,
    ConfigurationError,
    PipelineError,
    SourceTreeError,
    StorageError,
    TransportError,
)
from .products import PRODUCTS, Product, resolve_product
from .publisher import S3Publisher, SyncResult, publish_release
from .release import PackResult, pack_release
from .scanner import FileKind, ScanEntry, classify, iter_tree
from .settings import PipelineSettings

__all__ = [
    "AuthError",
    "BundleResult",
    "CatalogRecord",
    "ConfigurationError",
    "FileKind",
    "PRODUCTS",
    "PackResult",
    "PipelineError",
    "PipelineSettings",
    "Product",
    "S3Publisher",
    "ScanEntry",
    "SourceTreeError",
    "StorageError",
    "SyncResult",
    "TransportError",
    "build_bundle",
    "build_catalog",
    "classify",
    "format_catalog",
    "iter_tree",
    "pack_release",
    "parse_catalog",
    "publish_release",
    "read_bundle_catalog",
    "resolve_product",
    "stamp_manifest",
    "write_staging_tree",
]
