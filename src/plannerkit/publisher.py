"""One-way checksum synchronisation of packaging output to object storage."""

from __future__ import annotations

import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Protocol, cast

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import SourceTreeError, TransportError
from .products import Product
from .release import ReleasePaths, validate_publish_tag
from .settings import PipelineSettings

logger = logging.getLogger(__name__)


class _S3ClientProtocol(Protocol):
    def get_paginator(self, operation_name: str) -> Any:
        """Return a paginator for ``operation_name``."""

    def put_object(self, **kwargs: Any) -> Any:
        """Persist an object to S3."""


@dataclass
class SyncResult:
    """Summary of a synchronisation run."""

    prefix: str
    uploaded: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)


class S3Publisher:
    """Upload a local directory to an S3 compatible bucket, skipping unchanged files.

    A file is considered unchanged when an object with the same key exists and
    its ETag equals the MD5 digest of the local content. Objects are written
    with single-part ``put_object`` calls so their ETags stay comparable.
    Objects that only exist remotely are never removed.
    """

    def __init__(
        self,
        *,
        bucket: str,
        client: _S3ClientProtocol | None = None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self._bucket = bucket
        self._client: _S3ClientProtocol
        if client is not None:
            self._client = client
        else:
            self._client = cast(
                _S3ClientProtocol,
                boto3.client("s3", region_name=region_name, endpoint_url=endpoint_url),
            )

    def remote_checksums(self, prefix: str) -> dict[str, str]:
        """Return ``{key: etag}`` for every object below ``prefix``."""

        listing_prefix = prefix.rstrip("/") + "/"
        checksums: dict[str, str] = {}
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=listing_prefix):
                for item in page.get("Contents", []):
                    checksums[item["Key"]] = str(item.get("ETag", "")).strip('"')
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(
                f"Failed to list s3://{self._bucket}/{listing_prefix}: {exc}"
            ) from exc
        return checksums

    def sync(self, local_root: Path, prefix: str) -> SyncResult:
        """Upload files under ``local_root`` whose content differs below ``prefix``."""

        root = Path(local_root)
        if not root.is_dir():
            raise SourceTreeError(
                f"Publish directory '{root}' does not exist; run pack first.", path=root
            )

        normalised_prefix = prefix.strip("/")
        remote = self.remote_checksums(normalised_prefix)
        result = SyncResult(prefix=normalised_prefix)

        for file_path in _iter_files(root):
            relative = file_path.relative_to(root).as_posix()
            key = f"{normalised_prefix}/{relative}"
            content = file_path.read_bytes()
            checksum = hashlib.md5(content).hexdigest()
            if remote.get(key) == checksum:
                result.unchanged.append(key)
                continue
            self._upload(key, content, checksum)
            result.uploaded.append(key)

        logger.info(
            "Synced s3://%s/%s: %d uploaded, %d unchanged",
            self._bucket,
            normalised_prefix,
            len(result.uploaded),
            len(result.unchanged),
        )
        return result

    def _upload(self, key: str, content: bytes, checksum: str) -> None:
        content_type, _ = mimetypes.guess_type(key)
        put_kwargs: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": content,
            "ContentType": content_type or "application/octet-stream",
            "Metadata": {"md5": checksum},
        }
        logger.debug("Uploading %s (%d bytes)", key, len(content))
        try:
            self._client.put_object(**put_kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"Failed to upload s3://{self._bucket}/{key}: {exc}") from exc


def publish_release(
    tag: str,
    product: Product,
    *,
    settings: PipelineSettings | None = None,
    publisher: S3Publisher | None = None,
) -> SyncResult:
    """Publish the packaging output of ``product`` at ``tag``."""

    resolved_settings = settings or PipelineSettings.from_env()
    release_tag = validate_publish_tag(tag)
    paths = ReleasePaths.for_release(resolved_settings, product, release_tag)

    resolved_publisher = publisher or S3Publisher(
        bucket=resolved_settings.publish_bucket,
        region_name=resolved_settings.publish_region,
        endpoint_url=resolved_settings.publish_endpoint_url,
    )
    return resolved_publisher.sync(
        paths.mirror_root, product.publish_prefix(release_tag)
    )


def _iter_files(root: Path) -> Iterable[Path]:
    return sorted(path for path in root.rglob("*") if path.is_file())


__all__ = ["S3Publisher", "SyncResult", "publish_release"]
