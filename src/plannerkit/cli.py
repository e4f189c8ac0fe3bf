"""Command-line entry point for the release pipeline and the file API server."""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from pathlib import Path
from typing import Sequence

from .bundle import BUNDLE_NAME, build_bundle, write_staging_tree
from .errors import PipelineError
from .products import PRODUCTS, resolve_product
from .publisher import publish_release
from .release import pack_release
from .settings import PipelineSettings

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command described by ``argv`` and return its exit status."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return int(args.handler(args))
    except (PipelineError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def run() -> None:  # pragma: no cover - console script shim
    raise SystemExit(main())


def _pack(args: argparse.Namespace) -> int:
    product = resolve_product(args.product)
    result = pack_release(
        args.tag,
        product,
        settings=PipelineSettings.from_env(),
        clone=not args.no_clone,
    )
    print(
        f"Packed {len(result.bundle.entries)} entries "
        f"({len(result.bundle.catalog)} images) into {result.paths.archive}"
    )
    return 0


def _sync(args: argparse.Namespace) -> int:
    product = resolve_product(args.product)
    result = publish_release(args.tag, product, settings=PipelineSettings.from_env())
    print(
        f"Published {result.prefix}: {len(result.uploaded)} uploaded, "
        f"{len(result.unchanged)} unchanged"
    )
    return 0


def _prepare(args: argparse.Namespace) -> int:
    output = Path(args.output)
    bundle = build_bundle(Path(args.checkout), output / BUNDLE_NAME)
    catalog_path = write_staging_tree(bundle.archive_path, output)
    print(f"Wrote staging tree and catalog {catalog_path}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    command = [
        sys.executable,
        "-m",
        "uvicorn",
        "plannerkit.api.app:create_app",
        "--factory",
        "--host",
        args.host,
        "--port",
        str(args.port),
    ]
    logger.info("Starting file API on %s:%s", args.host, args.port)
    return subprocess.call(command)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plannerkit",
        description="Package planner releases and serve per-user virtual files.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    pack = subparsers.add_parser(
        "pack", help="Clone a tagged source tree and build its bundle."
    )
    pack.add_argument("tag", help="Release tag to clone and package.")
    pack.add_argument(
        "--product",
        default="poe1",
        help=f"Product to package ({', '.join(PRODUCTS)}). Defaults to 'poe1'.",
    )
    pack.add_argument(
        "--no-clone",
        action="store_true",
        help="Reuse the existing checkout in the build directory.",
    )
    pack.set_defaults(handler=_pack)

    sync = subparsers.add_parser(
        "sync", help="Publish the packaging output for a tag to object storage."
    )
    sync.add_argument("tag", help="Release tag whose output should be published.")
    sync.add_argument("product", help="Product slug or id (1 selects the primary).")
    sync.set_defaults(handler=_sync)

    prepare = subparsers.add_parser(
        "prepare", help="Write a development staging tree from a local checkout."
    )
    prepare.add_argument("checkout", help="Path to a planner source checkout.")
    prepare.add_argument(
        "--output",
        default="build",
        help="Directory receiving root.zip, vfs/ and vfs.tsv.",
    )
    prepare.set_defaults(handler=_prepare)

    serve = subparsers.add_parser("serve", help="Run the virtual file API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(handler=_serve)

    return parser


if __name__ == "__main__":  # pragma: no cover - module executable
    raise SystemExit(main())
