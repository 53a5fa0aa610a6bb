#!/usr/bin/env python3
"""AssetSmith entry point.

Normalizes one catalog record (geometry file, optional material document, and
textures) into a canonically posed scene and optionally writes it as GLB.

Usage:
    python run_assetsmith.py record.json --base-url http://localhost:3000
    python run_assetsmith.py record.json --output chair.glb --json
"""

import argparse
import json
import logging
import sys

from pathlib import Path

from assetsmith.bundle import BundleDescriptor
from assetsmith.config import load_config
from assetsmith.errors import AssetNormalizationError
from assetsmith.pipeline import normalize_sync

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="AssetSmith - 3D asset bundle normalization"
    )
    parser.add_argument(
        "record",
        type=Path,
        help="Catalog record JSON (modelFile, mtlFile, textures)",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Server root for catalog-relative paths (default: fetch.base_url)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the normalized scene to this file (format from extension)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a JSON summary of the normalized scene to stdout",
    )
    parser.add_argument(
        "--thumbnail",
        action="store_true",
        help="Include a base64 JPEG texture thumbnail in the JSON summary",
    )
    parser.add_argument(
        "--override",
        dest="overrides",
        action="append",
        default=[],
        help="Hydra config override, repeatable (e.g. normalizer.target_dimension=10)",
    )

    args = parser.parse_args()

    cfg = load_config(args.overrides)
    record = json.loads(args.record.read_text())
    bundle = BundleDescriptor.from_catalog_record(
        record, base_url=args.base_url or cfg.fetch.base_url
    )
    logger.info(f"Normalizing bundle '{bundle.label}'")

    try:
        scene = normalize_sync(bundle, cfg=cfg)
    except AssetNormalizationError as e:
        logger.error(f"Failed to normalize '{bundle.label}': {e}")
        return 1

    if args.output is not None:
        file_type = args.output.suffix.lstrip(".").lower() or "glb"
        args.output.write_bytes(scene.export(file_type=file_type))
        logger.info(f"Wrote {args.output}")

    if args.json:
        print(json.dumps(scene.to_dict(include_thumbnail=args.thumbnail), indent=2))
    else:
        print("\n" + "=" * 60)
        print("NORMALIZATION SUMMARY")
        print("=" * 60)
        print(f"  Strategy: {scene.strategy.name}")
        print(f"  Scale: {scene.transform.scale:.6g}")
        print(f"  Surfaces: {len(scene.surfaces)}")
        if scene.fallback_texture is not None:
            print(f"  Fallback texture: {scene.fallback_texture.filename}")
        for warning in scene.warnings:
            print(f"    - {warning.message}")
        print("=" * 60)

    scene.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
