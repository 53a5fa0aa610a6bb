"""Ingestion and normalization of uploaded 3D asset bundles.

Provides:
- normalize / normalize_sync / normalize_bundles: Bundle -> NormalizedScene
- resolve_material: Rewrite MTL texture directives against uploaded textures
- dispatch: Pick the loader strategy for a geometry filename
- BundleDescriptor: Geometry file, optional material document, and textures
"""

from assetsmith.bundle import (
    BundleDescriptor,
    GeometryFile,
    MaterialFile,
    TextureFile,
    TextureIndex,
)
from assetsmith.errors import (
    AssetNormalizationError,
    GeometryParseError,
    MaterialParseError,
    ResourceFetchError,
    UnsupportedFormatError,
)
from assetsmith.format_dispatch import Strategy, dispatch
from assetsmith.material_resolver import (
    ResolvedMaterialDocument,
    UnresolvedTextureWarning,
    resolve_material,
)
from assetsmith.pipeline import (
    BatchNormalizationResult,
    BundlePipeline,
    FailedBundle,
    PipelineStage,
    normalize,
    normalize_bundles,
    normalize_sync,
)
from assetsmith.scene_assembler import NormalizedScene

__all__ = [
    "AssetNormalizationError",
    "BatchNormalizationResult",
    "BundleDescriptor",
    "BundlePipeline",
    "FailedBundle",
    "GeometryFile",
    "GeometryParseError",
    "MaterialFile",
    "MaterialParseError",
    "NormalizedScene",
    "PipelineStage",
    "ResolvedMaterialDocument",
    "ResourceFetchError",
    "Strategy",
    "TextureFile",
    "TextureIndex",
    "UnresolvedTextureWarning",
    "UnsupportedFormatError",
    "dispatch",
    "normalize",
    "normalize_bundles",
    "normalize_sync",
    "resolve_material",
]
