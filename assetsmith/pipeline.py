"""Per-asset normalization pipeline and the public normalize entry points.

One `BundlePipeline` drives one bundle through

    DISPATCHING -> FETCHING -> [RESOLVING_MATERIALS -> FETCHING] -> PARSING
        -> [BINDING] -> NORMALIZING -> ASSEMBLED

and ends in FAILED on the first fatal error or on cancellation. Each pipeline
owns its fetcher and shares no mutable state with other pipelines, so many
bundles can be normalized concurrently on one event loop.
"""

import asyncio
import logging
import posixpath

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence
from urllib.parse import unquote, urljoin, urlparse

import trimesh

from omegaconf import DictConfig
from PIL import Image

from assetsmith import geometry_normalizer
from assetsmith.bundle import (
    BundleDescriptor,
    MaterialSource,
    TextureIndex,
    find_material_document,
)
from assetsmith.config import load_config
from assetsmith.errors import AssetNormalizationError, ResourceFetchError
from assetsmith.format_dispatch import Strategy, dispatch, is_binary_gltf
from assetsmith.loaders import (
    FbxConverter,
    drawable_surfaces,
    gltf_external_uris,
    parse_geometry,
)
from assetsmith.material_resolver import (
    UnresolvedTextureWarning,
    decode_material_bytes,
    resolve_material,
    unresolved_warnings,
)
from assetsmith.resource_fetcher import ResourceFetcher
from assetsmith.scene_assembler import NormalizedScene, assemble
from assetsmith.texture_binder import (
    BoundGeometry,
    FallbackTextureBinder,
    has_texture_coordinates,
)
from assetsmith.utils.image_utils import decode_texture_image
from assetsmith.virtual_resource import VirtualResourceResolver, ensure_mtllib

console_logger = logging.getLogger(__name__)


class PipelineStage(Enum):
    DISPATCHING = "dispatching"
    FETCHING = "fetching"
    RESOLVING_MATERIALS = "resolving_materials"
    PARSING = "parsing"
    BINDING = "binding"
    NORMALIZING = "normalizing"
    ASSEMBLED = "assembled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.ASSEMBLED, PipelineStage.FAILED)


# FAILED is reachable from every non-terminal stage and is handled separately.
_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.DISPATCHING: frozenset({PipelineStage.FETCHING}),
    PipelineStage.FETCHING: frozenset(
        {PipelineStage.RESOLVING_MATERIALS, PipelineStage.PARSING}
    ),
    PipelineStage.RESOLVING_MATERIALS: frozenset({PipelineStage.FETCHING}),
    PipelineStage.PARSING: frozenset(
        {PipelineStage.BINDING, PipelineStage.NORMALIZING}
    ),
    PipelineStage.BINDING: frozenset({PipelineStage.NORMALIZING}),
    PipelineStage.NORMALIZING: frozenset({PipelineStage.ASSEMBLED}),
    PipelineStage.ASSEMBLED: frozenset(),
    PipelineStage.FAILED: frozenset(),
}


def companion_url(geometry_url: str, reference: str) -> str:
    """Location of a file referenced relative to the geometry file."""
    if urlparse(geometry_url).scheme in ("http", "https", "file"):
        return urljoin(geometry_url, reference)
    directory = posixpath.dirname(geometry_url.replace("\\", "/"))
    return posixpath.join(directory, unquote(reference)) if directory else unquote(
        reference
    )


class BundlePipeline:
    """Normalizes a single bundle. Instances are single-use."""

    def __init__(
        self,
        bundle: BundleDescriptor,
        cfg: DictConfig,
        fetcher: ResourceFetcher | None = None,
        fbx_converter: FbxConverter | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            bundle: The bundle to normalize.
            cfg: Configuration as returned by load_config().
            fetcher: Optional fetcher. A fetcher passed in is not closed by the
                pipeline; one created here is closed when the pipeline ends.
            fbx_converter: Optional converter for the FBX strategy.
        """
        self.bundle = bundle.with_base_url(cfg.fetch.get("base_url"))
        self.cfg = cfg
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or ResourceFetcher(
            max_concurrency=int(cfg.fetch.max_concurrency),
            verify_ssl=bool(cfg.fetch.verify_ssl),
            chunk_size=int(cfg.fetch.chunk_size),
        )
        self.fbx_converter = fbx_converter or FbxConverter(
            command=cfg.loaders.fbx.converter_command,
            timeout_s=cfg.loaders.fbx.get("timeout_s"),
        )
        self.binder = FallbackTextureBinder.from_config(cfg.materials)

        self._stage = PipelineStage.DISPATCHING
        self._history: list[PipelineStage] = [PipelineStage.DISPATCHING]
        self._failure_reason: str | None = None
        self._started = False
        # Images decoded by this pipeline; closed unless handed to the scene.
        self._decoded_images: list[Image.Image] = []

    @property
    def stage(self) -> PipelineStage:
        return self._stage

    @property
    def history(self) -> tuple[PipelineStage, ...]:
        """Every stage entered so far, in order."""
        return tuple(self._history)

    @property
    def failure_reason(self) -> str | None:
        return self._failure_reason

    def _transition(self, stage: PipelineStage) -> None:
        if stage not in _TRANSITIONS[self._stage]:
            raise RuntimeError(
                f"Illegal pipeline transition {self._stage.name} -> {stage.name}"
            )
        console_logger.info(f"[{self.bundle.label}] {self._stage.name} -> {stage.name}")
        self._stage = stage
        self._history.append(stage)

    def _fail(self, reason: str) -> None:
        if self._stage.is_terminal:
            return
        self._failure_reason = reason
        self._stage = PipelineStage.FAILED
        self._history.append(PipelineStage.FAILED)

    async def run(self) -> NormalizedScene:
        """Run the pipeline to completion.

        Returns:
            The normalized scene.

        Raises:
            AssetNormalizationError: The terminal error of this asset.
            asyncio.CancelledError: If the caller cancelled the load. Blocking
                parse work already handed to a worker thread finishes in the
                background and its result is discarded.
        """
        if self._started:
            raise RuntimeError("BundlePipeline instances are single-use")
        self._started = True

        try:
            scene = await self._run()
        except asyncio.CancelledError:
            self._fail("cancelled")
            console_logger.warning(f"[{self.bundle.label}] Normalization cancelled")
            raise
        except AssetNormalizationError as e:
            self._fail(str(e))
            console_logger.error(f"[{self.bundle.label}] Normalization failed: {e}")
            raise
        except Exception as e:
            self._fail(f"unexpected error: {e}")
            console_logger.exception(
                f"[{self.bundle.label}] Unexpected error during normalization"
            )
            raise
        finally:
            self._release()

        # Decoded images now belong to the scene.
        self._decoded_images.clear()
        return scene

    def _release(self) -> None:
        if self._stage is PipelineStage.FAILED:
            for image in self._decoded_images:
                image.close()
            self._decoded_images.clear()
        if self._owns_fetcher:
            self.fetcher.close()

    async def _run(self) -> NormalizedScene:
        geometry_file = self.bundle.geometry_file
        strategy = dispatch(geometry_file.filename)
        console_logger.info(
            f"[{self.bundle.label}] '{geometry_file.filename}' dispatched to "
            f"{strategy.name} loader"
        )

        self._transition(PipelineStage.FETCHING)
        material_source = None
        if strategy is Strategy.OBJ:
            material_source = find_material_document(self.bundle)
        elif self.bundle.material_file is not None:
            console_logger.info(
                f"[{self.bundle.label}] Ignoring material file "
                f"'{self.bundle.material_file.filename}', {strategy.name} carries "
                "its own materials"
            )

        to_fetch = [(geometry_file.url, geometry_file.filename)]
        if material_source is not None:
            to_fetch.append((material_source.url, material_source.filename))
        fetched = await self.fetcher.fetch_many(to_fetch)
        geometry_data = fetched[0]

        resolver = None
        warnings: list[UnresolvedTextureWarning] = []
        if material_source is not None:
            self._transition(PipelineStage.RESOLVING_MATERIALS)
            document = resolve_material(
                decode_material_bytes(fetched[1]), TextureIndex.from_bundle(self.bundle)
            )
            warnings = unresolved_warnings(document)
            console_logger.info(
                f"[{self.bundle.label}] Resolved {document.resolved_count}/"
                f"{document.total_directives} texture directives"
            )

            self._transition(PipelineStage.FETCHING)
            urls = document.resolved_urls
            texture_data = await self.fetcher.fetch_many(
                [(url, f"texture {posixpath.basename(url)}") for url in urls]
            )
            resolver = VirtualResourceResolver(
                dict(zip(urls, texture_data)),
                material_document=document.rewritten_text.encode("utf-8"),
            )
            geometry_data = ensure_mtllib(geometry_data, material_source.filename)
        elif strategy is Strategy.GLTF and not is_binary_gltf(geometry_file.filename):
            resolver = await self._fetch_gltf_resources(geometry_data)

        self._transition(PipelineStage.PARSING)
        scene = await asyncio.to_thread(
            parse_geometry,
            strategy,
            geometry_data,
            geometry_file.filename,
            resolver,
            self.fbx_converter,
        )

        if self._needs_fallback_binding(strategy, material_source):
            self._transition(PipelineStage.BINDING)
            bound = await self._bind_fallback(scene, strategy)
        elif strategy is Strategy.STL:
            # STL has no material description; its surfaces are always gray.
            bound = self.binder.assign_neutral(scene)
        else:
            bound = BoundGeometry.unbound(scene)

        self._transition(PipelineStage.NORMALIZING)
        target_dimension = float(self.cfg.normalizer.target_dimension)
        transform = geometry_normalizer.normalize(scene, target_dimension)
        camera = geometry_normalizer.camera_framing(
            target_dimension, float(self.cfg.normalizer.camera_distance_factor)
        )
        normalized = assemble(bound, transform, warnings, camera, strategy)

        self._transition(PipelineStage.ASSEMBLED)
        return normalized

    async def _fetch_gltf_resources(self, document: bytes) -> VirtualResourceResolver:
        """Prefetch external buffers and images of a glTF JSON document."""
        index = TextureIndex.from_bundle(self.bundle)
        uris = gltf_external_uris(document, self.bundle.geometry_file.filename)
        urls = []
        for uri in uris:
            texture = index.lookup(unquote(uri))
            urls.append(
                texture.url
                if texture is not None
                else companion_url(self.bundle.geometry_file.url, uri)
            )
        data = await self.fetcher.fetch_many(list(zip(urls, uris)))
        return VirtualResourceResolver(dict(zip(uris, data)))

    def _needs_fallback_binding(
        self, strategy: Strategy, material_source: MaterialSource | None
    ) -> bool:
        return (
            self.bundle.material_file is None
            and material_source is None
            and not strategy.carries_materials
        )

    async def _bind_fallback(
        self, scene: trimesh.Scene, strategy: Strategy
    ) -> BoundGeometry:
        if strategy is Strategy.STL:
            return self.binder.assign_neutral(scene)

        diffuse = self.binder.select_diffuse_texture(self.bundle.texture_files)
        if diffuse is None:
            return self.binder.bind(scene)
        if not any(
            has_texture_coordinates(mesh) for mesh in drawable_surfaces(scene).values()
        ):
            # Nothing could display the texture, so it is not fetched.
            console_logger.error(
                f"[{self.bundle.label}] Texture '{diffuse.filename}' not applied, "
                "no surface has texture coordinates. Re-export the model with UV "
                "mapping enabled."
            )
            return self.binder.assign_neutral(scene)

        data = await self.fetcher.fetch(diffuse.url, diffuse.filename)
        try:
            image = await asyncio.to_thread(decode_texture_image, data)
        except Exception as e:
            raise ResourceFetchError(diffuse.filename, e) from e
        self._decoded_images.append(image)
        return self.binder.bind(scene, diffuse_image=image, diffuse_texture=diffuse)


async def normalize(
    bundle: BundleDescriptor,
    cfg: DictConfig | None = None,
    fetcher: ResourceFetcher | None = None,
) -> NormalizedScene:
    """Turn one bundle into a normalized, renderable scene.

    Args:
        bundle: The bundle to normalize.
        cfg: Configuration; loaded with load_config() when omitted.
        fetcher: Optional fetcher (not closed by this call).

    Returns:
        The normalized scene.

    Raises:
        UnsupportedFormatError: Before any fetch, for unknown extensions.
        ResourceFetchError: If a geometry, material, or texture fetch fails.
        GeometryParseError: If the geometry is malformed or degenerate.
        MaterialParseError: If the material document cannot be tokenized.
    """
    if cfg is None:
        cfg = load_config()
    return await BundlePipeline(bundle, cfg, fetcher=fetcher).run()


def normalize_sync(
    bundle: BundleDescriptor,
    cfg: DictConfig | None = None,
    fetcher: ResourceFetcher | None = None,
) -> NormalizedScene:
    """Blocking wrapper around normalize() for callers without an event loop."""
    return asyncio.run(normalize(bundle, cfg=cfg, fetcher=fetcher))


@dataclass
class FailedBundle:
    """Information about a bundle that failed to normalize."""

    index: int
    """Index of the bundle in the original request."""

    bundle: BundleDescriptor

    error: BaseException
    """Terminal error of the bundle."""

    @property
    def error_message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass
class BatchNormalizationResult:
    """Result of normalizing several bundles with potential partial success."""

    scenes: dict[int, NormalizedScene] = field(default_factory=dict)
    """Normalized scenes keyed by index in the original request."""

    failed_bundles: list[FailedBundle] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return len(self.failed_bundles) > 0


async def normalize_bundles(
    bundles: Sequence[BundleDescriptor],
    cfg: DictConfig | None = None,
    max_concurrent_assets: int | None = None,
) -> BatchNormalizationResult:
    """Normalize several bundles concurrently.

    Each bundle runs in its own pipeline; a failing bundle is reported in the
    result and does not affect the others. Cancelling this call cancels every
    pipeline still running.

    Args:
        bundles: Bundles to normalize.
        cfg: Configuration shared by all pipelines (read-only).
        max_concurrent_assets: Optional bound on simultaneously running
            pipelines.
    """
    if cfg is None:
        cfg = load_config()
    semaphore = asyncio.Semaphore(max_concurrent_assets or max(len(bundles), 1))

    async def run_one(bundle: BundleDescriptor) -> NormalizedScene:
        async with semaphore:
            return await BundlePipeline(bundle, cfg).run()

    outcomes = await asyncio.gather(
        *(run_one(bundle) for bundle in bundles), return_exceptions=True
    )

    # Programming errors are not per-asset failures.
    for outcome in outcomes:
        if isinstance(outcome, BaseException) and not isinstance(
            outcome, (AssetNormalizationError, asyncio.CancelledError)
        ):
            for scene in outcomes:
                if isinstance(scene, NormalizedScene):
                    scene.dispose()
            raise outcome

    result = BatchNormalizationResult()
    for index, (bundle, outcome) in enumerate(zip(bundles, outcomes)):
        if isinstance(outcome, NormalizedScene):
            result.scenes[index] = outcome
        else:
            result.failed_bundles.append(
                FailedBundle(index=index, bundle=bundle, error=outcome)
            )

    console_logger.info(
        f"Normalized {len(result.scenes)}/{len(bundles)} bundles, "
        f"{len(result.failed_bundles)} failed"
    )
    return result
