"""Final assembly of a normalized scene.

The assembled scene is the only artifact that outlives a normalize call. It is
handed to the rendering collaborator, which owns it from then on and calls
`dispose()` when the asset is unmounted.
"""

import logging

from dataclasses import dataclass, field
from typing import Any, Sequence

import trimesh

from PIL import Image

from assetsmith.bundle import TextureFile
from assetsmith.format_dispatch import Strategy
from assetsmith.geometry_normalizer import CameraFraming, NormalizedTransform
from assetsmith.loaders import drawable_surfaces
from assetsmith.material_resolver import UnresolvedTextureWarning
from assetsmith.texture_binder import BoundGeometry, has_texture_coordinates
from assetsmith.utils.image_utils import encode_image_to_base64

console_logger = logging.getLogger(__name__)

# Image-valued attributes across trimesh material types.
_MATERIAL_IMAGE_ATTRIBUTES = (
    "image",
    "baseColorTexture",
    "normalTexture",
    "emissiveTexture",
    "occlusionTexture",
    "metallicRoughnessTexture",
)


@dataclass(frozen=True)
class SurfaceInfo:
    """Render flags for one drawable surface."""

    name: str
    cast_shadow: bool
    receive_shadow: bool
    has_texture_coordinates: bool


@dataclass(frozen=True)
class NormalizedScene:
    """A renderable, canonically posed asset."""

    root: trimesh.Scene = field(repr=False)

    transform: NormalizedTransform

    camera: CameraFraming

    strategy: Strategy

    warnings: tuple[UnresolvedTextureWarning, ...] = ()
    """Unresolved texture notices for display; never fatal."""

    surfaces: tuple[SurfaceInfo, ...] = ()

    fallback_texture: TextureFile | None = None
    """Texture applied automatically because the bundle had no material
    document."""

    @property
    def camera_distance_hint(self) -> float:
        return self.camera.distance

    def export(self, file_type: str = "glb") -> bytes:
        """Serialize the scene, e.g. as GLB for a web renderer."""
        return self.root.export(file_type=file_type)

    def texture_images(self) -> list[Image.Image]:
        """Distinct texture images held by the scene's materials, in surface order."""
        images: dict[int, Image.Image] = {}
        for geometry in self.root.geometry.values():
            material = getattr(getattr(geometry, "visual", None), "material", None)
            if material is None:
                continue
            for attribute in _MATERIAL_IMAGE_ATTRIBUTES:
                image = getattr(material, attribute, None)
                if isinstance(image, Image.Image):
                    images.setdefault(id(image), image)
        return list(images.values())

    def texture_thumbnail(self, max_size: int = 128) -> str | None:
        """Base64 JPEG preview of the first texture image, for catalog listings.

        Returns:
            The encoded thumbnail, or None if the scene has no texture images.
        """
        images = self.texture_images()
        if not images:
            return None
        return encode_image_to_base64(images[0], max_size=max_size)

    def to_dict(self, include_thumbnail: bool = False) -> dict[str, Any]:
        """Summary without geometry, suitable for JSON output."""
        summary = {
            "strategy": self.strategy.value,
            "transform": {
                "scale": self.transform.scale,
                "translation": list(self.transform.translation),
            },
            "camera": {
                "distance": self.camera.distance,
                "position": list(self.camera.position),
                "target": list(self.camera.target),
            },
            "bounds": self.root.bounds.tolist() if self.root.bounds is not None else None,
            "surfaces": [
                {
                    "name": s.name,
                    "cast_shadow": s.cast_shadow,
                    "receive_shadow": s.receive_shadow,
                    "has_texture_coordinates": s.has_texture_coordinates,
                }
                for s in self.surfaces
            ],
            "warnings": [w.message for w in self.warnings],
            "fallback_texture": (
                self.fallback_texture.filename if self.fallback_texture else None
            ),
        }
        if include_thumbnail:
            summary["thumbnail"] = self.texture_thumbnail()
        return summary

    def dispose(self) -> None:
        """Release geometry and texture image memory held by the scene."""
        images = self.texture_images()
        for image in images:
            image.close()

        count = len(self.root.geometry)
        self.root.delete_geometry(list(self.root.geometry.keys()))
        console_logger.debug(
            f"Disposed scene: {count} geometries, {len(images)} texture images"
        )


def assemble(
    bound_geometry: BoundGeometry,
    transform: NormalizedTransform,
    warnings: Sequence[UnresolvedTextureWarning],
    camera: CameraFraming,
    strategy: Strategy,
) -> NormalizedScene:
    """Compose the final scene from bound geometry and the normalized transform.

    Every drawable surface is marked shadow-casting and shadow-receiving. Those
    flags live in each geometry's metadata, where glTF export carries them as
    extras, and in the immutable `surfaces` summary.
    """
    scene = bound_geometry.scene
    textured = set(bound_geometry.textured_surfaces)

    surfaces = []
    for name, mesh in drawable_surfaces(scene).items():
        mesh.metadata["cast_shadow"] = True
        mesh.metadata["receive_shadow"] = True
        surfaces.append(
            SurfaceInfo(
                name=name,
                cast_shadow=True,
                receive_shadow=True,
                has_texture_coordinates=name in textured
                or has_texture_coordinates(mesh),
            )
        )

    normalized = NormalizedScene(
        root=scene,
        transform=transform,
        camera=camera,
        strategy=strategy,
        warnings=tuple(warnings),
        surfaces=tuple(surfaces),
        fallback_texture=bound_geometry.diffuse_texture,
    )
    console_logger.info(
        f"Assembled scene: {len(surfaces)} surfaces, {len(normalized.warnings)} warnings"
    )
    return normalized
