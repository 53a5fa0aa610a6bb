"""Fallback texture binding for bundles without a material document.

The first image texture in upload order becomes the diffuse map. It is bound
only to surfaces that carry texture coordinates: a texture on a surface without
UVs renders as stretched garbage, so such surfaces get the neutral default
material instead.
"""

import logging

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import trimesh

from omegaconf import DictConfig
from PIL import Image
from trimesh.visual import TextureVisuals
from trimesh.visual.material import PBRMaterial

from assetsmith.bundle import TextureFile
from assetsmith.loaders import drawable_surfaces
from assetsmith.utils.image_utils import DEFAULT_IMAGE_EXTENSIONS, is_image_filename

console_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterialSettings:
    """Parameters of a generated material."""

    color: tuple[int, int, int, int]
    """RGBA base color, 0-255."""

    metallic: float
    roughness: float
    double_sided: bool = False

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "MaterialSettings":
        return cls(
            color=tuple(int(c) for c in cfg.color),
            metallic=float(cfg.metallic),
            roughness=float(cfg.roughness),
            double_sided=bool(cfg.get("double_sided", False)),
        )

    def create_material(
        self, name: str, base_color_texture: Image.Image | None = None
    ) -> PBRMaterial:
        """Create a new material instance; instances are never shared."""
        return PBRMaterial(
            name=name,
            baseColorFactor=np.array(self.color, dtype=np.uint8),
            baseColorTexture=base_color_texture,
            metallicFactor=self.metallic,
            roughnessFactor=self.roughness,
            doubleSided=self.double_sided,
        )


NEUTRAL_MATERIAL = MaterialSettings(color=(136, 136, 136, 255), metallic=0.2, roughness=0.6)
FALLBACK_MATERIAL = MaterialSettings(
    color=(255, 255, 255, 255), metallic=0.2, roughness=0.6, double_sided=True
)


@dataclass(frozen=True)
class BoundGeometry:
    """A parsed scene together with the outcome of material binding."""

    scene: trimesh.Scene

    textured_surfaces: tuple[str, ...] = ()
    """Surfaces that received the fallback diffuse map."""

    untextured_surfaces: tuple[str, ...] = ()
    """Surfaces that received the neutral default material."""

    diffuse_texture: TextureFile | None = None
    """Texture used as the fallback diffuse map, if any."""

    @classmethod
    def unbound(cls, scene: trimesh.Scene) -> "BoundGeometry":
        """Wrap a scene whose materials came from the source format."""
        return cls(scene=scene)


def has_texture_coordinates(mesh: trimesh.Trimesh) -> bool:
    """Whether a surface carries one UV coordinate per vertex."""
    visual = mesh.visual
    if not isinstance(visual, TextureVisuals):
        return False
    uv = visual.uv
    return uv is not None and len(uv) > 0 and len(uv) == len(mesh.vertices)


def select_diffuse_texture(
    texture_files: Sequence[TextureFile],
    image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
) -> TextureFile | None:
    """Pick the first image texture in upload order.

    No attempt is made to guess a "best" texture; the bundle carries no
    information that would rank one over another.
    """
    extensions = tuple(image_extensions)
    for texture in texture_files:
        if is_image_filename(texture.filename, extensions):
            return texture
    return None


class FallbackTextureBinder:
    """Binds a single diffuse texture to every surface that can display it."""

    def __init__(
        self,
        neutral: MaterialSettings = NEUTRAL_MATERIAL,
        fallback: MaterialSettings = FALLBACK_MATERIAL,
        image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
    ) -> None:
        self.neutral = neutral
        self.fallback = fallback
        self.image_extensions = tuple(image_extensions)

    @classmethod
    def from_config(cls, cfg: DictConfig) -> "FallbackTextureBinder":
        """Create a binder from the `materials` section of the configuration."""
        return cls(
            neutral=MaterialSettings.from_config(cfg.neutral),
            fallback=MaterialSettings.from_config(cfg.fallback),
            image_extensions=list(cfg.image_extensions),
        )

    def select_diffuse_texture(
        self, texture_files: Sequence[TextureFile]
    ) -> TextureFile | None:
        return select_diffuse_texture(texture_files, self.image_extensions)

    def bind(
        self,
        scene: trimesh.Scene,
        diffuse_image: Image.Image | None = None,
        diffuse_texture: TextureFile | None = None,
    ) -> BoundGeometry:
        """Assign materials to every drawable surface of a scene.

        This is the single mutation pass over the scene's materials.

        Args:
            scene: Parsed scene without a material document.
            diffuse_image: Decoded diffuse map, or None if the bundle has no
                image textures.
            diffuse_texture: The texture file the image was decoded from.

        Returns:
            The scene with binding statistics.
        """
        if diffuse_image is None:
            console_logger.info("No image textures in bundle, using default material")
            return self.assign_neutral(scene)

        textured: list[str] = []
        untextured: list[str] = []

        for name, mesh in drawable_surfaces(scene).items():
            if has_texture_coordinates(mesh):
                material = self.fallback.create_material(
                    name=f"{name}_fallback", base_color_texture=diffuse_image
                )
                mesh.visual = TextureVisuals(uv=mesh.visual.uv, material=material)
                textured.append(name)
                continue

            console_logger.warning(
                f"Surface '{name}' has no texture coordinates, "
                "using the default material"
            )
            self._apply_neutral(name, mesh)
            untextured.append(name)

        console_logger.info(
            f"Texture '{diffuse_texture.filename if diffuse_texture else '?'}' "
            f"applied to {len(textured)}/{len(textured) + len(untextured)} "
            "surfaces with texture coordinates"
        )
        if not textured:
            console_logger.error(
                "No surface has texture coordinates, the texture cannot be "
                "displayed. Re-export the model with UV mapping enabled."
            )

        return BoundGeometry(
            scene=scene,
            textured_surfaces=tuple(textured),
            untextured_surfaces=tuple(untextured),
            diffuse_texture=diffuse_texture,
        )

    def assign_neutral(self, scene: trimesh.Scene) -> BoundGeometry:
        """Give every drawable surface its own neutral default material.

        Used for formats without texture coordinates (STL) and for bundles
        without a usable image texture. Nothing is fetched or decoded.
        """
        names = []
        for name, mesh in drawable_surfaces(scene).items():
            self._apply_neutral(name, mesh)
            names.append(name)
        console_logger.debug(f"Default material applied to {len(names)} surfaces")
        return BoundGeometry(scene=scene, untextured_surfaces=tuple(names))

    def _apply_neutral(self, name: str, mesh: trimesh.Trimesh) -> None:
        mesh.visual = TextureVisuals(
            material=self.neutral.create_material(name=f"{name}_default")
        )
