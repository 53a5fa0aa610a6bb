"""Canonical pose and scale for arbitrary assets.

Every asset, whatever its source units, is uniformly scaled so its largest
bounding-box dimension equals the target dimension, then translated so it
stands on the ground plane (minimum y = 0) centered over the origin in x and z.
Consumers rely on this to place the camera at a fixed distance.
"""

import logging

from dataclasses import dataclass

import numpy as np
import trimesh

from assetsmith.errors import GeometryParseError

console_logger = logging.getLogger(__name__)

TARGET_DIMENSION = 5.0
CAMERA_DISTANCE_FACTOR = 2.0


@dataclass(frozen=True)
class NormalizedTransform:
    """Uniform scale followed by a translation: p' = p * scale + translation."""

    scale: float

    translation: tuple[float, float, float]

    @property
    def matrix(self) -> np.ndarray:
        """The transform as a 4x4 homogeneous matrix."""
        matrix = np.eye(4)
        matrix[:3, :3] *= self.scale
        matrix[:3, 3] = self.translation
        return matrix

    def apply_to_points(self, points: np.ndarray) -> np.ndarray:
        return np.asarray(points, dtype=np.float64) * self.scale + np.asarray(
            self.translation
        )

    def is_identity(self, atol: float = 1e-9) -> bool:
        return bool(
            np.isclose(self.scale, 1.0, atol=atol)
            and np.allclose(self.translation, 0.0, atol=atol)
        )


@dataclass(frozen=True)
class CameraFraming:
    """Camera placement hint derived from the canonical size."""

    distance: float
    position: tuple[float, float, float]
    target: tuple[float, float, float]


def camera_framing(
    target_dimension: float = TARGET_DIMENSION,
    distance_factor: float = CAMERA_DISTANCE_FACTOR,
) -> CameraFraming:
    """Camera hint for a normalized asset.

    The relationship is fixed to the canonical size, independent of the
    source asset's original units: the camera looks at half the target height
    from `target_dimension * distance_factor` along each axis.
    """
    distance = target_dimension * distance_factor
    return CameraFraming(
        distance=distance,
        position=(distance, distance, distance),
        target=(0.0, target_dimension / 2.0, 0.0),
    )


def compute_normalized_transform(
    bounds: np.ndarray | None, target_dimension: float = TARGET_DIMENSION
) -> NormalizedTransform:
    """Compute the canonical transform for an axis-aligned bounding box.

    Args:
        bounds: (2, 3) array of [min, max] corners in native units, or None for
            empty geometry.
        target_dimension: Desired size of the largest dimension.

    Returns:
        The transform mapping the box onto the ground plane at the origin.

    Raises:
        GeometryParseError: If the geometry is empty, has non-finite bounds, or
            has zero extent (the scale would be undefined).
    """
    if bounds is None:
        raise GeometryParseError("Geometry has no bounds (empty geometry)")

    bounds = np.asarray(bounds, dtype=np.float64)
    if bounds.shape != (2, 3) or not np.all(np.isfinite(bounds)):
        raise GeometryParseError(f"Geometry has invalid bounds: {bounds.tolist()}")

    # Pass 1: uniform scale from the largest extent.
    extent = float(np.max(bounds[1] - bounds[0]))
    if extent <= 0.0:
        raise GeometryParseError(
            "Geometry has zero extent (a single point or degenerate geometry)"
        )
    scale = target_dimension / extent

    # Pass 2: translation from the box after scaling.
    scaled = bounds * scale
    center = (scaled[0] + scaled[1]) / 2.0
    translation = (-float(center[0]), -float(scaled[0][1]), -float(center[2]))

    return NormalizedTransform(scale=float(scale), translation=translation)


def normalize(
    scene: trimesh.Scene, target_dimension: float = TARGET_DIMENSION
) -> NormalizedTransform:
    """Compute and apply the canonical transform to a scene root.

    The transform is applied once to the root frame; geometry buffers are not
    modified.

    Args:
        scene: Parsed scene in native units.
        target_dimension: Desired size of the largest dimension.

    Returns:
        The applied transform.

    Raises:
        GeometryParseError: If the scene's geometry is empty or degenerate.
    """
    transform = compute_normalized_transform(scene.bounds, target_dimension)
    scene.apply_transform(transform.matrix)

    console_logger.info(
        f"Normalized geometry: scale={transform.scale:.6g}, "
        f"translation={tuple(round(t, 6) for t in transform.translation)}"
    )
    return transform
