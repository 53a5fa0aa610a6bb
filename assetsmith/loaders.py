"""Geometry loaders, one per dispatch strategy.

Every loader turns fetched bytes into a `trimesh.Scene`. OBJ, STL, and glTF are
parsed in memory by trimesh. FBX is not readable by trimesh, so it is converted
to GLB by the Assimp command line tool first and then loaded like any GLB.
"""

import json
import logging
import shutil
import subprocess
import tempfile

from io import BytesIO
from pathlib import Path

import trimesh

from assetsmith.errors import GeometryParseError
from assetsmith.format_dispatch import Strategy, is_binary_gltf
from assetsmith.virtual_resource import VirtualResourceResolver

console_logger = logging.getLogger(__name__)


def drawable_surfaces(scene: trimesh.Scene) -> dict[str, trimesh.Trimesh]:
    """Triangle-mesh geometries of a scene keyed by geometry name."""
    return {
        name: geometry
        for name, geometry in scene.geometry.items()
        if isinstance(geometry, trimesh.Trimesh)
    }


def _load_scene(
    data: bytes,
    file_type: str,
    filename: str,
    resolver: VirtualResourceResolver | None = None,
) -> trimesh.Scene:
    try:
        scene = trimesh.load_scene(
            file_obj=BytesIO(data), file_type=file_type, resolver=resolver
        )
    except Exception as e:
        raise GeometryParseError(f"Failed to parse '{filename}' as {file_type}: {e}") from e

    if len(scene.geometry) == 0:
        raise GeometryParseError(f"'{filename}' contains no geometry")

    console_logger.info(
        f"Parsed '{filename}': {len(scene.geometry)} geometries, "
        f"{len(drawable_surfaces(scene))} drawable surfaces"
    )
    return scene


def load_obj(
    data: bytes, filename: str, resolver: VirtualResourceResolver | None = None
) -> trimesh.Scene:
    """Load a Wavefront OBJ; materials come from the resolver, if any."""
    return _load_scene(data, "obj", filename, resolver=resolver)


def load_stl(data: bytes, filename: str) -> trimesh.Scene:
    return _load_scene(data, "stl", filename)


def load_gltf(
    data: bytes, filename: str, resolver: VirtualResourceResolver | None = None
) -> trimesh.Scene:
    """Load a glTF JSON document or a binary GLB container."""
    file_type = "glb" if is_binary_gltf(filename) else "gltf"
    return _load_scene(data, file_type, filename, resolver=resolver)


def gltf_external_uris(data: bytes, filename: str) -> list[str]:
    """List buffer and image URIs a glTF JSON document loads from elsewhere.

    Embedded data URIs and bufferView-backed images need no fetch and are
    skipped.

    Raises:
        GeometryParseError: If the document is not valid glTF JSON.
    """
    try:
        document = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GeometryParseError(f"'{filename}' is not a valid glTF document: {e}") from e
    if not isinstance(document, dict):
        raise GeometryParseError(f"'{filename}' is not a valid glTF document")

    uris: list[str] = []
    for section in ("buffers", "images"):
        for entry in document.get(section) or []:
            uri = entry.get("uri") if isinstance(entry, dict) else None
            if uri and not uri.startswith("data:") and uri not in uris:
                uris.append(uri)
    return uris


class FbxConverter:
    """Converts FBX files to GLB with the Assimp command line tool."""

    def __init__(self, command: str = "assimp", timeout_s: float | None = 300) -> None:
        """Initialize the converter.

        Args:
            command: Assimp executable name or path.
            timeout_s: Conversion timeout in seconds (None for no limit).
        """
        self.command = command
        self.timeout_s = timeout_s

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def convert_to_glb(self, data: bytes, filename: str) -> bytes:
        """Convert FBX bytes to GLB bytes.

        Assimp only reads from disk, so the conversion runs inside a scratch
        directory that is removed afterward.

        Raises:
            GeometryParseError: If Assimp is missing, fails, or times out.
        """
        if not self.is_available():
            raise GeometryParseError(
                f"Cannot load '{filename}': FBX conversion requires the "
                f"'{self.command}' command line tool"
            )

        with tempfile.TemporaryDirectory(prefix="assetsmith_fbx_") as scratch:
            input_path = Path(scratch) / "input.fbx"
            output_path = Path(scratch) / "output.glb"
            input_path.write_bytes(data)

            try:
                result = subprocess.run(
                    [
                        self.command,
                        "export",
                        str(input_path),
                        str(output_path),
                        "--format=glb2",
                    ],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_s,
                )
            except subprocess.TimeoutExpired as e:
                raise GeometryParseError(f"FBX conversion of '{filename}' timed out") from e

            if result.returncode != 0 or not output_path.exists():
                raise GeometryParseError(
                    f"FBX conversion of '{filename}' failed "
                    f"(rc={result.returncode}): {result.stderr.strip()}"
                )

            console_logger.info(f"Converted '{filename}' from FBX to GLB")
            return output_path.read_bytes()


def load_fbx(data: bytes, filename: str, converter: FbxConverter) -> trimesh.Scene:
    glb = converter.convert_to_glb(data, filename)
    return _load_scene(glb, "glb", filename)


def parse_geometry(
    strategy: Strategy,
    data: bytes,
    filename: str,
    resolver: VirtualResourceResolver | None = None,
    fbx_converter: FbxConverter | None = None,
) -> trimesh.Scene:
    """Parse geometry bytes with the loader for the given strategy.

    Args:
        strategy: Strategy returned by dispatch().
        data: Geometry file bytes.
        filename: Geometry filename, used for messages and glTF container type.
        resolver: Companion resources (material document, textures, buffers).
        fbx_converter: Converter for the FBX strategy.

    Returns:
        The parsed scene.

    Raises:
        GeometryParseError: If the geometry cannot be parsed or is empty.
    """
    if strategy is Strategy.OBJ:
        return load_obj(data, filename, resolver=resolver)
    if strategy is Strategy.STL:
        return load_stl(data, filename)
    if strategy is Strategy.GLTF:
        return load_gltf(data, filename, resolver=resolver)
    if strategy is Strategy.FBX:
        return load_fbx(data, filename, fbx_converter or FbxConverter())
    raise ValueError(f"Unknown strategy {strategy}")
