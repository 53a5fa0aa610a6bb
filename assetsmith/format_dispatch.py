"""Geometry format dispatch.

Maps a geometry filename to one of a closed set of loading strategies. Unknown
extensions fail before anything is fetched.
"""

import logging

from enum import Enum

from assetsmith.bundle import bare_filename
from assetsmith.errors import UnsupportedFormatError

console_logger = logging.getLogger(__name__)


class Strategy(Enum):
    """Loading strategy for a geometry file."""

    OBJ = "obj"
    FBX = "fbx"
    STL = "stl"
    GLTF = "gltf"

    @property
    def carries_materials(self) -> bool:
        """Whether the format embeds its own material description.

        OBJ delegates materials to a separate MTL document and STL has none, so
        those two are the only candidates for fallback texture binding.
        """
        return self in (Strategy.FBX, Strategy.GLTF)


_EXTENSION_STRATEGIES: dict[str, Strategy] = {
    "obj": Strategy.OBJ,
    "fbx": Strategy.FBX,
    "stl": Strategy.STL,
    "gltf": Strategy.GLTF,
    "glb": Strategy.GLTF,
}


def file_extension(filename: str) -> str:
    """Lower-cased text after the last dot of the bare filename ("" if no dot).

    A name that is only an extension, such as ".obj", counts as having one.
    """
    name = bare_filename(filename)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def dispatch(filename: str) -> Strategy:
    """Select the loading strategy for a geometry filename.

    Args:
        filename: Geometry filename, optionally with a directory prefix.

    Returns:
        The strategy for the file's extension.

    Raises:
        UnsupportedFormatError: If the extension is not supported.
    """
    extension = file_extension(filename)
    strategy = _EXTENSION_STRATEGIES.get(extension)
    if strategy is None:
        raise UnsupportedFormatError(filename=filename, extension=extension)
    console_logger.debug(f"Dispatching '{filename}' to {strategy.name} loader")
    return strategy


def is_binary_gltf(filename: str) -> bool:
    """Whether a glTF file is the self-contained binary (.glb) variant."""
    return file_extension(filename) == "glb"


def supported_extensions() -> list[str]:
    """Accepted geometry extensions, sorted, without the leading dot."""
    return sorted(_EXTENSION_STRATEGIES)
