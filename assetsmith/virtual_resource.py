"""In-memory resources for geometry loaders.

Loaders that consume companion files (OBJ -> MTL -> textures, glTF -> buffers and
images) ask a `trimesh` resolver for them by name. The rewritten material
document and prefetched bytes are served from memory here, so no temporary files
and no second network round-trip are involved.
"""

import logging
import posixpath

from typing import Iterable, Mapping
from urllib.parse import unquote

from trimesh.resolvers import Resolver

from assetsmith.bundle import bare_filename

console_logger = logging.getLogger(__name__)


class VirtualResourceResolver(Resolver):
    """Serves named byte buffers to trimesh loaders.

    Lookups try the exact name, its URL-unquoted form, and finally the bare
    filename (case-insensitive), since loaders may normalize the references they
    read from a document.
    """

    def __init__(
        self,
        resources: Mapping[str, bytes] | None = None,
        material_document: bytes | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            resources: Buffers keyed by the name or URL a loader will request.
            material_document: Rewritten MTL document served for any ".mtl"
                request, whatever name the OBJ's mtllib line uses.
        """
        self._resources: dict[str, bytes] = {}
        self._by_filename: dict[str, bytes] = {}
        self._material_document = material_document
        for name, data in (resources or {}).items():
            self.add(name, data)

    def add(self, name: str, data: bytes) -> None:
        self._resources[name] = data
        # First registration wins for bare filename lookups.
        self._by_filename.setdefault(bare_filename(unquote(name)).lower(), data)

    def get(self, key: str) -> bytes:
        if self._material_document is not None and key.strip().lower().endswith(".mtl"):
            return self._material_document

        for candidate in (key, unquote(key)):
            if candidate in self._resources:
                return self._resources[candidate]

        data = self._by_filename.get(bare_filename(unquote(key)).lower())
        if data is not None:
            return data

        console_logger.debug(f"Virtual resource not available: {key}")
        raise FileNotFoundError(key)

    def write(self, name: str, data) -> None:
        raise NotImplementedError("Virtual resources are read-only")

    def namespaced(self, namespace: str) -> "VirtualResourceResolver":
        # Every resource is addressed by URL or filename, so a namespace does
        # not change what can be resolved.
        return self

    def keys(self) -> Iterable[str]:
        names = list(self._resources)
        if self._material_document is not None:
            names.append("material.mtl")
        return names

    def __len__(self) -> int:
        return len(self._resources)


def mtllib_reference(obj_text: str) -> str | None:
    """Name referenced by the first mtllib statement of an OBJ document."""
    for line in obj_text.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) == 2 and parts[0] == "mtllib":
            return parts[1].strip()
    return None


def ensure_mtllib(obj_data: bytes, material_name: str) -> bytes:
    """Make sure an OBJ document references a material library.

    Bundles may ship an MTL next to an OBJ that never names it; a reference is
    prepended so the loader requests the material document.
    """
    text = obj_data.decode("utf-8", errors="replace")
    if mtllib_reference(text) is not None:
        return obj_data
    console_logger.info(
        f"OBJ has no mtllib statement, binding material document '{material_name}'"
    )
    name = posixpath.basename(material_name.replace("\\", "/")) or "material.mtl"
    return f"mtllib {name}\n".encode("utf-8") + obj_data
