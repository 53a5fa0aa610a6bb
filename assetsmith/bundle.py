"""Bundle descriptors: one geometry file, an optional material document, and textures.

Descriptors are created by the catalog collaborator and are immutable for the
duration of a normalize operation. URLs are expected to be resolvable by the
fetcher; catalog-relative paths (e.g. "/uploads/<id>/model.obj") can be made
absolute with a base URL.
"""

import logging
import posixpath

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping
from urllib.parse import urljoin, urlparse

console_logger = logging.getLogger(__name__)

MATERIAL_DOCUMENT_EXTENSION = ".mtl"


@dataclass(frozen=True)
class GeometryFile:
    """The primary geometry file of a bundle."""

    filename: str
    """Bare filename including extension (e.g. "chair.obj")."""

    url: str
    """Location the fetcher can read the file from."""

    mimetype: str = "application/octet-stream"
    size: int = 0


@dataclass(frozen=True)
class MaterialFile:
    """An explicitly uploaded material-description document."""

    filename: str
    url: str
    size: int = 0


@dataclass(frozen=True)
class TextureFile:
    """One file from the uploaded texture folder tree."""

    filename: str
    """Bare filename; the key used for texture matching."""

    url: str

    folder_path: str = ""
    """Folder the file was uploaded from, relative to the picked root. Not used
    for matching since uploaded folder structure rarely mirrors the paths
    recorded in material documents."""

    size: int = 0
    mimetype: str = "application/octet-stream"


@dataclass(frozen=True)
class BundleDescriptor:
    """A geometry file plus optional material document plus textures."""

    geometry_file: GeometryFile

    material_file: MaterialFile | None = None

    texture_files: tuple[TextureFile, ...] = ()
    """Texture files in upload order. Order is significant for fallback texture
    selection."""

    bundle_id: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        # Accept any iterable but store an immutable tuple.
        if not isinstance(self.texture_files, tuple):
            object.__setattr__(self, "texture_files", tuple(self.texture_files))

    @property
    def label(self) -> str:
        """Short human readable label for log messages."""
        return self.name or self.bundle_id or self.geometry_file.filename

    def with_base_url(self, base_url: str | None) -> "BundleDescriptor":
        """Copy of the descriptor with every relative URL joined onto base_url."""
        if not base_url:
            return self
        return replace(
            self,
            geometry_file=replace(
                self.geometry_file, url=absolute_url(self.geometry_file.url, base_url)
            ),
            material_file=(
                replace(
                    self.material_file,
                    url=absolute_url(self.material_file.url, base_url),
                )
                if self.material_file is not None
                else None
            ),
            texture_files=tuple(
                replace(texture, url=absolute_url(texture.url, base_url))
                for texture in self.texture_files
            ),
        )

    @classmethod
    def from_catalog_record(
        cls, record: Mapping[str, Any], base_url: str | None = None
    ) -> "BundleDescriptor":
        """Build a descriptor from a catalog record.

        The catalog stores records of the form::

            {"id": ..., "name": ...,
             "modelFile": {"filename", "path", "mimetype", "size"},
             "mtlFile": {"filename", "path", "size"} | null,
             "textures": [{"filename", "path", "folderPath", "mimetype", "size"}]}

        Args:
            record: Parsed catalog record.
            base_url: Optional server root used to absolutize catalog paths.

        Returns:
            The corresponding BundleDescriptor.

        Raises:
            ValueError: If the record has no geometry file.
        """
        model_file = record.get("modelFile")
        if not model_file:
            raise ValueError("Catalog record has no modelFile")

        geometry_file = GeometryFile(
            filename=model_file["filename"],
            url=absolute_url(_record_url(model_file), base_url),
            mimetype=model_file.get("mimetype") or "application/octet-stream",
            size=int(model_file.get("size") or 0),
        )

        material_file = None
        mtl_file = record.get("mtlFile")
        if mtl_file:
            material_file = MaterialFile(
                filename=mtl_file["filename"],
                url=absolute_url(_record_url(mtl_file), base_url),
                size=int(mtl_file.get("size") or 0),
            )

        texture_files = tuple(
            TextureFile(
                filename=texture["filename"],
                url=absolute_url(_record_url(texture), base_url),
                folder_path=texture.get("folderPath") or "",
                size=int(texture.get("size") or 0),
                mimetype=texture.get("mimetype") or "application/octet-stream",
            )
            for texture in record.get("textures") or []
        )

        return cls(
            geometry_file=geometry_file,
            material_file=material_file,
            texture_files=texture_files,
            bundle_id=str(record.get("id") or ""),
            name=str(record.get("name") or ""),
        )


def _record_url(entry: Mapping[str, Any]) -> str:
    # Catalog records call the location "path"; descriptors built elsewhere
    # may already use "url".
    return entry.get("url") or entry["path"]


def absolute_url(url: str, base_url: str | None) -> str:
    """Join a catalog-relative URL onto a base URL.

    URLs that already carry a scheme are returned unchanged, as is everything
    when no base URL is configured.
    """
    if not base_url or urlparse(url).scheme:
        return url
    return urljoin(base_url if base_url.endswith("/") else base_url + "/", url.lstrip("/"))


def bare_filename(path: str) -> str:
    """Strip both "/" and "\\" style directory prefixes from a path."""
    return path.replace("\\", "/").rsplit("/", 1)[-1]


class TextureIndex(Mapping[str, TextureFile]):
    """Read-only lookup of texture files by case-insensitive bare filename.

    Folder paths are ignored. When several files share a filename, the first
    one in upload order wins.
    """

    def __init__(self, texture_files: Iterable[TextureFile] = ()) -> None:
        entries: dict[str, TextureFile] = {}
        for texture in texture_files:
            key = bare_filename(texture.filename).lower()
            if key in entries:
                console_logger.debug(
                    f"Duplicate texture filename '{texture.filename}' in "
                    f"'{texture.folder_path}', keeping the first upload"
                )
                continue
            entries[key] = texture
        self._entries = MappingProxyType(entries)

    @classmethod
    def from_bundle(cls, bundle: BundleDescriptor) -> "TextureIndex":
        return cls(bundle.texture_files)

    def lookup(self, filename: str) -> TextureFile | None:
        """Find a texture by filename, ignoring case and any directory prefix."""
        return self._entries.get(bare_filename(filename).lower())

    def __getitem__(self, key: str) -> TextureFile:
        texture = self.lookup(key)
        if texture is None:
            raise KeyError(key)
        return texture

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"TextureIndex({list(self._entries)})"


@dataclass(frozen=True)
class MaterialSource:
    """Where the material document of a bundle comes from."""

    filename: str
    url: str
    from_texture_folder: bool = False
    """True when the document was discovered among the texture files rather
    than uploaded as the bundle's material file."""


def find_material_document(bundle: BundleDescriptor) -> MaterialSource | None:
    """Locate the material document for a bundle.

    The explicit material file wins. Otherwise the texture folder is searched
    for an .mtl file, preferring one named after the geometry file and then
    the first one in upload order.

    Returns:
        The material source, or None if the bundle has no material document.
    """
    if bundle.material_file is not None:
        return MaterialSource(
            filename=bundle.material_file.filename, url=bundle.material_file.url
        )

    candidates = [
        texture
        for texture in bundle.texture_files
        if texture.filename.lower().endswith(MATERIAL_DOCUMENT_EXTENSION)
    ]
    if not candidates:
        return None

    stem = posixpath.splitext(bare_filename(bundle.geometry_file.filename))[0].lower()
    same_name = [
        texture
        for texture in candidates
        if posixpath.splitext(bare_filename(texture.filename))[0].lower() == stem
    ]
    chosen = (same_name or candidates)[0]
    console_logger.info(
        f"Using material document '{chosen.filename}' found among texture files"
    )
    return MaterialSource(filename=chosen.filename, url=chosen.url, from_texture_folder=True)

