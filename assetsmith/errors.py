"""Error taxonomy for bundle normalization.

Every fatal failure of a single asset surfaces as exactly one of the subclasses
of `AssetNormalizationError`. Unresolved texture references are not errors; they
travel as `UnresolvedTextureWarning` data on the normalized scene.
"""


class AssetNormalizationError(Exception):
    """Base class for all fatal per-asset normalization failures."""


class UnsupportedFormatError(AssetNormalizationError):
    """The geometry filename has an extension outside the supported set."""

    def __init__(self, filename: str, extension: str) -> None:
        self.filename = filename
        self.extension = extension
        shown = f".{extension}" if extension else "(no extension)"
        super().__init__(f"Unsupported geometry format {shown} for '{filename}'")


class ResourceFetchError(AssetNormalizationError):
    """Fetching (or decoding) a geometry, material, or texture resource failed."""

    def __init__(self, resource: str, cause: BaseException) -> None:
        self.resource = resource
        self.cause = cause
        super().__init__(f"Failed to fetch '{resource}': {cause}")


class GeometryParseError(AssetNormalizationError):
    """Geometry is malformed, empty, or degenerate (zero extent)."""


class MaterialParseError(AssetNormalizationError):
    """The material document cannot be tokenized at all."""
