"""Material document resolution.

Wavefront MTL documents in uploaded bundles routinely reference textures by
paths recorded at authoring time: other OS separators, renamed intermediate
folders, absolute paths from the artist's machine. Resolution therefore goes by
filename identity rather than path equality. Every texture directive whose bare
filename matches a texture of the bundle (case-insensitively, ignoring folders)
is rewritten to that texture's URL; everything else passes through verbatim.

Resolution is a pure function of (document text, texture index), which keeps it
testable without fetch or rendering infrastructure.
"""

import logging
import re

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from assetsmith.bundle import TextureFile, TextureIndex, bare_filename
from assetsmith.errors import MaterialParseError

console_logger = logging.getLogger(__name__)

# Texture slots that do not use the "map_" prefix.
_UNPREFIXED_TEXTURE_SLOTS = frozenset({"bump", "disp", "decal", "refl", "norm"})

_NORMAL_SLOTS = frozenset({"map_bump", "bump", "norm"})
_SPECULAR_SLOTS = frozenset({"map_ks", "map_ns"})

# MTL texture options and their (min, max) argument counts.
_TEXTURE_OPTION_ARITY: dict[str, tuple[int, int]] = {
    "blendu": (1, 1),
    "blendv": (1, 1),
    "bm": (1, 1),
    "boost": (1, 1),
    "cc": (1, 1),
    "clamp": (1, 1),
    "imfchan": (1, 1),
    "texres": (1, 1),
    "type": (1, 1),
    "mm": (2, 2),
    "o": (1, 3),
    "s": (1, 3),
    "t": (1, 3),
}

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_NUMBER = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")


class DirectiveKind(Enum):
    DIFFUSE = "diffuse"
    NORMAL = "normal"
    SPECULAR = "specular"
    OTHER = "other"


@dataclass(frozen=True)
class MaterialDirective:
    """One texture directive line of a material document."""

    kind: DirectiveKind

    token: str
    """Directive keyword as written (e.g. "map_Kd")."""

    raw_path_token: str
    """Everything after the keyword, exactly as written."""

    filename: str
    """Bare filename extracted from the payload (options and folders removed)."""

    line_number: int
    """1-based line number in the source document."""

    resolved_url: str | None = None

    @property
    def resolved(self) -> bool:
        return self.resolved_url is not None


@dataclass(frozen=True)
class ResolvedMaterialDocument:
    """Result of resolving a material document against a texture index."""

    rewritten_text: str

    resolved_count: int

    unresolved_directives: tuple[str, ...]
    """Raw path tokens of directives that matched no texture, verbatim and in
    document order."""

    directives: tuple[MaterialDirective, ...] = ()

    @property
    def total_directives(self) -> int:
        return len(self.directives)

    @property
    def resolved_urls(self) -> list[str]:
        """Distinct resolved texture URLs in document order."""
        urls: list[str] = []
        for directive in self.directives:
            if directive.resolved_url and directive.resolved_url not in urls:
                urls.append(directive.resolved_url)
        return urls


@dataclass(frozen=True)
class UnresolvedTextureWarning:
    """Non-fatal notice that a material directive names a missing texture."""

    directive: str
    raw_path_token: str
    filename: str

    @property
    def message(self) -> str:
        return (
            f"Texture '{self.filename}' referenced by {self.directive} was not "
            "found in the bundle"
        )


def is_texture_directive(token: str) -> bool:
    """Whether a line's first token names a texture-map slot."""
    lowered = token.lower()
    return lowered.startswith("map_") or lowered in _UNPREFIXED_TEXTURE_SLOTS


def directive_kind(token: str) -> DirectiveKind:
    lowered = token.lower()
    if lowered == "map_kd":
        return DirectiveKind.DIFFUSE
    if lowered in _NORMAL_SLOTS:
        return DirectiveKind.NORMAL
    if lowered in _SPECULAR_SLOTS:
        return DirectiveKind.SPECULAR
    return DirectiveKind.OTHER


def _strip_texture_options(payload: str) -> str:
    """Skip leading MTL texture options such as "-bm 0.5" or "-s 1 1 1".

    At least one token is always left over for the filename.
    """
    rest = payload
    while rest.startswith("-"):
        parts = rest.split(None, 1)
        option = parts[0][1:].lower()
        if option not in _TEXTURE_OPTION_ARITY or len(parts) < 2:
            break
        rest = parts[1]
        min_args, max_args = _TEXTURE_OPTION_ARITY[option]
        consumed = 0
        while consumed < max_args:
            parts = rest.split(None, 1)
            if len(parts) < 2:
                break
            if consumed >= min_args and not _NUMBER.match(parts[0]):
                break
            rest = parts[1]
            consumed += 1
    return rest


def _split_lines(text: str) -> list[tuple[str, str]]:
    """Split text into (content, line terminator) pairs."""
    lines = []
    start = 0
    for match in _LINE_BREAK.finditer(text):
        lines.append((text[start : match.start()], match.group()))
        start = match.end()
    if start < len(text):
        lines.append((text[start:], ""))
    return lines


def resolve_material(
    raw_material_text: str, texture_index: Mapping[str, TextureFile] | TextureIndex
) -> ResolvedMaterialDocument:
    """Rewrite texture directives of a material document to fetchable URLs.

    Args:
        raw_material_text: The material document as text.
        texture_index: Bundle textures keyed by filename. A plain mapping is
            wrapped into a TextureIndex, so lookups are always case-insensitive
            and folder-agnostic.

    Returns:
        The rewritten document with resolution statistics.

    Raises:
        MaterialParseError: If the document is not text or contains NUL bytes.
    """
    if not isinstance(raw_material_text, str):
        raise MaterialParseError(
            f"Material document must be text, got {type(raw_material_text).__name__}"
        )
    if "\x00" in raw_material_text:
        raise MaterialParseError("Material document contains binary data")

    if not isinstance(texture_index, TextureIndex):
        texture_index = TextureIndex(texture_index.values())

    output: list[str] = []
    directives: list[MaterialDirective] = []
    unresolved: list[str] = []

    for line_number, (content, ending) in enumerate(_split_lines(raw_material_text), 1):
        stripped = content.strip()
        parts = stripped.split(None, 1)
        if not parts or not is_texture_directive(parts[0]):
            output.append(content + ending)
            continue

        token = parts[0]
        payload = parts[1] if len(parts) > 1 else ""
        filename = bare_filename(_strip_texture_options(payload))
        texture = texture_index.lookup(filename) if filename else None

        directive = MaterialDirective(
            kind=directive_kind(token),
            token=token,
            raw_path_token=payload,
            filename=filename,
            line_number=line_number,
            resolved_url=texture.url if texture is not None else None,
        )
        directives.append(directive)

        if texture is None:
            unresolved.append(payload)
            output.append(content + ending)
            continue

        indent = content[: len(content) - len(content.lstrip())]
        output.append(f"{indent}{token} {texture.url}{ending}")

    return ResolvedMaterialDocument(
        rewritten_text="".join(output),
        resolved_count=len(directives) - len(unresolved),
        unresolved_directives=tuple(unresolved),
        directives=tuple(directives),
    )


def decode_material_bytes(data: bytes) -> str:
    """Decode a fetched material document.

    UTF-8 (with or without BOM) is tried first, then Windows-1252 which some
    exporters still write.

    Raises:
        MaterialParseError: If the bytes decode under neither encoding.
    """
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise MaterialParseError("Material document is not valid text")


def unresolved_warnings(
    document: ResolvedMaterialDocument,
) -> list[UnresolvedTextureWarning]:
    """Turn the unresolved directives of a document into warnings."""
    warnings = [
        UnresolvedTextureWarning(
            directive=directive.token,
            raw_path_token=directive.raw_path_token,
            filename=directive.filename,
        )
        for directive in document.directives
        if not directive.resolved
    ]
    for warning in warnings:
        console_logger.warning(warning.message)
    return warnings
