import unittest

from assetsmith.bundle import TextureFile, TextureIndex
from assetsmith.errors import MaterialParseError
from assetsmith.material_resolver import (
    DirectiveKind,
    decode_material_bytes,
    directive_kind,
    is_texture_directive,
    resolve_material,
    unresolved_warnings,
)


def make_index(*filenames: str) -> TextureIndex:
    return TextureIndex(
        TextureFile(filename=name, url=f"https://cdn.example.com/t/{name}")
        for name in filenames
    )


class TestResolveMaterial(unittest.TestCase):
    """Test rewriting of material document texture directives."""

    def test_resolves_by_case_insensitive_bare_filename(self):
        """An artist's absolute path resolves against an upload named differently in case."""
        text = "newmtl wood\nmap_Kd C:\\Users\\artist\\textures\\foo.png\n"
        document = resolve_material(text, make_index("Foo.PNG"))

        self.assertEqual(
            document.rewritten_text,
            "newmtl wood\nmap_Kd https://cdn.example.com/t/Foo.PNG\n",
        )
        self.assertEqual(document.resolved_count, 1)
        self.assertEqual(document.unresolved_directives, ())

    def test_unresolved_directive_passes_through_verbatim(self):
        text = "newmtl a\nmap_Kd textures/missing texture.png\nKd 1 1 1\n"
        document = resolve_material(text, make_index("other.png"))

        self.assertEqual(document.rewritten_text, text)
        self.assertEqual(document.resolved_count, 0)
        self.assertEqual(
            document.unresolved_directives, ("textures/missing texture.png",)
        )

    def test_counts_cover_every_directive(self):
        """Resolved plus unresolved always equals the number of directive lines."""
        text = (
            "newmtl body\n"
            "map_Kd diffuse.jpg\n"
            "map_Bump normal.png\n"
            "bump normal.png\n"
            "map_Ks missing_spec.png\n"
            "map_d alpha.tga\n"
            "disp height.png\n"
        )
        document = resolve_material(text, make_index("diffuse.jpg", "normal.png"))

        self.assertEqual(document.total_directives, 6)
        self.assertEqual(document.resolved_count, 3)
        self.assertEqual(
            document.unresolved_directives,
            ("missing_spec.png", "alpha.tga", "height.png"),
        )
        self.assertEqual(
            document.resolved_count + len(document.unresolved_directives),
            document.total_directives,
        )

    def test_non_directive_lines_are_untouched(self):
        text = "# comment map_Kd a.png\nnewmtl m\nKa 0.1 0.1 0.1\nNs 10\nillum 2\n"
        document = resolve_material(text, make_index("a.png"))
        self.assertEqual(document.rewritten_text, text)
        self.assertEqual(document.total_directives, 0)

    def test_texture_options_are_skipped_when_matching(self):
        text = "map_Bump -bm 0.5 normal.png\nmap_Kd -s 1 1 1 -clamp on wood.jpg\n"
        document = resolve_material(text, make_index("normal.png", "wood.jpg"))

        self.assertEqual(
            document.rewritten_text,
            "map_Bump https://cdn.example.com/t/normal.png\n"
            "map_Kd https://cdn.example.com/t/wood.jpg\n",
        )
        self.assertEqual(document.directives[0].filename, "normal.png")
        self.assertEqual(document.directives[0].raw_path_token, "-bm 0.5 normal.png")

    def test_indentation_and_line_endings_preserved(self):
        text = "newmtl m\r\n\tmap_Kd ./tex/a.png\r\n"
        document = resolve_material(text, make_index("a.png"))
        self.assertEqual(
            document.rewritten_text,
            "newmtl m\r\n\tmap_Kd https://cdn.example.com/t/a.png\r\n",
        )

    def test_first_upload_wins_on_duplicate_filenames(self):
        index = TextureIndex(
            [
                TextureFile(filename="wood.png", url="https://a/wood.png"),
                TextureFile(filename="WOOD.png", url="https://b/wood.png"),
            ]
        )
        document = resolve_material("map_Kd wood.png\n", index)
        self.assertEqual(document.rewritten_text, "map_Kd https://a/wood.png\n")

    def test_plain_mapping_is_accepted(self):
        texture = TextureFile(filename="Wood.png", url="https://a/Wood.png")
        document = resolve_material("map_Kd wood.png", {"Wood.png": texture})
        self.assertEqual(document.rewritten_text, "map_Kd https://a/Wood.png")

    def test_resolved_urls_are_distinct_in_document_order(self):
        text = "map_Kd b.png\nmap_Ka a.png\nmap_Kd b.png\n"
        document = resolve_material(text, make_index("a.png", "b.png"))
        self.assertEqual(
            document.resolved_urls,
            ["https://cdn.example.com/t/b.png", "https://cdn.example.com/t/a.png"],
        )

    def test_is_pure(self):
        text = "map_Kd a.png\nmap_Kd b.png\n"
        index = make_index("a.png")
        self.assertEqual(resolve_material(text, index), resolve_material(text, index))

    def test_binary_document_raises(self):
        with self.assertRaises(MaterialParseError):
            resolve_material("newmtl a\x00\x01", make_index())

    def test_non_text_document_raises(self):
        with self.assertRaises(MaterialParseError):
            resolve_material(b"newmtl a", make_index())


class TestDirectiveClassification(unittest.TestCase):
    """Test texture directive detection and kinds."""

    def test_texture_directives(self):
        for token in ("map_Kd", "MAP_KA", "map_Bump", "bump", "disp", "decal", "refl", "norm"):
            self.assertTrue(is_texture_directive(token), token)
        for token in ("Kd", "newmtl", "mtllib", "illum", "#"):
            self.assertFalse(is_texture_directive(token), token)

    def test_kinds(self):
        self.assertEqual(directive_kind("map_Kd"), DirectiveKind.DIFFUSE)
        self.assertEqual(directive_kind("bump"), DirectiveKind.NORMAL)
        self.assertEqual(directive_kind("map_Ks"), DirectiveKind.SPECULAR)
        self.assertEqual(directive_kind("map_d"), DirectiveKind.OTHER)


class TestMaterialDecoding(unittest.TestCase):
    """Test decoding and warnings for fetched material documents."""

    def test_decodes_utf8_with_bom(self):
        self.assertEqual(decode_material_bytes(b"\xef\xbb\xbfnewmtl a"), "newmtl a")

    def test_falls_back_to_cp1252(self):
        self.assertEqual(decode_material_bytes(b"map_Kd caf\xe9.png"), "map_Kd caf\u00e9.png")

    def test_unresolved_warnings(self):
        document = resolve_material(
            "map_Kd C:\\tex\\Missing.png\nmap_Kd a.png\n", make_index("a.png")
        )
        with self.assertLogs("assetsmith.material_resolver", level="WARNING"):
            warnings = unresolved_warnings(document)

        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0].directive, "map_Kd")
        self.assertEqual(warnings[0].raw_path_token, "C:\\tex\\Missing.png")
        self.assertEqual(warnings[0].filename, "Missing.png")
        self.assertIn("Missing.png", warnings[0].message)


if __name__ == "__main__":
    unittest.main()
