"""Tests for relationship parsing, allocation and hyperlink registration."""
import unittest

from docx_templater.parser.rels_parser import (
    DOCUMENT_RELS_PART,
    RELTYPE_HEADER,
    RELTYPE_HYPERLINK,
    RELTYPE_IMAGE,
    Relationships,
    numeric_ids,
)
from docx_templater.renderer.hyperlinks import HyperlinkRegistry
from docx_templater.utils.xml_utils import Namespaces, parse_xml


doc_rels_xml = """
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
  <Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/header" Target="header1.xml"/>
  <Relationship Id="rId2" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/footer" Target="footer1.xml"/>
  <Relationship Id="rId3" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/image" Target="media/image1.png"/>
  <Relationship Id="rId7" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/numbering" Target="numbering.xml"/>
  <Relationship Id="rId5" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/hyperlink" Target="https://example.com" TargetMode="External"/>
  <Relationship Id="rIdLink1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/hyperlink" Target="https://old.example.com" TargetMode="External"/>
</Relationships>
"""


class RelationshipsTest(unittest.TestCase):
    """Validate relationship parsing and target resolution."""

    def setUp(self) -> None:
        self.relationships = Relationships.from_xml(DOCUMENT_RELS_PART, doc_rels_xml.encode("utf-8"))

    def test_targets_resolve_against_word_folder(self) -> None:
        self.assertEqual(self.relationships.find("rId1").resolved_target, "word/header1.xml")
        self.assertEqual(self.relationships.find("rId3").resolved_target, "word/media/image1.png")
        self.assertEqual(self.relationships.find("rId5").resolved_target, "https://example.com")
        self.assertTrue(self.relationships.find("rId5").is_external)

    def test_queries(self) -> None:
        self.assertEqual(len(self.relationships), 6)
        self.assertIn("rId7", self.relationships)
        self.assertEqual(set(self.relationships.by_type(RELTYPE_HEADER)), {"rId1"})
        self.assertIsNotNone(self.relationships.find_by_target(RELTYPE_IMAGE, "media/image1.png"))

    def test_next_id_is_above_maximum(self) -> None:
        self.assertEqual(self.relationships.next_id(), "rId8")
        self.assertEqual(Relationships().next_id(), "rId1")
        self.assertEqual(sorted(numeric_ids(["rId2", "rIdLink4", "rId10", "x"])), [2, 10])

    def test_add_appends_and_rejects_duplicates(self) -> None:
        record = self.relationships.add(RELTYPE_IMAGE, "media/templated_image1.png")
        self.assertEqual(record.r_id, "rId8")
        self.assertEqual(record.resolved_target, "word/media/templated_image1.png")
        with self.assertRaises(ValueError):
            self.relationships.add(RELTYPE_IMAGE, "media/x.png", r_id="rId1")

    def test_copy_is_independent(self) -> None:
        clone = self.relationships.copy()
        clone.add(RELTYPE_IMAGE, "media/extra.png")
        self.assertEqual(len(self.relationships), 6)
        self.assertEqual(len(clone), 7)

    def test_round_trip_keeps_order_and_mode(self) -> None:
        root = parse_xml(self.relationships.to_xml()).getroot()
        nodes = root.findall("rel:Relationship", Namespaces.RELS)
        self.assertEqual([node.get("Id") for node in nodes], ["rId1", "rId2", "rId3", "rId7", "rId5", "rIdLink1"])
        self.assertEqual(nodes[4].get("TargetMode"), "External")
        self.assertIsNone(nodes[0].get("TargetMode"))

    def test_rels_part_for(self) -> None:
        self.assertEqual(Relationships.rels_part_for("word/document.xml"), DOCUMENT_RELS_PART)
        self.assertEqual(Relationships.rels_part_for("document.xml"), "_rels/document.xml.rels")


class HyperlinkRegistryTest(unittest.TestCase):
    """Synthetic hyperlink ids and the link helper markup."""

    def setUp(self) -> None:
        self.relationships = Relationships.from_xml(DOCUMENT_RELS_PART, doc_rels_xml)
        self.registry = HyperlinkRegistry(self.relationships.ids())

    def test_ids_skip_existing_and_are_stable_per_url(self) -> None:
        first = self.registry.register("https://x")
        second = self.registry.register("https://y")
        self.assertEqual(first, "rIdLink2")
        self.assertEqual(second, "rIdLink3")
        self.assertEqual(self.registry.register("https://x"), first)
        self.assertEqual(len(self.registry), 2)

    def test_link_markup_references_id(self) -> None:
        markup = self.registry.link("https://x?a=1&amp;b=2", "go")
        self.assertIn('r:id="rIdLink2"', markup)
        self.assertIn(">go</w:t>", markup)
        self.assertEqual(self.registry.find("https://x?a=1&b=2"), "rIdLink2")

    def test_link_without_text_shows_url(self) -> None:
        self.assertIn(">https://x?a=1&amp;b=2</w:t>", self.registry.link("https://x?a=1&amp;b=2"))

    def test_apply_adds_external_relationships_once(self) -> None:
        self.registry.register("https://x")
        self.assertEqual(self.registry.apply_to(self.relationships), 1)
        self.assertEqual(self.registry.apply_to(self.relationships), 0)
        record = self.relationships.find("rIdLink2")
        self.assertEqual(record.rel_type, RELTYPE_HYPERLINK)
        self.assertEqual(record.target, "https://x")
        self.assertTrue(record.is_external)

    def test_copy_is_independent(self) -> None:
        clone = self.registry.copy()
        clone.register("https://x")
        self.assertEqual(len(self.registry), 0)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
