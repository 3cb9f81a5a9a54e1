"""End-to-end tests for the document handle: parse, render and save."""
import io
import os
import tempfile
import unittest
import zipfile

from docx_templater.errors import (
    CorruptContainerError,
    DataConversionError,
    ErrorCode,
    ReadError,
    TemplateSyntaxError,
)
from docx_templater.model.document_model import DocumentBody
from docx_templater.parser.content_types import CONTENT_TYPES_PART, DOCUMENT_CONTENT_TYPE, ContentTypes
from docx_templater.parser.rels_parser import DOCUMENT_RELS_PART, RELTYPE_HYPERLINK, RELTYPE_IMAGE, Relationships
from docx_templater.renderer.inline_image import InlineImage
from docx_templater.template import DocxTemplate
from docx_templater.tests.docx_fixtures import (
    R_NS,
    WP_NS,
    build_docx,
    core_properties_xml,
    header_xml,
    image_bytes,
    paragraph,
    read_parts,
    table,
    watermark_header,
)
from docx_templater.utils.xml_utils import parse_xml, qn

EXISTING_DRAWING = (
    '<w:p><w:r><w:drawing><wp:inline><wp:docPr id="5" name="Existing"/></wp:inline></w:drawing></w:r></w:p>'
)


def saved_body(parts):
    return DocumentBody(parse_xml(parts["word/document.xml"]))


def paragraph_texts(body):
    return [body.paragraph_text(p) for p in body.iter_paragraphs()]


class RenderScenarioTest(unittest.TestCase):
    """Rendering the document body and saving the result."""

    def render(self, body_xml, data, **kwargs):
        template = DocxTemplate.from_bytes(build_docx(body_xml, **kwargs))
        template.render(data)
        return template, read_parts(template.to_bytes())

    def test_fragmented_placeholder(self) -> None:
        _, parts = self.render(paragraph("{{.First", "Name}}"), {"FirstName": "Ada"})
        body = saved_body(parts)
        texts = [node.text for node in body.root.iter(qn("w:t")) if node.text]
        self.assertEqual(texts, ["Ada"])
        self.assertEqual(len(list(body.iter_paragraphs())), 1)

    def test_range_in_paragraph(self) -> None:
        _, parts = self.render(paragraph("{{range .Items}}- {{.}};{{end}}"), {"Items": ["a", "b", "c"]})
        self.assertEqual(paragraph_texts(saved_body(parts)), ["- a;- b;- c;"])

    def test_template_newline_becomes_break(self) -> None:
        _, parts = self.render(paragraph("{{range .Items}}- {{.}}\n{{end}}"), {"Items": ["a", "b", "c"]})
        body = saved_body(parts)
        self.assertEqual(len(list(body.root.iter(qn("w:br")))), 3)
        self.assertEqual(paragraph_texts(body), ["- a- b- c"])
        self.assertNotIn("\n", "".join(node.text or "" for node in body.root.iter(qn("w:t"))))

    def test_missing_field_is_empty(self) -> None:
        _, parts = self.render(paragraph("[{{.Price}}]"), {})
        self.assertEqual(paragraph_texts(saved_body(parts)), ["[]"])

    def test_trim_markers(self) -> None:
        _, parts = self.render(paragraph("  {{-  .Name  -}}  "), {"Name": " Ada "})
        self.assertEqual(paragraph_texts(saved_body(parts)), ["Ada"])

    def test_special_characters_and_newlines(self) -> None:
        _, parts = self.render(paragraph("{{.Note}}"), {"Note": "R&D <team>\nsecond"})
        body = saved_body(parts)
        self.assertEqual(len(list(body.root.iter(qn("w:br")))), 1)
        self.assertEqual(body.text(), "R&D <team>second")

    def test_table_row_range(self) -> None:
        body_xml = table(["Name"], ["{{range .Rows}}"], ["{{.Name}}"], ["{{end}}"])
        _, parts = self.render(body_xml, {"Rows": [{"Name": "a"}, {"Name": "b"}]})
        body = saved_body(parts)
        rows = list(body.root.iter(qn("w:tr")))
        self.assertEqual(len(rows), 3)
        self.assertEqual(paragraph_texts(body), ["Name", "a", "b"])

    def test_registered_helper(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("{{upper .Name}}")))
        template.register_function("upper", str.upper)
        self.assertIn("link", template.registered_functions())
        template.render({"Name": "ada"})
        self.assertEqual(template.body.text(), "ADA")

    def test_top_level_data_must_be_mapping(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("x")))
        with self.assertRaises(DataConversionError):
            template.render(None)


class ImageRenderTest(unittest.TestCase):
    """Image paths and image values become inline drawings."""

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.logo = os.path.join(self.tmp.name, "logo.png")
        with open(self.logo, "wb") as handle:
            handle.write(image_bytes(100, 50))

    def test_image_path_becomes_drawing(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("{{.Logo}}")))
        template.render({"Logo": self.logo})
        parts = read_parts(template.to_bytes())

        self.assertIn("word/media/templated_image1.png", parts)
        content_types = ContentTypes.from_xml(parts[CONTENT_TYPES_PART])
        self.assertTrue(content_types.has_default("png"))

        root = saved_body(parts).root
        extent = next(root.iter(f"{{{WP_NS}}}extent"))
        self.assertEqual((extent.get("cx"), extent.get("cy")), (str(100 * 12700), str(50 * 12700)))
        blip = next(root.iter(qn("a:blip")))
        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        record = relationships.find(blip.get(f"{{{R_NS}}}embed"))
        self.assertEqual(record.rel_type, RELTYPE_IMAGE)
        self.assertEqual(record.target, "media/templated_image1.png")

    def test_inline_image_value_and_drawing_ids(self) -> None:
        image = InlineImage.from_bytes(image_bytes(10, 10, "JPEG")).resize(20, 10)
        template = DocxTemplate.from_bytes(build_docx(EXISTING_DRAWING + paragraph("{{.Img}}")))
        template.render({"Img": image})
        parts = read_parts(template.to_bytes())

        ids = [node.get("id") for node in saved_body(parts).root.iter(f"{{{WP_NS}}}docPr")]
        self.assertEqual(ids, ["5", "6"])
        self.assertIn("word/media/templated_image1.jpg", parts)
        content_types = ContentTypes.from_xml(parts[CONTENT_TYPES_PART])
        self.assertEqual(content_types.content_type_for("word/media/templated_image1.jpg"), "image/jpeg")

    def test_add_inline_image_snippet(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("x")))
        snippet = template.add_inline_image(InlineImage.from_file(self.logo))
        self.assertIn('r:embed="rId3"', snippet)
        self.assertIn("word/media/templated_image1.png", read_parts(template.to_bytes()))


class HyperlinkRenderTest(unittest.TestCase):
    """The ``link`` helper and the relationships written on save."""

    def test_link_relationship_after_save(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph('{{link "https://x" "go"}}')))
        template.render({})
        parts = read_parts(template.to_bytes())

        hyperlink = next(saved_body(parts).root.iter(qn("w:hyperlink")))
        r_id = hyperlink.get(f"{{{R_NS}}}id")
        self.assertEqual(r_id, "rIdLink1")
        self.assertEqual("".join(hyperlink.itertext()), "go")

        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        links = relationships.by_type(RELTYPE_HYPERLINK)
        self.assertEqual(list(links), [r_id])
        self.assertEqual(links[r_id].target, "https://x")
        self.assertTrue(links[r_id].is_external)

    def test_link_url_from_data_is_decoded(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("{{link .Url}}")))
        template.render({"Url": "https://x?a=1&b=2"})
        parts = read_parts(template.to_bytes())
        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        self.assertEqual(relationships.find("rIdLink1").target, "https://x?a=1&b=2")
        self.assertEqual(saved_body(parts).text(), "https://x?a=1&b=2")

    def test_missing_relationships_part_is_created(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph('{{link "https://x"}}'), document_rels=None))
        template.render({})
        parts = read_parts(template.to_bytes())
        self.assertEqual(list(parts)[-1], DOCUMENT_RELS_PART)
        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        self.assertIn("rIdLink1", relationships)


class PackageIntegrityTest(unittest.TestCase):
    """Every reference in the saved document resolves."""

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.logo = os.path.join(self.tmp.name, "logo.png")
        with open(self.logo, "wb") as handle:
            handle.write(image_bytes(8, 8))

    def test_side_tables_are_complete(self) -> None:
        body_xml = paragraph("{{.Logo}} {{link .Url .Label}}") + paragraph("{{range .Photos}}{{.}}{{end}}")
        template = DocxTemplate.from_bytes(build_docx(body_xml))
        template.render({"Logo": self.logo, "Url": "https://x", "Label": "site", "Photos": [self.logo, self.logo]})
        parts = read_parts(template.to_bytes())

        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        referenced = {
            value
            for node in saved_body(parts).root.iter()
            for key, value in node.attrib.items()
            if key.startswith(f"{{{R_NS}}}")
        }
        self.assertEqual(len(referenced), 4)
        self.assertTrue(referenced <= relationships.ids())

        content_types = ContentTypes.from_xml(parts[CONTENT_TYPES_PART])
        media = [name for name in parts if name.startswith("word/media/")]
        self.assertEqual(len(media), 3)
        for name in media:
            self.assertIsNotNone(content_types.content_type_for(name), name)

    def test_entry_order_is_kept(self) -> None:
        source = build_docx(paragraph("{{.A}}"))
        template = DocxTemplate.from_bytes(source)
        template.render({"A": "x"})
        self.assertEqual(list(read_parts(template.to_bytes())), list(read_parts(source)))

    def test_missing_content_types_are_written_first(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("x"), content_types=None))
        parts = read_parts(template.to_bytes())
        self.assertEqual(list(parts)[0], CONTENT_TYPES_PART)
        content_types = ContentTypes.from_xml(parts[CONTENT_TYPES_PART])
        self.assertEqual(content_types.content_type_for("word/document.xml"), DOCUMENT_CONTENT_TYPE)

    def test_save_to_file(self) -> None:
        template = DocxTemplate.from_bytes(build_docx(paragraph("{{.A}}")))
        template.render({"A": "saved"})
        path = template.save_to_file(os.path.join(self.tmp.name, "out.docx"))
        self.assertEqual(DocxTemplate.from_file(path).body.text(), "saved")


class TransactionalRenderTest(unittest.TestCase):
    """A failed render leaves the handle untouched."""

    def test_failure_in_header_keeps_original_state(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        logo = os.path.join(tmp.name, "logo.png")
        with open(logo, "wb") as handle:
            handle.write(image_bytes(4, 4))

        source = build_docx(
            paragraph("{{.Logo}}", "{{link .Url}}"),
            extra_parts={"word/header1.xml": header_xml(paragraph("{{if .X}}never closed"))},
        )
        template = DocxTemplate.from_bytes(source)
        with self.assertRaises(TemplateSyntaxError) as ctx:
            template.render({"Logo": logo, "Url": "https://x"})
        self.assertEqual(ctx.exception.location, "word/header1.xml")

        parts = read_parts(template.to_bytes())
        self.assertFalse(any(name.startswith("word/media/") for name in parts))
        self.assertIn("{{.Logo}}", template.body.text())
        relationships = Relationships.from_xml(DOCUMENT_RELS_PART, parts[DOCUMENT_RELS_PART])
        self.assertEqual(relationships.by_type(RELTYPE_HYPERLINK), {})


class PeripheralPartTest(unittest.TestCase):
    """Headers, watermarks and document properties."""

    def test_header_and_core_properties(self) -> None:
        source = build_docx(
            paragraph("body"),
            extra_parts={
                "word/header1.xml": header_xml(paragraph("{{.Com", "pany}}")),
                "docProps/core.xml": core_properties_xml("{{.Title}}"),
            },
        )
        template = DocxTemplate.from_bytes(source)
        template.render({"Company": "ACME & Co", "Title": "Q1 & Q2\nDraft"})
        parts = read_parts(template.to_bytes())

        header = parse_xml(parts["word/header1.xml"]).getroot()
        self.assertEqual("".join(node.text or "" for node in header.iter(qn("w:t"))), "ACME & Co")
        core = parse_xml(parts["docProps/core.xml"]).getroot()
        title = core.find("{http://purl.org/dc/elements/1.1/}title")
        self.assertEqual(title.text, "Q1 & Q2\nDraft")

    def test_watermark_rendering(self) -> None:
        template = DocxTemplate.from_bytes(
            build_docx(paragraph("x"), extra_parts={"word/header1.xml": watermark_header("{{.Status}}")})
        )
        self.assertEqual(template.get_watermarks(), ["{{.Status}}"])
        template.render({"Status": "A&B"})
        self.assertEqual(template.get_watermarks(), ["A&B"])
        parse_xml(read_parts(template.to_bytes())["word/header1.xml"])

    def test_watermark_data_is_not_executed(self) -> None:
        header = watermark_header("{{.Status}}").replace("</w:hdr>", paragraph("{{.Company}}") + "</w:hdr>")
        template = DocxTemplate.from_bytes(build_docx(paragraph("x"), extra_parts={"word/header1.xml": header}))
        template.render({"Status": "{{.Secret}}", "Secret": "leaked", "Company": "ACME"})
        self.assertEqual(template.get_watermarks(), ["{{.Secret}}"])
        parts = read_parts(template.to_bytes())
        root = parse_xml(parts["word/header1.xml"]).getroot()
        self.assertEqual("".join(node.text or "" for node in root.iter(qn("w:t"))), "ACME")
        self.assertNotIn(b"leaked", parts["word/header1.xml"])

    def test_replace_watermark(self) -> None:
        template = DocxTemplate.from_bytes(
            build_docx(paragraph("x"), extra_parts={"word/header1.xml": watermark_header("DRAFT")})
        )
        self.assertEqual(template.replace_watermark("DRAFT", "FINAL"), 1)
        self.assertEqual(template.replace_watermark("DRAFT", "FINAL"), 0)
        self.assertEqual(template.get_watermarks(), ["FINAL"])

    def test_get_placeholders(self) -> None:
        source = build_docx(
            paragraph("{{.First", "Name}}") + paragraph("{{range .Items}}{{.}}{{end}}") + paragraph("{{.FirstName}}"),
            extra_parts={
                "word/header1.xml": header_xml(paragraph("{{.Company}}")),
                "docProps/core.xml": core_properties_xml("{{.Title}}"),
            },
        )
        template = DocxTemplate.from_bytes(source)
        self.assertEqual(
            template.get_placeholders(),
            ["{{.FirstName}}", "{{range .Items}}", "{{.}}", "{{end}}", "{{.Company}}", "{{.Title}}"],
        )
        first = next(template.body.iter_paragraphs())
        self.assertEqual(template.body.text_nodes(first)[0].text, "{{.First")


class ContainerErrorTest(unittest.TestCase):
    """Parse failures and freshly created documents."""

    def test_not_a_zip(self) -> None:
        with self.assertRaises(CorruptContainerError):
            DocxTemplate.from_bytes(b"definitely not a zip archive")

    def test_missing_main_document(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("[Content_Types].xml", "<Types/>")
        with self.assertRaises(CorruptContainerError) as ctx:
            DocxTemplate.from_bytes(buffer.getvalue())
        self.assertIn("word/document.xml", ctx.exception.message)

    def test_missing_file(self) -> None:
        with self.assertRaises(ReadError) as ctx:
            DocxTemplate.from_file(os.path.join(tempfile.gettempdir(), "no-such-template.docx"))
        self.assertEqual(ctx.exception.code, ErrorCode.FILE_NOT_FOUND)

    def test_from_stream(self) -> None:
        template = DocxTemplate.from_stream(io.BytesIO(build_docx(paragraph("streamed"))))
        self.assertEqual(template.body.text(), "streamed")

    def test_new_document_round_trip(self) -> None:
        template = DocxTemplate.new()
        template.render({})
        parts = read_parts(template.to_bytes())
        self.assertEqual(list(parts)[0], CONTENT_TYPES_PART)
        reopened = DocxTemplate.from_bytes(template.to_bytes())
        self.assertEqual(paragraph_texts(reopened.body), [""])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
