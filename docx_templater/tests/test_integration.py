"""
Integration tests for the complete templating pipeline.

Tests the end-to-end flow from a template on disk to the rendered DOCX file.
"""

import os
import tempfile
import unittest
from dataclasses import dataclass
from typing import List

from docx_templater.errors import InvalidFunctionError, ReadError
from docx_templater.main import parse_template, render_docx
from docx_templater.template import DocxTemplate
from docx_templater.tests.docx_fixtures import build_docx, header_xml, image_bytes, paragraph, read_parts, table


@dataclass
class LineItem:
    name: str
    price: float


@dataclass
class Invoice:
    customer: str
    items: List[LineItem]
    logo: str


class IntegrationTest(unittest.TestCase):
    """Integration tests for complete DOCX processing pipeline."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.template_path = os.path.join(self.tmp.name, "invoice.docx")
        self.output_path = os.path.join(self.tmp.name, "out", "invoice.docx")
        os.makedirs(os.path.dirname(self.output_path))
        self.logo = os.path.join(self.tmp.name, "logo.png")
        with open(self.logo, "wb") as handle:
            handle.write(image_bytes(20, 10))

        body = (
            paragraph("Invoice for {{.cust", "omer}}")
            + paragraph("{{.logo}}")
            + table(
                ["Item", "Price"],
                ["{{range .items}}"],
                ["{{.name}}", '{{printf "%.2f" .price}}'],
                ["{{end}}"],
            )
            + paragraph("Total: {{money .items}}")
        )
        header = header_xml(paragraph("{{upper .customer}}"))
        with open(self.template_path, "wb") as handle:
            handle.write(build_docx(body, extra_parts={"word/header1.xml": header}))

    def invoice(self):
        return Invoice("ACME", [LineItem("Bolts", 2.5), LineItem("Nuts", 1.25)], self.logo)

    @staticmethod
    def money(items):
        return "%.2f" % sum(item["price"] for item in items)

    def test_render_docx_writes_output(self):
        """Test the full parse, register, render and save pipeline."""
        result = render_docx(
            self.template_path,
            self.invoice(),
            self.output_path,
            functions={"upper": str.upper, "money": self.money},
        )

        self.assertTrue(result.is_file())
        rendered = DocxTemplate.from_file(result)
        self.assertEqual(
            rendered.body.text(),
            "Invoice for ACME\n\nItem\nPrice\nBolts\n2.50\nNuts\n1.25\nTotal: 3.75",
        )
        self.assertEqual(rendered.get_placeholders(), [])
        parts = read_parts(result.read_bytes())
        self.assertIn("word/media/templated_image1.png", parts)
        self.assertIn(b"ACME", parts["word/header1.xml"])

    def test_unknown_helper_is_reported(self):
        """Test that a missing helper fails without writing output."""
        with self.assertRaises(InvalidFunctionError) as ctx:
            render_docx(self.template_path, self.invoice(), self.output_path, functions={"upper": str.upper})
        self.assertEqual(ctx.exception.location, "document body")
        self.assertFalse(os.path.exists(self.output_path))

    def test_parse_template(self):
        """Test loading a template and listing its placeholders."""
        template = parse_template(self.template_path)
        self.assertEqual(template.source_name, "invoice.docx")
        self.assertIn("{{.customer}}", template.get_placeholders())
        self.assertIn("{{upper .customer}}", template.get_placeholders())

    def test_missing_template(self):
        """Test that a missing template path raises a read error."""
        with self.assertRaises(ReadError):
            render_docx(os.path.join(self.tmp.name, "absent.docx"), {}, self.output_path)


if __name__ == '__main__':
    unittest.main()
