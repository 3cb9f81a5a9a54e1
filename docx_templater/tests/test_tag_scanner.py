"""Tests for delimiter scanning."""
import unittest

from docx_templater.model.elements import DelimiterKind
from docx_templater.renderer.tag_scanner import (
    TagScanner,
    extract_tag_content,
    find_all_tags,
    has_trim_left,
    has_trim_right,
    is_block_tag,
)


class TagScannerTest(unittest.TestCase):
    """Balance tracking over plain and trimmed delimiters."""

    def setUp(self) -> None:
        self.scanner = TagScanner()

    def test_complete_tag_is_balanced(self) -> None:
        result = self.scanner.scan("Hello {{.Name}}!")
        self.assertTrue(result.is_balanced)
        self.assertEqual([token.kind for token in result.tokens], [DelimiterKind.OPEN, DelimiterKind.CLOSE])
        self.assertEqual(result.tokens[0].position, 6)

    def test_open_without_close_needs_more_text(self) -> None:
        result = self.scanner.scan("{{.First")
        self.assertEqual(result.balance, 1)
        self.assertTrue(result.needs_more_text)
        self.assertEqual(result.first_open(), 0)

    def test_trailing_brace_is_pending(self) -> None:
        result = self.scanner.scan("price {")
        self.assertEqual(result.balance, 0)
        self.assertTrue(result.pending_open_brace)
        self.assertTrue(result.needs_more_text)

    def test_orphan_close_is_reported(self) -> None:
        result = self.scanner.scan("Name}} and more")
        self.assertEqual(result.orphan_close, 4)
        self.assertEqual(result.tokens[0].kind, DelimiterKind.ORPHAN_CLOSE)

    def test_trim_markers_balance_like_plain_delimiters(self) -> None:
        result = self.scanner.scan("{{- .Name -}}")
        self.assertTrue(result.is_balanced)
        self.assertTrue(result.tokens[0].trim)
        self.assertTrue(result.tokens[1].trim)

    def test_balance_counts_unclosed_opens(self) -> None:
        self.assertEqual(self.scanner.balance("{{if .A}}{{.B"), 1)
        self.assertEqual(self.scanner.balance("{{.A}}{{.B}}"), 0)

    def test_interior_is_not_parsed(self) -> None:
        self.assertTrue(self.scanner.scan("{{ not even ( valid }}").is_balanced)


class TagHelpersTest(unittest.TestCase):
    """Helpers used for control-row collapsing and placeholder listing."""

    def test_find_all_tags_in_order(self) -> None:
        self.assertEqual(find_all_tags("a {{.X}} b {{- .Y -}}"), ["{{.X}}", "{{- .Y -}}"])

    def test_extract_tag_content(self) -> None:
        self.assertEqual(extract_tag_content("{{- range .Items -}}"), "range .Items")
        self.assertEqual(extract_tag_content("{{ .Name }}"), ".Name")

    def test_block_tags(self) -> None:
        for content in ("range .Items", "if .A", "with .B", "else", "end"):
            self.assertTrue(is_block_tag(content), content)
        for content in (".Name", "endless", "printf \"%d\" 1"):
            self.assertFalse(is_block_tag(content), content)

    def test_trim_detection(self) -> None:
        self.assertTrue(has_trim_left("{{- .A}}"))
        self.assertFalse(has_trim_left("{{.A -}}"))
        self.assertTrue(has_trim_right("{{.A -}}"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
