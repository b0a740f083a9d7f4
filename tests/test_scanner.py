"""Tests for the comment/string masking scanner."""

from labz_cli.scanner import LineIndex, mask_source, match_delimiter, split_top_level


class TestMaskSource:
    def test_preserves_length_and_newlines(self):
        source = 'a /* x\n{ */ b // }\n"c\\n{"\n'
        masked = mask_source(source)
        assert len(masked) == len(source)
        assert [i for i, ch in enumerate(masked) if ch == "\n"] == [
            i for i, ch in enumerate(source) if ch == "\n"
        ]

    def test_line_comment_blanked(self):
        masked = mask_source("x = 1; // { not code\ny = 2;")
        assert "{" not in masked
        assert masked.split("\n")[1] == "y = 2;"

    def test_block_comment_spans_lines(self):
        masked = mask_source("a /* {\n } */ b")
        assert masked.split("\n") == ["a     ", "      b"]

    def test_strings_blanked_by_default(self):
        masked = mask_source('s = "}"; t')
        assert "}" not in masked
        assert masked.endswith("; t")

    def test_strings_kept_on_request(self):
        masked = mask_source('s = "}"; // "x"', strip_strings=False)
        assert '"}"' in masked
        assert '"x"' not in masked

    def test_escaped_quote_stays_inside_literal(self):
        masked = mask_source('"a\\"}" {')
        assert masked.strip() == "{"

    def test_comment_markers_inside_strings_ignored(self):
        masked = mask_source('url = "http://x"; y')
        assert masked.endswith("; y")

    def test_unterminated_block_comment_runs_to_end(self):
        assert mask_source("a /* b {").strip() == "a"

    def test_double_quote_string_ends_at_newline(self):
        masked = mask_source('"open\n{')
        assert masked.split("\n")[1] == "{"

    def test_template_literal_spans_lines(self):
        masked = mask_source("`a\n{`b")
        assert masked.split("\n")[1] == "  b"


class TestMatchDelimiter:
    def test_nested_parens(self):
        assert match_delimiter("f(a, (b), c)", 1) == 11

    def test_only_same_kind_counted(self):
        text = "{ ( }"
        assert match_delimiter(text, 0) == 4

    def test_unclosed_returns_none(self):
        assert match_delimiter("f(a, (b)", 1) is None

    def test_limit(self):
        assert match_delimiter("(a)", 0, limit=2) is None

    def test_not_a_delimiter(self):
        assert match_delimiter("abc", 1) is None
        assert match_delimiter("abc", 10) is None


def test_split_top_level():
    assert split_top_level("a, f(b, c), [d, e]") == ["a", "f(b, c)", "[d, e]"]
    assert split_top_level("  ") == []


class TestLineIndex:
    def test_lines_and_columns(self):
        index = LineIndex("ab\ncd\n")
        assert index.line_count == 3
        assert index.line_of(0) == 1
        assert index.line_of(2) == 1
        assert index.line_of(3) == 2
        assert index.column_of(4) == 2
        assert index.line_start(2) == 3
