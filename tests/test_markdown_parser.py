"""Tests for title, preview and file name helpers."""
import datetime

import pytest

from notesync.storage.markdown_parser import (
    expand_note_name_template,
    extract_title,
    generate_preview,
    is_effectively_empty,
    sanitize_filename,
    strip_frontmatter,
    strip_markdown,
    title_from_id,
)


class TestExtractTitle:
    """Title extraction rules."""

    def test_heading_wins(self):
        assert extract_title("# Shopping list\n\n- milk") == "Shopping list"

    def test_first_line_when_no_heading(self):
        assert extract_title("\n\nJust some text\nmore") == "Just some text"

    def test_first_line_truncated(self):
        assert extract_title("x" * 80) == "x" * 50

    def test_empty_content_is_untitled(self):
        assert extract_title("") == "Untitled"
        assert extract_title(" \n  \n") == "Untitled"

    def test_frontmatter_ignored(self):
        content = "---\ntags: [a]\n---\n# Real title\nbody"
        assert extract_title(content) == "Real title"


class TestPreview:
    """Preview generation."""

    def test_first_body_line_stripped(self):
        content = "# Title\n\n**Bold** and [link](http://x) with `code`\n"
        assert generate_preview(content) == "Bold and link with code"

    def test_list_and_task_markers_removed(self):
        assert generate_preview("# T\n- [x] done item") == "done item"
        assert generate_preview("# T\n1. first") == "first"

    def test_no_body(self):
        assert generate_preview("# Only a title\n") == ""

    def test_truncated(self):
        assert len(generate_preview("# T\n" + "y" * 300)) == 100

    def test_frontmatter_skipped(self):
        assert generate_preview("---\na: 1\n---\n# T\nBody") == "Body"

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("## Sub heading", "Sub heading"),
            ("~~gone~~ kept", "gone kept"),
            ("![alt](img.png)", "alt"),
            ("_it_ and *em*", "it and em"),
        ],
    )
    def test_strip_markdown(self, line, expected):
        assert strip_markdown(line) == expected


class TestFrontmatter:
    """Frontmatter stripping."""

    def test_unclosed_block_unchanged(self):
        content = "---\nnot closed\n# Title"
        assert strip_frontmatter(content) == content

    def test_crlf_block(self):
        assert strip_frontmatter("---\r\na: 1\r\n---\r\nBody") == "Body"


class TestFileNames:
    """Title to file name mapping."""

    def test_reserved_characters_replaced(self):
        assert sanitize_filename('a/b\\c:d*e?f"g<h>i|j') == "a-b-c-d-e-f-g-h-i-j"

    def test_leading_dots_dropped(self):
        assert sanitize_filename("..hidden") == "hidden"

    def test_empty_becomes_untitled(self):
        assert sanitize_filename("  \ufeff ") == "Untitled"
        assert sanitize_filename("...") == "Untitled"

    def test_title_from_id(self):
        assert title_from_id("work/my-first_note") == "My First Note"

    def test_effectively_empty(self):
        assert is_effectively_empty(" \n\t \ufeff")
        assert not is_effectively_empty(" a ")


class TestNameTemplate:
    """Note name template expansion."""

    NOW = datetime.datetime(2024, 3, 7, 9, 5, 2)

    def test_date_tags(self):
        result = expand_note_name_template("{year}/{month}/{day} {date}", now=self.NOW)
        assert result == "2024/03/07 2024-03-07"

    def test_time_is_filesystem_safe(self):
        assert expand_note_name_template("{time}", now=self.NOW) == "09-05-02"

    def test_timestamp(self):
        expected = str(int(self.NOW.timestamp()))
        assert expand_note_name_template("{timestamp}", now=self.NOW) == expected

    def test_counter_left_in_place(self):
        assert expand_note_name_template("Note {counter}", now=self.NOW) == "Note {counter}"
