"""
Tests for provenance headers on pulled and example files.
"""

from datetime import datetime, timezone

from pushenv.core.header import (
    BORDER,
    example_header,
    extract_stage,
    has_header,
    pull_header,
    strip_header,
    with_header,
)


NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


class TestPullHeader:
    """Test the header written by pull."""

    def test_contains_stage_and_timestamp(self):
        """Stage is upper-cased, timestamp ends in Z."""
        header = pull_header("staging", NOW)
        assert "# Stage: STAGING\n" in header
        assert "# Pulled: 2024-05-01T10:00:00Z" in header
        assert header.startswith(BORDER)

    def test_production_warning(self):
        """Production headers carry a warning marker."""
        assert "# Stage: PRODUCTION ⚠️" in pull_header("production", NOW)
        assert "⚠️" not in pull_header("development", NOW)

    def test_example_header_is_marked_safe(self):
        header = example_header("development", NOW)
        assert "Safe to commit" in header
        assert "# Generated: 2024-05-01T10:00:00Z" in header


class TestStripHeader:
    """Test header detection heuristics."""

    def test_strip_pulled_header(self):
        """A pulled file strips back to its definitions."""
        content = with_header(pull_header("development", NOW), "A=1\nB=2\n")
        assert strip_header(content) == "A=1\nB=2\n"

    def test_plain_comment_is_kept(self):
        """A leading comment without marker or border is not a header."""
        content = "# database settings\nA=1\n"
        assert not has_header(content)
        assert strip_header(content) == content

    def test_border_only_counts_as_header(self):
        content = "# ═══════\n# anything\nA=1\n"
        assert strip_header(content) == "A=1\n"

    def test_only_leading_block_is_checked(self):
        """A marker after the first definition does not make a header."""
        content = "A=1\n# PushEnv\nB=2\n"
        assert not has_header(content)
        assert strip_header(content) == content

    def test_header_only_file(self):
        assert strip_header(pull_header("development", NOW)) == ""


class TestExtractStage:
    """Test reading the stage from a header."""

    def test_extract_stage(self):
        content = with_header(pull_header("production", NOW), "A=1\n")
        assert extract_stage(content) == "production"

    def test_no_header(self):
        assert extract_stage("A=1\n") is None

    def test_stage_line_after_definitions_ignored(self):
        assert extract_stage("A=1\n# Stage: production\n") is None


class TestWithHeader:
    """Test replacing headers."""

    def test_replaces_existing_header(self):
        """Re-heading a pulled file keeps a single header."""
        once = with_header(pull_header("staging", NOW), "A=1\n")
        twice = with_header(pull_header("production", NOW), once)
        assert twice.count("Managed Environment File") == 1
        assert extract_stage(twice) == "production"
        assert twice.endswith("A=1\n")

    def test_adds_trailing_newline(self):
        assert with_header(pull_header("development", NOW), "A=1").endswith("A=1\n")
