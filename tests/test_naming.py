"""
Tests for name normalisation and attachment paths.
"""

import hashlib

import pytest

from aircache.utils.naming import (
    attachment_filename,
    attachment_relative_path,
    normalize_key,
    sanitize_filename,
    url_hash,
)


@pytest.mark.unit
class TestNormalizeKey:
    def test_lowercases_and_strips(self):
        assert normalize_key("Client Projects") == "clientprojects"

    def test_drops_punctuation_and_unicode(self):
        assert normalize_key("Tâches (2024)!") == "tches2024"

    def test_empty(self):
        assert normalize_key("---") == ""


@pytest.mark.unit
class TestSanitizeFilename:
    def test_replaces_unsafe_characters(self):
        assert sanitize_filename("my report (final).pdf") == "my_report__final_.pdf"

    def test_keeps_safe_characters(self):
        assert sanitize_filename("a-b_c.d") == "a-b_c.d"

    def test_caps_length(self):
        assert len(sanitize_filename("x" * 250)) == 100

    def test_dot_only_names_become_underscore(self):
        assert sanitize_filename(".") == "_"
        assert sanitize_filename("..") == "_"
        assert sanitize_filename("...") == "_"

    def test_dots_inside_name_kept(self):
        assert sanitize_filename("..hidden") == "..hidden"


@pytest.mark.unit
class TestAttachmentPaths:
    URL = "https://dl.airtable.com/.attachments/abc/report.pdf"

    def test_url_hash_is_sha256_prefix(self):
        assert url_hash(self.URL) == hashlib.sha256(self.URL.encode()).hexdigest()[:8]

    def test_hash_before_extension(self):
        assert attachment_filename("report.pdf", self.URL, "rec1_Files_0") == f"report_{url_hash(self.URL)}.pdf"

    def test_empty_filename_falls_back_to_id(self):
        name = attachment_filename("", self.URL, "rec1_Files_0")
        assert name == f"attachment_rec1_Files_0_{url_hash(self.URL)}"

    def test_dotfile_keeps_name(self):
        assert attachment_filename(".env", self.URL, "a") == f".env_{url_hash(self.URL)}"

    def test_relative_path_layout(self):
        path = attachment_relative_path("projects", "rec1", "Files", "report.pdf", self.URL, "rec1_Files_0")
        assert path == f"projects/rec1/Files/report_{url_hash(self.URL)}.pdf"

    def test_relative_path_sanitizes_segments(self):
        path = attachment_relative_path("projects", "rec/1", "Cover Image", "a b.png", self.URL, "x")
        assert path.split("/")[:3] == ["projects", "rec_1", "Cover_Image"]

    def test_path_is_deterministic(self):
        args = ("projects", "rec1", "Files", "report.pdf", self.URL, "rec1_Files_0")
        assert attachment_relative_path(*args) == attachment_relative_path(*args)

    def test_parent_segments_cannot_escape(self, tmp_path):
        path = attachment_relative_path("..", "..", "..", "a.pdf", self.URL, "x")
        assert ".." not in path.split("/")
        resolved = (tmp_path / path).resolve()
        assert resolved.is_relative_to(tmp_path.resolve())

    def test_same_name_different_url_differs(self):
        a = attachment_relative_path("t", "r", "f", "same.pdf", "https://x/1", "r_f_0")
        b = attachment_relative_path("t", "r", "f", "same.pdf", "https://x/2", "r_f_1")
        assert a != b
