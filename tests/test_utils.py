"""Unit tests for utility functions."""

import os
from datetime import datetime
from pathlib import Path

from pyccpm.utils import (
    calculate_file_hash,
    is_within,
    path_key,
    real_path,
    safe_file_hash,
    timestamp_suffix,
    utc_now_iso,
)

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


class TestCalculateFileHash:
    """Tests for calculate_file_hash function."""

    def test_known_value(self, tmp_path):
        """Test hashing a file with known content."""
        path = tmp_path / "a.md"
        path.write_bytes(b"hello")
        assert calculate_file_hash(path) == HELLO_SHA256

    def test_small_chunks_same_hash(self, tmp_path):
        """Test that the chunk size does not change the digest."""
        path = tmp_path / "a.md"
        path.write_bytes(b"hello")
        assert calculate_file_hash(path, chunk_size=2) == HELLO_SHA256

    def test_identical_content_identical_hash(self, tmp_path):
        """Test that equal content in different files hashes equally."""
        a = tmp_path / "a.md"
        b = tmp_path / "b.md"
        a.write_text("same content")
        b.write_text("same content")
        assert calculate_file_hash(a) == calculate_file_hash(b)

    def test_safe_hash_missing_file(self, tmp_path):
        """Test that safe_file_hash returns None for a missing file."""
        assert safe_file_hash(tmp_path / "missing.md") is None


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_utc_now_iso_has_z_suffix(self):
        """Test that generated timestamps end with Z."""
        assert utc_now_iso().endswith("Z")

    def test_utc_now_iso_parses(self):
        """Test that generated timestamps are valid ISO 8601."""
        parsed = datetime.fromisoformat(utc_now_iso().replace("Z", "+00:00"))
        assert parsed.tzinfo is not None

    def test_timestamp_suffix_is_filename_safe(self):
        """Test that backup suffixes contain no separators or colons."""
        suffix = timestamp_suffix()
        assert ":" not in suffix
        assert "/" not in suffix


class TestPathHelpers:
    """Tests for path_key, real_path and is_within."""

    def test_path_key_is_stable(self):
        """Test that the same id always gives the same key."""
        assert path_key("agents-repo") == path_key("agents-repo")
        assert len(path_key("agents-repo")) == 16

    def test_path_key_distinguishes_ids(self):
        """Test that different ids give different keys."""
        assert path_key("a") != path_key("b")

    def test_path_key_safe_for_filenames(self):
        """Test that ids with separators produce plain hex keys."""
        key = path_key("org/repo:main")
        assert all(c in "0123456789abcdef" for c in key)

    def test_is_within(self):
        """Test plain containment checks."""
        root = Path("/home/user/.claude")
        assert is_within(root / "agents" / "a.md", root)
        assert is_within(root, root)
        assert not is_within(Path("/home/user/other.md"), root)
        assert not is_within(Path("/home/user/.claude-other/a.md"), root)

    def test_is_within_rejects_parent_segments(self, tmp_path):
        """Test that '..' segments cannot climb out of the root."""
        root = tmp_path / "claude"
        (root / "commands").mkdir(parents=True)
        assert not is_within(root / "commands" / ".." / ".." / "precious.txt", root)
        assert not is_within(root / "..", root)
        assert is_within(root / "commands" / ".." / "agents" / "a.md", root)

    def test_is_within_rejects_symlinked_directory(self, tmp_path):
        """Test that a directory symlink pointing elsewhere is outside the root."""
        root = tmp_path / "claude"
        outside = tmp_path / "outside"
        (root / "commands").mkdir(parents=True)
        outside.mkdir()
        (root / "commands" / "linked").symlink_to(outside, target_is_directory=True)

        assert not is_within(root / "commands" / "linked" / "x.md", root)

    def test_is_within_keeps_final_symlink(self, tmp_path):
        """Test that a symlinked file is judged by where it sits."""
        root = tmp_path / "claude"
        (root / "agents").mkdir(parents=True)
        elsewhere = tmp_path / "elsewhere.md"
        elsewhere.write_text("x")
        link = root / "agents" / "a.md"
        link.symlink_to(elsewhere)

        assert real_path(link) == Path(os.path.realpath(root)) / "agents" / "a.md"
        assert is_within(link, root)

    def test_is_within_symlinked_root(self, tmp_path):
        """Test that a root reached through a symlink still contains its files."""
        real_root = tmp_path / "real"
        (real_root / "agents").mkdir(parents=True)
        alias = tmp_path / "alias"
        alias.symlink_to(real_root, target_is_directory=True)

        assert is_within(alias / "agents" / "a.md", real_root)
        assert is_within(real_root / "agents" / "a.md", alias)
