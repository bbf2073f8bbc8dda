"""Tests for file transfer."""

import os
import socket
import stat
from pathlib import Path

import pytest

from pyccpm.deploy.transfer import FileTransfer
from pyccpm.exceptions import TransferError, UnsupportedFileTypeError
from pyccpm.utils import calculate_file_hash


class TestCopyFile:
    """Tests for FileTransfer.copy_file."""

    @pytest.fixture
    def transfer(self):
        return FileTransfer()

    def test_copy_creates_parents(self, transfer, tmp_path):
        """Test that missing parent directories are created."""
        source = tmp_path / "src" / "a.md"
        source.parent.mkdir()
        source.write_text("# agent\n")
        target = tmp_path / "target" / "agents" / "sub" / "a.md"

        content_hash = transfer.copy_file(source, target)

        assert target.read_text() == "# agent\n"
        assert content_hash == calculate_file_hash(source)

    def test_hash_round_trip(self, transfer, tmp_path):
        """Test that the returned hash equals a fresh hash of the target."""
        source = tmp_path / "a.md"
        source.write_bytes(os.urandom(4096))
        target = tmp_path / "out" / "a.md"
        assert transfer.copy_file(source, target) == calculate_file_hash(target)

    def test_preserves_permissions(self, transfer, tmp_path):
        """Test that the executable bit survives the copy."""
        source = tmp_path / "hook.sh"
        source.write_text("#!/bin/sh\necho hi\n")
        source.chmod(0o755)
        target = tmp_path / "out" / "hook.sh"

        transfer.copy_file(source, target)

        assert stat.S_IMODE(target.stat().st_mode) == 0o755

    def test_overwrites_existing(self, transfer, tmp_path):
        """Test that an existing target is replaced."""
        source = tmp_path / "a.md"
        source.write_text("new")
        target = tmp_path / "out" / "a.md"
        target.parent.mkdir()
        target.write_text("old")

        transfer.copy_file(source, target)

        assert target.read_text() == "new"
        assert [p.name for p in target.parent.iterdir()] == ["a.md"]

    def test_missing_source(self, transfer, tmp_path):
        """Test that a missing source is rejected."""
        with pytest.raises(UnsupportedFileTypeError, match="missing"):
            transfer.copy_file(tmp_path / "nope.md", tmp_path / "out.md")

    def test_unwritable_target(self, transfer, tmp_path):
        """Test that write failures are reported as TransferError."""
        source = tmp_path / "a.md"
        source.write_text("x")
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(TransferError) as exc_info:
            transfer.copy_file(source, blocker / "a.md")
        assert exc_info.value.path == source


class TestCopy:
    """Tests for FileTransfer.copy dispatch."""

    @pytest.fixture
    def transfer(self):
        return FileTransfer()

    def test_copy_tree(self, transfer, tmp_path):
        """Test recursive directory copy."""
        source = tmp_path / "src"
        (source / "sub").mkdir(parents=True)
        (source / "a.md").write_text("a")
        (source / "sub" / "b.md").write_text("b")
        target = tmp_path / "out"

        hashes = transfer.copy(source, target)

        assert set(hashes) == {target / "a.md", target / "sub" / "b.md"}
        assert (target / "sub" / "b.md").read_text() == "b"
        assert hashes[target / "a.md"] == calculate_file_hash(source / "a.md")

    def test_copy_file_returns_hash(self, transfer, tmp_path):
        """Test that copying a file returns its hash."""
        source = tmp_path / "a.md"
        source.write_text("a")
        assert transfer.copy(source, tmp_path / "b.md") == calculate_file_hash(source)

    def test_fifo_rejected(self, transfer, tmp_path):
        """Test that a named pipe is an unsupported file type."""
        fifo = tmp_path / "pipe"
        os.mkfifo(fifo)
        with pytest.raises(UnsupportedFileTypeError, match="fifo"):
            transfer.copy(fifo, tmp_path / "out")

    def test_socket_rejected(self, transfer, tmp_path):
        """Test that a unix socket is an unsupported file type."""
        path = Path(f"/tmp/pyccpm-{os.getpid()}.sock")
        sock = socket.socket(socket.AF_UNIX)
        try:
            sock.bind(str(path))
            with pytest.raises(UnsupportedFileTypeError, match="socket"):
                transfer.copy(path, tmp_path / "out")
        finally:
            sock.close()
            path.unlink()

    def test_tree_skips_special_files(self, transfer, tmp_path):
        """Test that special files inside a tree are skipped, not fatal."""
        source = tmp_path / "src"
        source.mkdir()
        (source / "a.md").write_text("a")
        os.mkfifo(source / "pipe")
        os.symlink(source / "nowhere", source / "dangling")

        hashes = transfer.copy_tree(source, tmp_path / "out")

        assert list(hashes) == [tmp_path / "out" / "a.md"]
        assert not (tmp_path / "out" / "pipe").exists()
