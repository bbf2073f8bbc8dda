"""File transfer with structure and permission fidelity."""

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Union

from ..exceptions import TransferError, UnsupportedFileTypeError
from ..utils import calculate_file_hash

logger = logging.getLogger(__name__)


class FileTransfer:
    """Copies files and directory trees into the target tree."""

    def copy(self, source: Path, target: Path) -> Union[str, dict[Path, str]]:
        """Copy a file or a directory tree.

        Args:
            source: File or directory to copy
            target: Destination path

        Returns:
            Content hash for a file, or a mapping of target path to hash
            for every regular file copied from a directory

        Raises:
            UnsupportedFileTypeError: If source is neither a file nor a directory
            TransferError: If the copy fails
        """
        kind = self._entry_kind(source)
        if kind == "dir":
            return self.copy_tree(source, target)
        if kind == "file":
            return self.copy_file(source, target)
        raise UnsupportedFileTypeError(source, f"unsupported file type ({kind})")

    def copy_file(self, source: Path, target: Path) -> str:
        """Copy one regular file, preserving its permission bits.

        The content is written to a temporary file next to the target and
        renamed into place, so an interrupted copy never leaves a partial
        target behind.

        Args:
            source: Regular file to copy
            target: Destination file path

        Returns:
            SHA-256 hash of the target file after the copy

        Raises:
            UnsupportedFileTypeError: If source is not a regular file
            TransferError: If reading, writing or hashing fails
        """
        kind = self._entry_kind(source)
        if kind != "file":
            raise UnsupportedFileTypeError(source, f"not a regular file ({kind})")

        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            os.close(fd)
            shutil.copyfile(source, tmp_name)
            shutil.copymode(source, tmp_name)
            os.replace(tmp_name, target)
            tmp_name = None
            content_hash = calculate_file_hash(target)
        except OSError as e:
            raise TransferError(source, str(e)) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_name}")

        logger.debug(f"Copied {source} -> {target}")
        return content_hash

    def copy_tree(self, source: Path, target: Path) -> dict[Path, str]:
        """Recursively copy a directory depth-first.

        Entries that are neither regular files nor directories are skipped
        with a warning.

        Args:
            source: Directory to copy
            target: Destination directory

        Returns:
            Mapping of target file path to content hash
        """
        hashes: dict[Path, str] = {}
        try:
            target.mkdir(parents=True, exist_ok=True)
            entries = sorted(os.listdir(source))
        except OSError as e:
            raise TransferError(source, str(e)) from e

        for name in entries:
            src = source / name
            dst = target / name
            kind = self._entry_kind(src)
            if kind == "dir":
                hashes.update(self.copy_tree(src, dst))
            elif kind == "file":
                hashes[dst] = self.copy_file(src, dst)
            else:
                logger.warning(f"Skipping {src}: unsupported file type ({kind})")
        return hashes

    @staticmethod
    def _entry_kind(path: Path) -> str:
        """Classify a path as file, dir, or the name of another entry type."""
        try:
            link_info = os.lstat(path)
        except FileNotFoundError:
            return "missing"
        except OSError as e:
            raise TransferError(path, str(e)) from e

        if stat.S_ISLNK(link_info.st_mode):
            try:
                info = os.stat(path)
            except OSError:
                return "broken symlink"
        else:
            info = link_info

        if stat.S_ISREG(info.st_mode):
            return "file"
        if stat.S_ISDIR(info.st_mode):
            return "dir"
        if stat.S_ISSOCK(info.st_mode):
            return "socket"
        if stat.S_ISFIFO(info.st_mode):
            return "fifo"
        if stat.S_ISCHR(info.st_mode) or stat.S_ISBLK(info.st_mode):
            return "device"
        return "unknown"
