"""Transactional output writing.

Every file of an export run is written to a hidden ``.name.part`` sibling and
then renamed into place, so a reader never observes a half-written file. A file
already at the destination is moved aside to ``.name.bak`` first. Rollback
removes what the transaction produced and puts the moved files back; commit
discards them.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def nearest_existing_ancestor(path: PathLike) -> Path:
    """Return ``path`` itself or its closest existing parent."""
    candidate = Path(path).absolute()
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


def free_space(path: PathLike) -> int:
    """Free bytes on the volume that holds (or will hold) ``path``."""
    return shutil.disk_usage(nearest_existing_ancestor(path)).free


def ensure_writable(directory: PathLike) -> None:
    """Raise PermissionError unless ``directory`` can be created or written to."""
    anchor = nearest_existing_ancestor(directory)
    if not anchor.is_dir():
        raise NotADirectoryError(f"Not a directory: {anchor}")
    if not os.access(anchor, os.W_OK | os.X_OK):
        raise PermissionError(f"Cannot write to {anchor}")


def _temp_path(destination: Path) -> Path:
    return destination.with_name(f".{destination.name}.part")


def _backup_path(destination: Path) -> Path:
    return destination.with_name(f".{destination.name}.bak")


class OutputTransaction:
    """Tracks the files and directories written by one export run.

    Usage:
        with OutputTransaction(target_dir) as tx:
            tx.write_text(tx.root / "report.txt", text)
            tx.commit()

    Leaving the block with an exception before ``commit`` rolls back.
    """

    def __init__(self, root: PathLike):
        self.root = Path(root)
        self._files: list[Path] = []
        self._directories: list[Path] = []
        self._backups: dict[Path, Path] = {}
        self._committed = False

    def __enter__(self) -> "OutputTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and not self._committed:
            self.rollback()

    @property
    def written_files(self) -> list[Path]:
        return list(self._files)

    @property
    def committed(self) -> bool:
        return self._committed

    def ensure_directory(self, directory: PathLike) -> Path:
        """Create ``directory`` and missing parents, remembering each one created."""
        directory = Path(directory)
        missing = []
        current = directory
        while not current.exists():
            missing.append(current)
            if current == current.parent:
                break
            current = current.parent

        for path in reversed(missing):
            path.mkdir()
            self._directories.append(path)
        return directory

    def write_bytes(self, destination: PathLike, data: bytes) -> int:
        """Atomically write ``data`` to ``destination``.

        Returns:
            Number of bytes written.
        """
        destination = Path(destination)
        self.ensure_directory(destination.parent)
        temp = _temp_path(destination)
        try:
            temp.write_bytes(data)
            self._install(temp, destination)
        except BaseException:
            temp.unlink(missing_ok=True)
            raise
        if destination not in self._files:
            self._files.append(destination)
        return len(data)

    def write_text(self, destination: PathLike, text: str, encoding: str = "utf-8") -> int:
        return self.write_bytes(destination, text.encode(encoding))

    def copy_file(self, source: PathLike, destination: PathLike) -> int:
        """Atomically copy ``source`` byte for byte.

        Returns:
            Size of the copied file.
        """
        destination = Path(destination)
        self.ensure_directory(destination.parent)
        temp = _temp_path(destination)
        try:
            shutil.copyfile(source, temp)
            self._install(temp, destination)
        except BaseException:
            temp.unlink(missing_ok=True)
            raise
        if destination not in self._files:
            self._files.append(destination)
        return destination.stat().st_size

    def _install(self, temp: Path, destination: Path) -> None:
        if destination not in self._files and destination not in self._backups and destination.exists():
            backup = _backup_path(destination)
            os.replace(destination, backup)
            self._backups[destination] = backup
        try:
            os.replace(temp, destination)
        except OSError:
            backup = self._backups.pop(destination, None)
            if backup is not None:
                os.replace(backup, destination)
            raise

    def commit(self) -> None:
        """Keep everything written so far."""
        self._committed = True
        for backup in self._backups.values():
            try:
                backup.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove backup %s: %s", backup, e)
        self._backups.clear()
        logger.debug("Committed %d files under %s", len(self._files), self.root)

    def rollback(self) -> None:
        """Remove what this transaction created and restore what it replaced."""
        removed = 0
        for path in reversed(self._files):
            try:
                path.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.warning("Could not remove %s during rollback: %s", path, e)

        for destination, backup in self._backups.items():
            try:
                os.replace(backup, destination)
            except OSError as e:
                logger.warning("Could not restore %s during rollback: %s", destination, e)

        for directory in reversed(self._directories):
            try:
                directory.rmdir()
            except OSError as e:
                logger.warning("Could not remove directory %s during rollback: %s", directory, e)

        logger.info("Rolled back %d files under %s", removed, self.root)
        self._files.clear()
        self._backups.clear()
        self._directories.clear()


def file_size(path: PathLike) -> Optional[int]:
    """Size of ``path`` in bytes, or None when it cannot be read."""
    try:
        return Path(path).stat().st_size
    except OSError:
        return None
