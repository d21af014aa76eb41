"""
Source directory handling for backup runs.

Validates the directory to archive and decides which entries the
configured exclude patterns drop.
"""

import os
from pathlib import Path
from typing import List, Optional
from fnmatch import fnmatch

from rotabackup.errors import BackupError


class SourceError(BackupError):
    """Raised when the source directory cannot be used."""
    pass


class SourceNotFoundError(SourceError):
    """Raised when the source directory does not exist."""
    pass


class SourcePermissionError(SourceError, PermissionError):
    """Raised when the source directory cannot be read."""
    pass


class LocalSource:
    """
    A local directory to back up.

    The archive stores entries under the directory's basename, like
    ``tar -C <parent> <name>``.
    """

    def __init__(self, path, exclude_patterns: Optional[List[str]] = None):
        """
        Initialize local source handler.

        Args:
            path: Directory to back up
            exclude_patterns: Glob patterns to exclude (e.g., *.pyc, __pycache__, .venv)
        """
        self.path = Path(path).expanduser()
        self.exclude_patterns = list(exclude_patterns or [])
        self.excluded_paths = set()

    @property
    def arcname(self) -> str:
        return self.path.resolve().name

    def validate(self) -> Path:
        """
        Check the source is an existing, readable directory.

        Returns:
            Resolved source path

        Raises:
            SourceNotFoundError: If the path is missing or not a directory
            SourcePermissionError: If the directory cannot be listed
        """
        if not self.path.exists():
            raise SourceNotFoundError(f"Source directory not found: {self.path}")

        if not self.path.is_dir():
            raise SourceNotFoundError(f"Source is not a directory: {self.path}")

        if not os.access(self.path, os.R_OK | os.X_OK):
            raise SourcePermissionError(f"Permission denied reading source directory: {self.path}")

        try:
            with os.scandir(self.path):
                pass
        except PermissionError as e:
            raise SourcePermissionError(f"Permission denied reading source directory: {self.path}: {e}")
        except OSError as e:
            raise SourceError(f"Cannot read source directory {self.path}: {e}")

        return self.path.resolve()

    def exclude_path(self, path):
        """
        Leave a directory or file out of the archive by location.

        Unlike exclude patterns the path is compared literally, so glob
        characters in it have no special meaning.
        """
        self.excluded_paths.add(Path(path).resolve())

    def should_exclude(self, path) -> bool:
        """
        Check if a path should be excluded.

        Args:
            path: Path to check (absolute, or relative inside the archive)

        Returns:
            True if path is, or lies under, an excluded path or matches any
            exclude pattern, False otherwise
        """
        path = Path(path)

        for excluded in self.excluded_paths:
            if path == excluded or excluded in path.parents:
                return True

        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            # Also match against relative path patterns
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False
