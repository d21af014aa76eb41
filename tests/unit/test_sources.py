"""
Unit tests for source handling (rotabackup/backup/sources.py).

Tests LocalSource validation and exclude pattern matching.
"""

import os
from pathlib import Path

import pytest

from rotabackup.backup.sources import (
    LocalSource,
    SourceNotFoundError,
    SourcePermissionError
)


class TestLocalSourceValidate:
    """Test LocalSource.validate."""

    def test_validate_existing_directory(self, source_dir):
        """Test validation returns the resolved directory."""
        source = LocalSource(source_dir)

        assert source.validate() == source_dir.resolve()
        assert source.arcname == 'docs'

    def test_validate_missing_directory(self, tmp_path):
        source = LocalSource(tmp_path / 'missing')

        with pytest.raises(SourceNotFoundError, match="Source directory not found"):
            source.validate()

    def test_validate_file_instead_of_directory(self, tmp_path):
        path = tmp_path / 'file.txt'
        path.write_text('x')

        with pytest.raises(SourceNotFoundError, match="not a directory"):
            LocalSource(path).validate()

    @pytest.mark.skipif(os.geteuid() == 0, reason="root bypasses permission checks")
    def test_validate_unreadable_directory(self, tmp_path):
        locked = tmp_path / 'locked'
        locked.mkdir()
        locked.chmod(0o000)

        try:
            with pytest.raises(SourcePermissionError):
                LocalSource(locked).validate()
        finally:
            locked.chmod(0o755)

    def test_permission_error_is_a_permission_error(self):
        assert issubclass(SourcePermissionError, PermissionError)


class TestShouldExclude:
    """Test exclude pattern matching."""

    @pytest.mark.parametrize("path,patterns,expected", [
        ("/data/docs/cache.pyc", ["*.pyc"], True),
        ("/data/docs/readme.txt", ["*.pyc"], False),
        ("/data/docs/__pycache__", ["__pycache__"], True),
        ("/data/docs/.venv/lib/x.py", ["*/.venv/*"], True),
        ("/data/docs/deep/node_modules", ["**/node_modules"], True),
        ("/data/docs/readme.txt", [], False),
    ])
    def test_patterns(self, path, patterns, expected):
        source = LocalSource('/data/docs', exclude_patterns=patterns)

        assert source.should_exclude(Path(path)) is expected

    def test_excluded_path_matched_literally(self, tmp_path):
        """Glob characters in an excluded path are not pattern syntax."""
        source_path = tmp_path / 'docs[1]'
        source = LocalSource(source_path)
        source.exclude_path(source_path / 'backups')

        assert source.should_exclude(source_path.resolve() / 'backups') is True
        assert source.should_exclude(source_path.resolve() / 'backups' / 'daily' / 'a.tar.gz') is True
        assert source.should_exclude(source_path.resolve() / 'backups-old') is False
        assert source.should_exclude(source_path.resolve() / 'readme.txt') is False

    def test_no_patterns_excludes_nothing(self):
        assert LocalSource('/data/docs').should_exclude('/data/docs/anything') is False
