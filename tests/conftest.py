"""
Shared pytest fixtures for rotabackup tests.

This module provides fixtures for:
- Resolved settings pointing at a temporary backup root
- A BackupRoot with its layout created
- A small source directory to archive
- A factory for placing archives into tier directories
- Click CLI runner
"""

import os
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from rotabackup import _HANDLER_TAG
from rotabackup.config import load_settings, ENV_PREFIX
from rotabackup.backup.naming import generate_archive_name
from rotabackup.backup.storage import BackupRoot


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop ROTABACKUP_* variables so tests only see their own settings."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_logging():
    """Remove handlers installed by configure_logging after each test."""
    yield

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def backup_root_dir(tmp_path):
    """Path of the backup root (not created)."""
    return tmp_path / 'backups'


@pytest.fixture
def settings(backup_root_dir):
    """
    Production settings with the default keep counts:
    daily 7, weekly 4, monthly 3, weekly day Sunday, monthly day 1.
    """
    return load_settings('production', backup_root=str(backup_root_dir))


@pytest.fixture
def backup_root(settings):
    """BackupRoot with daily/, weekly/, monthly/ and restore/ created."""
    root = BackupRoot.from_settings(settings)
    root.ensure_layout()
    return root


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source directory to back up.

    Creates:
    - docs/readme.txt
    - docs/nested/notes.txt
    - docs/cache.pyc (excluded in tests that configure *.pyc)
    """
    source = tmp_path / 'docs'
    source.mkdir()
    (source / 'readme.txt').write_text('Read me')

    nested = source / 'nested'
    nested.mkdir()
    (nested / 'notes.txt').write_text('Nested notes')

    (source / 'cache.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture
def make_archives(backup_root):
    """
    Factory placing fake archives into a tier directory.

    Usage: make_archives('daily', [datetime(...), ...]) -> list of Paths
    """
    def _make(tier, timestamps, compression_format='tar.gz', with_checksum=False):
        paths = []
        for ts in timestamps:
            name, _ = generate_archive_name(ts, tier, compression_format)
            path = backup_root.tier_dir(tier) / name
            path.write_bytes(f'archive {name}'.encode())
            if with_checksum:
                path.with_name(name + '.sha256').write_text(f"{'0' * 64}  {name}\n")
            paths.append(path)
        return paths

    return _make


@pytest.fixture
def cli_runner():
    """Click test runner for the rotabackup command."""
    return CliRunner()


def snapshot_tree(path: Path) -> dict:
    """Map of relative path -> bytes (None for directories) under ``path``."""
    snapshot = {}
    if not path.exists():
        return snapshot

    for item in sorted(path.rglob('*')):
        relative = str(item.relative_to(path))
        snapshot[relative] = item.read_bytes() if item.is_file() else None

    return snapshot


@pytest.fixture
def tree_snapshot():
    """Function returning a comparable snapshot of a directory tree."""
    return snapshot_tree
