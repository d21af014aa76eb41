"""
Unit tests for restores (rotabackup/backup/restore.py).
"""

import os
from datetime import datetime
from unittest.mock import patch

import pytest

from rotabackup.backup.compression import create_archive, ExtractionError
from rotabackup.backup.digest import IntegrityError, compute_and_store
from rotabackup.backup.restore import RestoreController, ArchiveNotFoundError, restore_archive
from rotabackup.backup.executor import run_rotation
from rotabackup.backup.sources import LocalSource


@pytest.fixture
def real_archive(backup_root, source_dir):
    """A real daily archive of source_dir with its checksum sidecar."""
    path = backup_root.tier_dir('daily') / 'backup-2024-01-17_02-00-00.tar.gz'
    create_archive(LocalSource(source_dir), path)
    compute_and_store(path)
    return path


class TestRestoreController:
    """Test RestoreController.restore."""

    def test_restore_into_target(self, backup_root, real_archive, tmp_path):
        target = tmp_path / 'out'

        result = RestoreController(backup_root).restore(real_archive, target)

        assert (target / 'docs' / 'readme.txt').read_text() == 'Read me'
        assert (target / 'docs' / 'nested' / 'notes.txt').read_text() == 'Nested notes'
        assert result.extracted_members == 5
        assert result.verified is False
        assert any("Restore completed successfully" in line for line in result.logs)

    def test_default_target_is_restore_dir(self, backup_root, real_archive):
        result = RestoreController(backup_root).restore(real_archive)

        assert result.target_dir == backup_root.restore_dir
        assert (backup_root.restore_dir / 'docs' / 'readme.txt').exists()

    def test_missing_archive_creates_nothing(self, backup_root, tmp_path):
        """A bad archive path fails before the target is touched."""
        target = tmp_path / 'out'

        with pytest.raises(ArchiveNotFoundError, match="Backup file not found"):
            RestoreController(backup_root).restore(tmp_path / 'nope.tar.gz', target)

        assert not target.exists()

    def test_directory_is_not_an_archive(self, backup_root, tmp_path):
        with pytest.raises(ArchiveNotFoundError, match="not a regular file"):
            RestoreController(backup_root).restore(tmp_path, tmp_path / 'out')

    def test_bare_name_resolved_in_backup_root(self, backup_root, real_archive, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = RestoreController(backup_root).restore(real_archive.name, tmp_path / 'out')

        assert result.archive_path == real_archive
        assert (tmp_path / 'out' / 'docs' / 'readme.txt').exists()

    def test_dry_run_extracts_nothing(self, backup_root, real_archive, tmp_path):
        target = tmp_path / 'out'

        result = RestoreController(backup_root).restore(real_archive, target, dry_run=True)

        assert result.dry_run
        assert not target.exists()
        assert any("[DRYRUN] Would extract" in line for line in result.logs)

    def test_no_verification_by_default(self, backup_root, real_archive, tmp_path):
        """A stale sidecar does not block a restore unless asked."""
        sidecar = real_archive.with_name(real_archive.name + '.sha256')
        sidecar.write_text(f"{'0' * 64}  {real_archive.name}\n")

        RestoreController(backup_root).restore(real_archive, tmp_path / 'out')

        assert (tmp_path / 'out' / 'docs').is_dir()

    def test_verify_checksum(self, backup_root, real_archive, tmp_path):
        result = RestoreController(backup_root).restore(
            real_archive, tmp_path / 'out', verify_checksum=True
        )

        assert result.verified is True

    def test_verify_checksum_mismatch(self, backup_root, real_archive, tmp_path):
        sidecar = real_archive.with_name(real_archive.name + '.sha256')
        sidecar.write_text(f"{'0' * 64}  {real_archive.name}\n")
        target = tmp_path / 'out'

        with pytest.raises(IntegrityError):
            RestoreController(backup_root).restore(real_archive, target, verify_checksum=True)

        assert not target.exists()

    def test_corrupt_archive(self, backup_root, tmp_path):
        bogus = tmp_path / 'backup-2024-01-17_02-00-00.tar.gz'
        bogus.write_bytes(b'garbage')

        with pytest.raises(ExtractionError):
            RestoreController(backup_root).restore(bogus, tmp_path / 'out')

    @patch('rotabackup.backup.restore.extract_archive', return_value=3)
    def test_does_not_take_rotation_lock(self, mock_extract, backup_root, real_archive, tmp_path):
        backup_root.lock_path.write_text('12345\n')

        result = RestoreController(backup_root).restore(real_archive, tmp_path / 'out')

        assert result.extracted_members == 3
        assert backup_root.lock_path.exists()

    def test_rotation_with_symlink_restores(self, settings, backup_root, source_dir, tmp_path):
        """A source holding an absolute symlink backs up and restores."""
        (source_dir / 'hosts').symlink_to('/etc/hosts')
        rotation = run_rotation(settings, source_dir, clock=lambda: datetime(2024, 1, 17, 2, 0, 0))
        target = tmp_path / 'out'

        result = RestoreController(backup_root).restore(rotation.archive_path, target)

        assert (target / 'docs' / 'hosts').is_symlink()
        assert os.readlink(target / 'docs' / 'hosts') == '/etc/hosts'
        assert (target / 'docs' / 'readme.txt').read_text() == 'Read me'
        assert result.extracted_members == 6


class TestRestoreArchiveFunction:

    def test_restore_archive(self, settings, real_archive, tmp_path):
        result = restore_archive(settings, real_archive, tmp_path / 'out')

        assert result.archive_path == real_archive
        assert (tmp_path / 'out' / 'docs' / 'readme.txt').exists()
