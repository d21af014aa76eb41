"""
Restore an archive into a target directory.

Checksums are not verified unless asked for, matching the behaviour of
the shell tool this replaces. Restores do not take the rotation lock.
"""

import os
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rotabackup.errors import BackupError
from rotabackup.models import RestoreResult
from .compression import extract_archive
from .digest import IntegrityError, verify
from .naming import checksum_name
from .storage import BackupRoot, StorageError


logger = logging.getLogger(__name__)


class ArchiveNotFoundError(BackupError):
    """Raised when the archive to restore does not exist or cannot be read."""
    pass


class RestoreController:
    """
    Extracts archives from a backup root.
    """

    def __init__(self, root: BackupRoot):
        self.root = root
        self.logs = []

    def resolve_archive(self, archive_path) -> Path:
        """
        Find the archive to restore.

        A path that does not exist but is a bare filename is looked up in
        the tier directories of the backup root.

        Raises:
            ArchiveNotFoundError: If no regular, readable file is found
        """
        path = Path(archive_path).expanduser()

        if not path.exists() and path.name == str(archive_path):
            found = self.root.find(path.name)
            if found is not None:
                self._log(f"Resolved {archive_path} to {found}")
                path = found

        if not path.exists():
            raise ArchiveNotFoundError(f"Backup file not found: {archive_path}")

        if not path.is_file():
            raise ArchiveNotFoundError(f"Backup file is not a regular file: {archive_path}")

        if not os.access(path, os.R_OK):
            raise ArchiveNotFoundError(f"Backup file is not readable: {archive_path}")

        return path.resolve()

    def restore(self, archive_path, target_dir=None, dry_run: bool = False,
                verify_checksum: bool = False) -> RestoreResult:
        """
        Restore an archive.

        Args:
            archive_path: Archive file, or bare archive name inside the backup root
            target_dir: Destination (defaults to the root's restore directory)
            dry_run: Only log the intended extraction
            verify_checksum: Check the .sha256 sidecar before extracting

        Returns:
            RestoreResult

        Raises:
            ArchiveNotFoundError: If the archive is missing; nothing is created
            IntegrityError: If verification was requested and fails
            StorageError: If the target directory cannot be created
            ExtractionError: If extraction fails
        """
        # Validate before touching the target so a bad path creates nothing
        path = self.resolve_archive(archive_path)
        target = Path(target_dir).expanduser() if target_dir else self.root.restore_dir

        result = RestoreResult(archive_path=path, target_dir=target, dry_run=dry_run)

        self._log(f"Restoring {path} → {target}")

        if verify_checksum:
            checksum_path = path.with_name(checksum_name(path.name))
            if not verify(path, checksum_path):
                raise IntegrityError(f"Checksum verification failed for {path}")
            result.verified = True
            self._log(f"Checksum verified: {checksum_path}")

        if dry_run:
            if not target.is_dir():
                self._log(f"[DRYRUN] Would create directory: {target}")
            self._log(f"[DRYRUN] Would extract {path} into {target}")
            result.logs = list(self.logs)
            return result

        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create restore directory {target}: {e}")

        result.extracted_members = extract_archive(path, target)
        self._log(f"Restore completed successfully! ({result.extracted_members} entries)")

        result.logs = list(self.logs)
        return result

    def _log(self, message: str):
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)


def restore_archive(settings, archive_path, target_dir=None, dry_run: bool = False,
                    verify_checksum: bool = False) -> RestoreResult:
    """Restore ``archive_path`` using the backup root described by ``settings``."""
    controller = RestoreController(BackupRoot.from_settings(settings))
    return controller.restore(archive_path, target_dir, dry_run=dry_run,
                              verify_checksum=verify_checksum)
