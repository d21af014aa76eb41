"""
On-disk layout of a backup root.

    <root>/
        daily/      backup-<ts>.<ext> + .sha256 sidecars
        weekly/     backup-weekly-<ts>.<ext> + sidecars
        monthly/    backup-monthly-<ts>.<ext> + sidecars
        restore/    default restore target
        backup.log
        .rotabackup.lock
"""

import os
import shutil
import logging
from pathlib import Path
from typing import Dict, List, Optional

from rotabackup.errors import BackupError
from rotabackup.models import Archive, RetentionTier, TIERS
from .naming import parse_archive_name


logger = logging.getLogger(__name__)

LOCK_FILENAME = '.rotabackup.lock'


class StorageError(BackupError):
    """Raised when storage operation fails."""
    pass


class BackupRoot:
    """
    Explicit context object for one backup root.

    Every component receives the root instead of computing paths itself.
    """

    def __init__(self, base_path, restore_dir=None, log_file=None):
        """
        Initialize backup root.

        Args:
            base_path: Directory holding the tier directories
            restore_dir: Default restore target (defaults to <root>/restore)
            log_file: Log file path (defaults to <root>/backup.log)
        """
        self.base_path = Path(base_path).expanduser().resolve()
        self.restore_dir = Path(restore_dir) if restore_dir else self.base_path / 'restore'
        self.log_file = Path(log_file) if log_file else self.base_path / 'backup.log'
        self.lock_path = self.base_path / LOCK_FILENAME

    @classmethod
    def from_settings(cls, settings) -> 'BackupRoot':
        return cls(settings.backup_root, settings.restore_dir, settings.log_file)

    def tier_dir(self, tier: str) -> Path:
        if tier not in TIERS:
            raise ValueError(f"Invalid tier: {tier}. Valid options: {list(TIERS)}")
        return self.base_path / tier

    def retention_tiers(self, keep_counts: Dict[str, int]) -> List[RetentionTier]:
        return [
            RetentionTier(name=tier, directory=self.tier_dir(tier), keep_count=keep_counts[tier])
            for tier in TIERS
        ]

    def layout_dirs(self) -> List[Path]:
        return [self.base_path] + [self.tier_dir(t) for t in TIERS] + [self.restore_dir]

    def missing_dirs(self) -> List[Path]:
        return [d for d in self.layout_dirs() if not d.is_dir()]

    def ensure_layout(self) -> List[Path]:
        """
        Create any missing layout directory.

        Returns:
            Directories that were created

        Raises:
            StorageError: If a directory cannot be created
        """
        created = []

        for directory in self.missing_dirs():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create directory {directory}: {e}")
            created.append(directory)

        return created

    def list_archives(self, tier: str) -> List[Archive]:
        """
        List archives of a tier, in no particular order.

        Only names that parse as archives of this tier are returned; other
        files (sidecars, partial files, strays) are ignored.

        Raises:
            StorageError: If the directory cannot be listed
        """
        directory = self.tier_dir(tier)

        if not directory.is_dir():
            return []

        archives = []

        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            raise StorageError(f"Failed to list {directory}: {e}")

        for entry in entries:
            if not entry.is_file(follow_symlinks=False):
                continue

            parsed = parse_archive_name(entry.name)
            if parsed is None:
                if not entry.name.endswith('.sha256'):
                    logger.debug(f"Ignoring non-archive file: {entry.path}")
                continue

            if parsed.tier != tier:
                logger.debug(f"Ignoring {parsed.tier} archive in {tier} directory: {entry.path}")
                continue

            try:
                size = entry.stat(follow_symlinks=False).st_size
            except OSError:
                size = 0

            archives.append(Archive(
                name=entry.name,
                tier=tier,
                created_at=parsed.created_at,
                path=Path(entry.path),
                sequence=parsed.sequence,
                size_bytes=size
            ))

        return archives

    def inventory(self) -> Dict[str, List[Archive]]:
        return {tier: self.list_archives(tier) for tier in TIERS}

    def copy_to_tier(self, source_path, tier: str, name: str) -> Path:
        """
        Copy an archive into a tier directory.

        Returns:
            Path of the copy

        Raises:
            StorageError: If the target exists or the copy fails
        """
        dest_path = self.tier_dir(tier) / name

        if dest_path.exists():
            raise StorageError(f"Refusing to overwrite existing archive: {dest_path}")

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to copy {source_path} to {dest_path}: {e}")

        return dest_path

    def delete(self, archive: Archive):
        """
        Delete an archive and its checksum sidecar.

        Raises:
            StorageError: If deletion fails
        """
        for path in (archive.path, archive.checksum_path):
            remove_file(path)

    def find(self, name: str) -> Optional[Path]:
        """Locate an archive by filename in any tier directory."""
        for tier in TIERS:
            candidate = self.tier_dir(tier) / name
            if candidate.is_file():
                return candidate
        return None


def remove_file(path):
    """
    Delete a file if it exists.

    Raises:
        StorageError: If deletion fails
    """
    path = Path(path)

    try:
        path.unlink(missing_ok=True)
    except PermissionError as e:
        raise StorageError(f"Permission denied deleting {path}: {e}")
    except OSError as e:
        raise StorageError(f"Failed to delete {path}: {e}")
