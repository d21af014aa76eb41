"""
Rotation controller - orchestrates one complete backup run.

Workflow:
1. Acquire the run lock (abort if another run holds it)
2. Validate the source directory and prepare the layout
3. Create the daily archive
4. Write and verify its checksum sidecar
5. Copy it into the weekly/monthly tiers on their calendar days
6. Prune every tier to its keep count
7. Release the lock (on every exit path)

In dry-run mode every mutating step is replaced by a log line and the
retention pass runs against the on-disk listing plus the archives the run
would have created.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rotabackup.models import (
    Archive, RotationResult, RunState, DAILY, WEEKLY, MONTHLY, TIERS
)
from .naming import (
    generate_archive_name, parse_archive_name, checksum_name, is_weekly_day, is_monthly_day,
    MAX_SEQUENCE
)
from .sources import LocalSource
from .compression import create_archive, discard_partial, get_archive_size, partial_path_for
from .digest import IntegrityError, compute_digest, write_checksum, verify
from .lock import RunLock, LockError, LockHeldError
from .retention import RetentionManager
from .storage import BackupRoot, StorageError, remove_file


logger = logging.getLogger(__name__)

# States after which the new archive counts as a valid backup
_COMMITTED_STATES = (RunState.PRUNING, RunState.DONE)


class RotationController:
    """
    Drives the rotation state machine for one backup root.
    """

    def __init__(self, root: BackupRoot, settings, dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize rotation controller.

        Args:
            root: Backup root to rotate
            settings: Resolved Settings (keep counts, calendar rules, format, excludes)
            dry_run: Simulate every mutating step
            clock: Returns the run time; defaults to datetime.now
        """
        self.root = root
        self.settings = settings
        self.dry_run = dry_run
        self.clock = clock or datetime.now
        self.state = RunState.IDLE
        self.result = None
        self.logs = []
        self._created: List[Path] = []
        self._simulated: Dict[str, List[Archive]] = {}

    def run(self, source_dir) -> RotationResult:
        """
        Execute one rotation.

        Returns:
            RotationResult in state DONE

        Raises:
            LockHeldError: If another run holds the lock (state ABORTED)
            BackupError: Any other failure (state FAILED); partial artifacts are removed
        """
        if self.state != RunState.IDLE:
            raise RuntimeError("RotationController instances run only once")

        self.result = RotationResult(
            source_dir=Path(source_dir),
            dry_run=self.dry_run,
            started_at=datetime.now()
        )

        self._log(f"Starting backup for: {source_dir}")

        lock = RunLock(
            self.root.lock_path,
            dry_run=self.dry_run,
            reclaim_stale=self.settings.reclaim_stale_lock
        )

        try:
            lock.acquire()
        except LockHeldError as e:
            self._finish(RunState.ABORTED, e)
            raise
        except LockError as e:
            self._finish(RunState.FAILED, e)
            raise

        try:
            self._transition(RunState.LOCK_ACQUIRED)
            self._execute_workflow(source_dir)
            self._finish(RunState.DONE)
        except Exception as e:
            self._fail(e)
            raise
        finally:
            lock.release()

        return self.result

    def _execute_workflow(self, source_dir):
        """Execute the main rotation steps."""
        source = LocalSource(source_dir, self.settings.exclude_patterns)
        source_path = source.validate()
        self._exclude_backup_root(source, source_path)
        self._prepare_layout()

        now = self.clock()

        self._transition(RunState.ARCHIVING)
        archive_path = self._create_archive(source, now)

        self._transition(RunState.VERIFYING)
        digest = self._verify_archive(archive_path)

        self._transition(RunState.CLASSIFYING)
        self._classify(archive_path, digest, now)

        self._transition(RunState.PRUNING)
        self._prune()

    def _exclude_backup_root(self, source: LocalSource, source_path: Path):
        # Never archive the backup root into itself
        try:
            self.root.base_path.relative_to(source_path)
        except ValueError:
            return

        self._log(f"Backup root is inside the source, excluding it: {self.root.base_path}")
        source.exclude_path(self.root.base_path)

    def _prepare_layout(self):
        if self.dry_run:
            for directory in self.root.missing_dirs():
                self._log(f"[DRYRUN] Would create directory: {directory}")
            return

        for directory in self.root.ensure_layout():
            self._log(f"Created directory: {directory}")

    def _unique_name(self, tier: str, now: datetime, start: int = 0) -> str:
        """First free archive name for ``now`` in a tier directory."""
        directory = self.root.tier_dir(tier)

        for sequence in range(start, MAX_SEQUENCE + 1):
            name, _ = generate_archive_name(
                now, tier, self.settings.compression_format, sequence
            )
            path = directory / name
            if not path.exists() and not partial_path_for(path).exists():
                return name

        raise StorageError(
            f"Too many archives with timestamp {now:%Y-%m-%d %H:%M:%S} in {directory}"
        )

    def _create_archive(self, source: LocalSource, now: datetime) -> Path:
        name = self._unique_name(DAILY, now)
        archive_path = self.root.tier_dir(DAILY) / name
        self.result.archive_path = archive_path

        if self.dry_run:
            self._log(f"[DRYRUN] Would create: {archive_path}")
            self._simulate(DAILY, archive_path, now)
            return archive_path

        # Registered before writing so a failure also removes the partial file
        self._created.append(archive_path)
        create_archive(source, archive_path, self.settings.compression_format)

        size = get_archive_size(archive_path)
        self.result.size_bytes = size
        self._log(f"Backup created: {archive_path} ({size / 1024 / 1024:.2f} MB)")

        return archive_path

    def _verify_archive(self, archive_path: Path) -> Optional[str]:
        checksum_path = archive_path.with_name(checksum_name(archive_path.name))
        self.result.checksum_path = checksum_path

        if self.dry_run:
            self._log(f"[DRYRUN] Would write checksum: {checksum_path}")
            return None

        self._created.append(checksum_path)
        digest = compute_digest(archive_path)
        write_checksum(archive_path, digest)

        if not verify(archive_path, checksum_path):
            raise IntegrityError(f"Checksum verification failed for {archive_path}")

        self._log(f"Checksum verified: {checksum_path}")
        return digest

    def _classify(self, archive_path: Path, digest: Optional[str], now: datetime):
        today = now.date()

        if is_weekly_day(today, self.settings.weekly_day):
            self._log(f"It's {now:%A} → marking as weekly backup.")
            self._copy_to_tier(archive_path, WEEKLY, now, digest)

        if is_monthly_day(today, self.settings.monthly_day):
            self._log(f"It's day {today.day} of the month → marking as monthly backup.")
            self._copy_to_tier(archive_path, MONTHLY, now, digest)

    def _copy_to_tier(self, archive_path: Path, tier: str, now: datetime, digest: Optional[str]):
        name = self._unique_name(tier, now, start=self._sequence_of(archive_path))
        dest_path = self.root.tier_dir(tier) / name

        if self.dry_run:
            self._log(f"[DRYRUN] Would copy to {dest_path}")
            self._simulate(tier, dest_path, now)
            return

        self._created.append(dest_path)
        self.root.copy_to_tier(archive_path, tier, name)

        self._created.append(dest_path.with_name(checksum_name(name)))
        checksum_path = write_checksum(dest_path, digest)

        if not verify(dest_path, checksum_path):
            raise IntegrityError(f"Checksum verification failed for {tier} copy {dest_path}")

        self.result.tier_copies[tier] = dest_path
        self._log(f"Copied to {tier}: {dest_path}")

    def _prune(self):
        manager = RetentionManager(self.root.retention_tiers(self.settings.keep_counts))

        for tier in TIERS:
            archives = self.root.list_archives(tier) + self._simulated.get(tier, [])
            doomed = manager.plan_tier(tier, archives)
            self.result.deleted[tier] = []

            if not doomed:
                logger.debug(f"Nothing to prune in {tier} ({len(archives)} archives)")
                continue

            self._log(f"Cleaning up {len(doomed)} old backups in {self.root.tier_dir(tier)} ...")

            for archive in doomed:
                if self.dry_run:
                    self._log(f"[DRYRUN] Would delete {archive.path}")
                else:
                    self.root.delete(archive)
                    self._log(f"Deleted old backup: {archive.path}")
                self.result.deleted[tier].append(archive.path)

    def _simulate(self, tier: str, path: Path, now: datetime):
        archive = Archive(
            name=path.name,
            tier=tier,
            created_at=now.replace(microsecond=0),
            path=path,
            sequence=self._sequence_of(path)
        )
        self._simulated.setdefault(tier, []).append(archive)

    @staticmethod
    def _sequence_of(path: Path) -> int:
        parsed = parse_archive_name(path.name)
        return parsed.sequence if parsed else 0

    def _discard_artifacts(self):
        """Remove everything this run wrote, newest first."""
        for path in reversed(self._created):
            discard_partial(path)
            if not path.exists():
                continue
            try:
                remove_file(path)
                self._log(f"Removed partial artifact: {path}", logging.WARNING)
            except StorageError as e:
                self._log(f"Warning: {e}", logging.WARNING)
        self._created.clear()

    def _fail(self, error: Exception):
        failed_in = self.state

        if not self.dry_run and failed_in not in _COMMITTED_STATES:
            self._discard_artifacts()

        self._finish(RunState.FAILED, error)

    def _finish(self, state: RunState, error: Optional[Exception] = None):
        self.state = state
        self.result.state = state
        self.result.completed_at = datetime.now()

        if state == RunState.DONE:
            suffix = " (dry run)" if self.dry_run else ""
            self._log(f"Backup process completed successfully{suffix}")
        elif state == RunState.ABORTED:
            self.result.error_message = str(error)
            self._log(f"Backup aborted: {error}", logging.ERROR)
        else:
            self.result.error_message = str(error)
            self._log(f"Backup failed: {error}", logging.ERROR)

        self.result.logs = list(self.logs)

    def _transition(self, state: RunState):
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state
        self.result.state = state

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        prefix = 'ERROR: ' if level >= logging.ERROR else ''
        self.logs.append(f"[{timestamp}] {prefix}{message}")
        logger.log(level, message)


def run_rotation(settings, source_dir, dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None) -> RotationResult:
    """
    Run one rotation for the backup root described by ``settings``.

    Returns:
        RotationResult of the completed run

    Raises:
        BackupError: If the run aborts or fails
    """
    root = BackupRoot.from_settings(settings)
    controller = RotationController(root, settings, dry_run=dry_run, clock=clock)
    return controller.run(source_dir)
