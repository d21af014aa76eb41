"""
Unit tests for the run lock (rotabackup/backup/lock.py).
"""

import os
import signal
from unittest.mock import patch

import pytest

from rotabackup.backup.lock import RunLock, LockError, LockHeldError, RunInterrupted


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / 'root' / '.rotabackup.lock'


class TestRunLock:
    """Test acquisition and release."""

    def test_acquire_creates_marker_with_pid(self, lock_path):
        lock = RunLock(lock_path)
        lock.acquire()

        try:
            assert lock.held
            assert lock_path.exists()
            assert lock.owner_pid() == os.getpid()
        finally:
            lock.release()

        assert not lock_path.exists()
        assert not lock.held

    def test_context_manager_releases(self, lock_path):
        with RunLock(lock_path) as lock:
            assert lock.is_locked()

        assert not lock_path.exists()

    def test_context_manager_releases_on_error(self, lock_path):
        with pytest.raises(ValueError):
            with RunLock(lock_path):
                raise ValueError("boom")

        assert not lock_path.exists()

    def test_second_lock_is_refused(self, lock_path):
        """Only one holder at a time."""
        with RunLock(lock_path):
            with pytest.raises(LockHeldError, match="Another backup run is active"):
                RunLock(lock_path).acquire()

            # The refused attempt must not remove the holder's marker
            assert lock_path.exists()

    def test_existing_marker_is_refused(self, lock_path):
        """An empty marker from another process counts as held."""
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text('')

        with pytest.raises(LockHeldError):
            RunLock(lock_path).acquire()

        assert lock_path.exists()

    def test_release_is_idempotent(self, lock_path):
        lock = RunLock(lock_path)
        lock.acquire()
        lock.release()
        lock.release()

        assert not lock_path.exists()

    def test_unwritable_marker(self, lock_path):
        with patch('rotabackup.backup.lock.os.open', side_effect=PermissionError("read-only")):
            with pytest.raises(LockError, match="Failed to create lock file"):
                RunLock(lock_path).acquire()

    def test_release_without_acquire_keeps_foreign_marker(self, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text('12345\n')

        RunLock(lock_path).release()

        assert lock_path.exists()


class TestDryRunLock:
    """Dry-run only checks the lock."""

    def test_dry_run_writes_nothing(self, lock_path):
        lock = RunLock(lock_path, dry_run=True)
        lock.acquire()
        lock.release()

        assert not lock_path.exists()
        assert not lock_path.parent.exists()

    def test_dry_run_still_refuses_held_lock(self, lock_path):
        with RunLock(lock_path):
            with pytest.raises(LockHeldError):
                RunLock(lock_path, dry_run=True).acquire()


class TestStaleLock:
    """Stale marker reclamation is opt-in."""

    def _write_dead_owner(self, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text('999999\n2024-01-01T00:00:00\n')

    @patch('rotabackup.backup.lock.os.kill', side_effect=ProcessLookupError)
    def test_stale_marker_refused_by_default(self, mock_kill, lock_path):
        self._write_dead_owner(lock_path)

        with pytest.raises(LockHeldError, match="PID 999999"):
            RunLock(lock_path).acquire()

        mock_kill.assert_not_called()

    @patch('rotabackup.backup.lock.os.kill', side_effect=ProcessLookupError)
    def test_stale_marker_reclaimed_when_enabled(self, mock_kill, lock_path):
        self._write_dead_owner(lock_path)

        with RunLock(lock_path, reclaim_stale=True) as lock:
            assert lock.owner_pid() == os.getpid()

        mock_kill.assert_called_once_with(999999, 0)

    @patch('rotabackup.backup.lock.os.kill', side_effect=ProcessLookupError)
    def test_dry_run_matches_real_run_on_stale_marker(self, mock_kill, lock_path):
        """A dry run passes a stale marker a real run would reclaim, and leaves it alone."""
        self._write_dead_owner(lock_path)

        lock = RunLock(lock_path, dry_run=True, reclaim_stale=True)
        lock.acquire()
        lock.release()

        assert lock_path.read_text() == '999999\n2024-01-01T00:00:00\n'

    @patch('rotabackup.backup.lock.os.kill', side_effect=ProcessLookupError)
    def test_dry_run_refuses_stale_marker_without_reclaim(self, mock_kill, lock_path):
        self._write_dead_owner(lock_path)

        with pytest.raises(LockHeldError):
            RunLock(lock_path, dry_run=True).acquire()

    @patch('rotabackup.backup.lock.os.kill', return_value=None)
    def test_live_owner_not_reclaimed(self, mock_kill, lock_path):
        self._write_dead_owner(lock_path)

        with pytest.raises(LockHeldError):
            RunLock(lock_path, reclaim_stale=True).acquire()


class TestSignalHandling:
    """Signals unwind as RunInterrupted; the holder releases the lock."""

    def test_handlers_installed_and_restored(self, lock_path):
        before = signal.getsignal(signal.SIGTERM)

        with RunLock(lock_path) as lock:
            assert signal.getsignal(signal.SIGTERM) == lock._handle_signal

        assert signal.getsignal(signal.SIGTERM) == before

    def test_sigterm_keeps_lock_until_caller_releases(self, lock_path):
        """The marker outlives the interrupt until the holder cleans up."""
        with pytest.raises(RunInterrupted, match="SIGTERM"):
            with RunLock(lock_path) as lock:
                try:
                    os.kill(os.getpid(), signal.SIGTERM)
                finally:
                    assert lock.held
                    assert lock_path.exists()

        assert not lock_path.exists()
        assert not lock.held
