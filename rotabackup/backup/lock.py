"""
Run lock for rotation runs.

The lock is an advisory marker file created with O_CREAT | O_EXCL. Its
presence means another run is active. A crashed process leaves the marker
behind; it is only reclaimed automatically when ``reclaim_stale`` is
enabled and the recorded PID no longer exists, otherwise the operator has
to remove it.
"""

import os
import atexit
import signal
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from rotabackup.errors import BackupError


logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LockError(BackupError):
    """Raised when the lock marker cannot be written."""
    pass


class LockHeldError(LockError):
    """Raised when another run holds the lock."""
    pass


class RunInterrupted(BackupError):
    """Raised from the signal handler while the lock is still held."""

    def __init__(self, signum: int):
        self.signum = signum
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        super().__init__(f"Run interrupted by {name}")


class RunLock:
    """
    Scoped mutual exclusion for one backup root.

    Use as a context manager. While held, SIGINT and SIGTERM raise
    RunInterrupted. The marker stays in place until the caller has cleaned
    up and calls release(), so no other run starts next to leftover files.
    In dry-run mode the lock is only checked, never written.
    """

    def __init__(self, lock_path, dry_run: bool = False, reclaim_stale: bool = False):
        self.lock_path = Path(lock_path)
        self.dry_run = dry_run
        self.reclaim_stale = reclaim_stale
        self._held = False
        self._previous_handlers = {}

    @property
    def held(self) -> bool:
        return self._held

    def is_locked(self) -> bool:
        """True if any process holds the marker."""
        return self.lock_path.exists()

    def owner_pid(self) -> Optional[int]:
        """PID recorded in the marker, if readable."""
        try:
            with open(self.lock_path, 'r') as f:
                return int(f.readline().strip())
        except (OSError, ValueError):
            return None

    def acquire(self):
        """
        Take the lock.

        Raises:
            LockHeldError: If the marker already exists
            LockError: If the marker cannot be written
        """
        if self.dry_run:
            if self.is_locked():
                if not (self.reclaim_stale and self._is_stale()):
                    raise self._held_error()
                logger.warning(
                    f"[DRYRUN] Would reclaim stale lock left by PID {self.owner_pid()}: {self.lock_path}"
                )
                return
            logger.debug(f"[DRYRUN] Lock is free: {self.lock_path}")
            return

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._create_marker()
        except FileExistsError:
            if not (self.reclaim_stale and self._is_stale()):
                raise self._held_error()

            logger.warning(f"Reclaiming stale lock left by PID {self.owner_pid()}: {self.lock_path}")
            try:
                self.lock_path.unlink(missing_ok=True)
                self._create_marker()
            except FileExistsError:
                raise self._held_error()
            except OSError as e:
                raise LockError(f"Failed to create lock file {self.lock_path}: {e}")
        except OSError as e:
            raise LockError(f"Failed to create lock file {self.lock_path}: {e}")

        self._held = True
        self._install_signal_handlers()
        atexit.register(self.release)
        logger.debug(f"Lock acquired: {self.lock_path}")

    def release(self):
        """Remove the marker if this instance holds it. Safe to call repeatedly."""
        if not self._held:
            return

        self._held = False
        self._restore_signal_handlers()
        atexit.unregister(self.release)

        try:
            self.lock_path.unlink(missing_ok=True)
            logger.debug(f"Lock released: {self.lock_path}")
        except OSError as e:
            logger.error(f"Failed to remove lock file {self.lock_path}: {e}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def _create_marker(self):
        fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, 'w') as f:
            f.write(f"{os.getpid()}\n{datetime.now().isoformat(timespec='seconds')}\n")

    def _is_stale(self) -> bool:
        pid = self.owner_pid()
        if pid is None or pid == os.getpid():
            return False

        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            # Exists, owned by someone else
            return False

        return False

    def _held_error(self) -> LockHeldError:
        pid = self.owner_pid()
        owner = f" by PID {pid}" if pid is not None else ""
        return LockHeldError(
            f"Another backup run is active (lock held{owner}: {self.lock_path})"
        )

    def _install_signal_handlers(self):
        # signal.signal only works in the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            self._previous_handlers.clear()
            return

        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def _handle_signal(self, signum, frame):
        logger.warning(f"Received signal {signum}, stopping run")
        raise RunInterrupted(signum)
