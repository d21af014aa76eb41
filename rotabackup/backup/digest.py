"""
SHA-256 checksum sidecars for backup archives.

The sidecar sits next to the archive as ``<archive-name>.sha256`` and uses
the ``sha256sum`` line format, so ``sha256sum -c`` can check it too:

    <64 hex digits>  <archive-name>
"""

import os
import re
import hashlib
import logging
from pathlib import Path
from typing import Optional, Tuple

from rotabackup.errors import BackupError
from .naming import checksum_name


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB

_LINE_RE = re.compile(r'^(?P<digest>[0-9a-fA-F]{64}) [ *](?P<name>.+)$')


class IntegrityError(BackupError):
    """Raised when an archive does not match its checksum."""
    pass


def compute_digest(archive_path) -> str:
    """
    Compute the SHA-256 digest of a file.

    Args:
        archive_path: Path to the file

    Returns:
        Lowercase hex digest

    Raises:
        IntegrityError: If the file cannot be read
    """
    sha256 = hashlib.sha256()

    try:
        with open(archive_path, 'rb') as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
                sha256.update(chunk)
    except OSError as e:
        raise IntegrityError(f"Failed to read {archive_path} for checksum: {e}")

    return sha256.hexdigest()


def write_checksum(archive_path, digest: str) -> Path:
    """
    Write a sidecar for ``archive_path`` with a known digest.

    Returns:
        Path of the sidecar file
    """
    archive_path = Path(archive_path)
    checksum_path = archive_path.with_name(checksum_name(archive_path.name))

    try:
        with open(checksum_path, 'w') as f:
            f.write(f"{digest}  {archive_path.name}\n")
    except OSError as e:
        raise IntegrityError(f"Failed to write checksum file {checksum_path}: {e}")

    return checksum_path


def compute_and_store(archive_path) -> Path:
    """
    Compute the archive digest and persist it next to the archive.

    Args:
        archive_path: Path to the archive

    Returns:
        Path of the sidecar file

    Raises:
        IntegrityError: If reading the archive or writing the sidecar fails
    """
    digest = compute_digest(archive_path)
    return write_checksum(archive_path, digest)


def read_checksum(checksum_path) -> Optional[Tuple[str, str]]:
    """Return (digest, archive_name) from a sidecar, or None if it is unusable."""
    try:
        with open(checksum_path, 'r') as f:
            line = f.readline().strip()
    except (OSError, UnicodeDecodeError):
        return None

    match = _LINE_RE.match(line)
    if not match:
        return None

    return match.group('digest').lower(), match.group('name')


def verify(archive_path, checksum_path) -> bool:
    """
    Recompute the archive digest and compare it with the sidecar.

    A missing or malformed sidecar, or one that names a different archive,
    fails verification.

    Returns:
        True if the archive matches its sidecar
    """
    archive_path = Path(archive_path)

    recorded = read_checksum(checksum_path)
    if recorded is None:
        logger.warning(f"Checksum file missing or malformed: {checksum_path}")
        return False

    expected, name = recorded
    if name != archive_path.name:
        logger.warning(f"Checksum file {checksum_path} refers to {name}, not {archive_path.name}")
        return False

    if not os.path.isfile(archive_path):
        return False

    try:
        actual = compute_digest(archive_path)
    except IntegrityError as e:
        logger.warning(str(e))
        return False

    return actual == expected
