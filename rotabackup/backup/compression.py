"""
Compression handlers for backup archives.

Supports multiple formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import tarfile
import zipfile
import logging
from pathlib import Path

from rotabackup.errors import BackupError
from .sources import LocalSource


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.partial'


class ArchivalFailure(BackupError):
    """Raised when archive creation fails."""
    pass


class ExtractionError(BackupError):
    """Raised when an archive cannot be extracted."""
    pass


def partial_path_for(archive_path) -> Path:
    """Hidden temp file the archive is written to before it is renamed into place."""
    archive_path = Path(archive_path)
    return archive_path.with_name(f".{archive_path.name}{PARTIAL_SUFFIX}")


def create_archive(
    source: LocalSource,
    archive_path,
    compression_format: str = 'tar.gz'
) -> Path:
    """
    Create a compressed archive of a source directory.

    The archive is written to a hidden ``.partial`` file next to
    ``archive_path`` and renamed once complete, so an interrupted run never
    leaves a half-written file under an archive name.

    Args:
        source: Validated LocalSource (exclude patterns are applied)
        archive_path: Final archive path, including extension
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        Path to the created archive file

    Raises:
        ArchivalFailure: If archive creation fails
        ValueError: If compression_format is invalid
    """
    # Map format to handler
    format_map = {
        'zip': _create_zip,
        'tar.gz': _create_tar,
        'tar.bz2': _create_tar,
        'tar.xz': _create_tar,
        'none': _create_tar
    }

    if compression_format not in format_map:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(format_map.keys())}"
        )

    archive_path = Path(archive_path)
    partial_path = partial_path_for(archive_path)
    handler = format_map[compression_format]

    try:
        handler(source, partial_path, compression_format)
        os.replace(partial_path, archive_path)
        return archive_path
    except BackupError:
        discard_partial(archive_path)
        raise
    except Exception as e:
        # Clean up partial archive on failure
        discard_partial(archive_path)
        raise ArchivalFailure(f"Failed to create archive: {e}")
    except BaseException:
        discard_partial(archive_path)
        raise


def discard_partial(archive_path):
    """Remove a leftover ``.partial`` file for ``archive_path``, if any."""
    partial_path = partial_path_for(archive_path)
    try:
        partial_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove partial archive {partial_path}: {e}")


def _create_tar(source: LocalSource, archive_path: Path, compression_format: str):
    """
    Create a TAR archive with optional compression.

    Args:
        source: Directory to archive
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none')
    """
    # Map format to tarfile mode
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
        'none': 'w'
    }

    mode = mode_map.get(compression_format, 'w:gz')
    source_root = source.path.resolve()
    arcname = source_root.name

    def exclude_filter(tarinfo):
        if tarinfo.name == arcname:
            return tarinfo
        if source.should_exclude(source_root.parent / tarinfo.name):
            logger.debug(f"Excluded: {tarinfo.name}")
            return None
        return tarinfo

    with tarfile.open(archive_path, mode) as tar:
        # Store entries under the directory basename, like tar -C <parent> <name>
        tar.add(source_root, arcname=arcname, recursive=True, filter=exclude_filter)


def _create_zip(source: LocalSource, archive_path: Path, compression_format: str):
    """
    Create a ZIP archive.

    Args:
        source: Directory to archive
        archive_path: Output archive path
        compression_format: Not used for zip, kept for interface consistency
    """
    source_root = source.path.resolve()

    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        zipf.write(source_root, source_root.name)

        for dirpath, dirnames, filenames in os.walk(source_root):
            directory = Path(dirpath)

            # Prune excluded directories in place so os.walk skips them
            dirnames[:] = sorted(
                d for d in dirnames if not source.should_exclude(directory / d)
            )

            for name in dirnames:
                item = directory / name
                zipf.write(item, item.relative_to(source_root.parent))

            for name in sorted(filenames):
                item = directory / name
                if source.should_exclude(item):
                    logger.debug(f"Excluded: {item}")
                    continue
                zipf.write(item, item.relative_to(source_root.parent))


def extract_archive(archive_path, target_dir) -> int:
    """
    Extract an archive into a directory.

    Tar members go through the ``tar`` extraction filter and zip members
    are sanitised by zipfile, so no member is written outside
    ``target_dir``. Symlinks are restored as stored, like ``tar -x``.

    Args:
        archive_path: Archive to extract
        target_dir: Existing destination directory

    Returns:
        Number of members extracted

    Raises:
        ExtractionError: If the archive is unreadable or unsupported
    """
    archive_path = str(archive_path)
    target_dir = str(target_dir)

    try:
        if archive_path.endswith('.zip') or zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                members = zipf.namelist()
                zipf.extractall(target_dir)
                return len(members)

        if tarfile.is_tarfile(archive_path):
            # Extraction filters first shipped in 3.10.12, 3.11.4 and 3.12
            if not hasattr(tarfile, 'tar_filter'):
                raise ExtractionError(
                    "Safe tar extraction needs Python 3.10.12, 3.11.4, 3.12 or newer"
                )

            with tarfile.open(archive_path, 'r:*') as tar:
                members = tar.getmembers()
                tar.extractall(target_dir, filter='tar')
                return len(members)

    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}")
    except OSError as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}")

    raise ExtractionError(f"Unsupported archive format: {archive_path}")


def get_archive_size(archive_path) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        ArchivalFailure: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchivalFailure(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchivalFailure(f"Failed to get archive size: {e}")
