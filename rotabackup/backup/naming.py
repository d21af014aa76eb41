"""
Archive naming and calendar rules.

Names follow ``backup[-<tier>]-<YYYY-MM-DD_HH-MM-SS>[_NN].<ext>``. The
zero-padded timestamp makes a lexical sort of names chronological, and the
optional ``_NN`` suffix (only used when a name is already taken) sorts
after the plain name because ``_`` > ``.``.
"""

import re
from datetime import date, datetime
from typing import NamedTuple, Optional, Tuple

from rotabackup.models import CHECKSUM_SUFFIX, DAILY, TIERS


TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'

MAX_SEQUENCE = 99

# Map compression format to file extension
EXTENSION_MAP = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

_NAME_RE = re.compile(
    r'^backup'
    r'(?:-(?P<tier>weekly|monthly))?'
    r'-(?P<timestamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})'
    r'(?:_(?P<sequence>\d{2}))?'
    r'\.(?P<extension>tar\.gz|tar\.bz2|tar\.xz|tar|zip)$'
)


class ParsedName(NamedTuple):
    tier: str
    created_at: datetime
    sequence: int
    extension: str


def format_timestamp(now: datetime) -> str:
    return now.strftime(TIMESTAMP_FORMAT)


def extension_for(compression_format: str) -> str:
    """
    Map a compression format to its file extension.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in EXTENSION_MAP:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSION_MAP.keys())}"
        )
    return EXTENSION_MAP[compression_format]


def generate_archive_name(
    now: datetime,
    tier: str = DAILY,
    compression_format: str = 'tar.gz',
    sequence: int = 0
) -> Tuple[str, str]:
    """
    Generate the canonical archive filename for a run.

    Args:
        now: Creation time of the run
        tier: 'daily', 'weekly' or 'monthly'
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none', 'zip')
        sequence: Collision suffix, 0 for none

    Returns:
        (archive_name, timestamp) tuple

    Raises:
        ValueError: If tier, format or sequence is invalid
    """
    if tier not in TIERS:
        raise ValueError(f"Invalid tier: {tier}. Valid options: {list(TIERS)}")

    if not 0 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"Sequence out of range (0-{MAX_SEQUENCE}): {sequence}")

    timestamp = format_timestamp(now)
    extension = extension_for(compression_format)

    prefix = 'backup' if tier == DAILY else f'backup-{tier}'
    suffix = f'_{sequence:02d}' if sequence else ''

    return f"{prefix}-{timestamp}{suffix}.{extension}", timestamp


def parse_archive_name(filename: str) -> Optional[ParsedName]:
    """
    Parse an archive filename.

    Returns:
        ParsedName, or None if the name is not a backup archive
        (including names whose timestamp is not a real date)
    """
    match = _NAME_RE.match(filename)
    if not match:
        return None

    try:
        created_at = datetime.strptime(match.group('timestamp'), TIMESTAMP_FORMAT)
    except ValueError:
        return None

    sequence = int(match.group('sequence') or 0)
    if match.group('sequence') is not None and sequence == 0:
        # _00 is never generated
        return None

    return ParsedName(
        tier=match.group('tier') or DAILY,
        created_at=created_at,
        sequence=sequence,
        extension=match.group('extension')
    )


def checksum_name(archive_name: str) -> str:
    return archive_name + CHECKSUM_SUFFIX


def is_weekly_day(day: date, weekly_day: int = 7) -> bool:
    """True when ``day`` is the designated weekly day (ISO weekday, 7 = Sunday)."""
    return day.isoweekday() == weekly_day


def is_monthly_day(day: date, monthly_day: int = 1) -> bool:
    """True when ``day`` is the designated day of the month."""
    return day.day == monthly_day
