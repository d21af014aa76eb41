from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


DAILY = 'daily'
WEEKLY = 'weekly'
MONTHLY = 'monthly'

# Pruning and listing order
TIERS = (DAILY, WEEKLY, MONTHLY)

CHECKSUM_SUFFIX = '.sha256'


@dataclass(frozen=True)
class Archive:
    """One backup archive inside a tier directory"""

    name: str
    tier: str
    created_at: datetime
    path: Path
    sequence: int = 0
    size_bytes: int = field(default=0, compare=False)

    @property
    def checksum_path(self) -> Path:
        return self.path.with_name(self.name + CHECKSUM_SUFFIX)

    @property
    def sort_key(self):
        """Total order: timestamp, then collision suffix, then filename."""
        return (self.created_at, self.sequence, self.name)

    def __repr__(self):
        return f'<Archive {self.tier}/{self.name}>'


@dataclass(frozen=True)
class RetentionTier:
    """Tier name, its directory and how many archives it keeps"""

    name: str
    directory: Path
    keep_count: int


class RunState(str, Enum):
    """States of one rotation run"""

    IDLE = 'idle'
    LOCK_ACQUIRED = 'lock_acquired'
    ARCHIVING = 'archiving'
    VERIFYING = 'verifying'
    CLASSIFYING = 'classifying'
    PRUNING = 'pruning'
    DONE = 'done'
    FAILED = 'failed'
    ABORTED = 'aborted'

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED, RunState.ABORTED)


@dataclass
class RotationResult:
    """Outcome of a rotation run"""

    source_dir: Path
    dry_run: bool = False
    state: RunState = RunState.IDLE
    error_message: Optional[str] = None
    archive_path: Optional[Path] = None
    checksum_path: Optional[Path] = None
    size_bytes: int = 0
    tier_copies: Dict[str, Path] = field(default_factory=dict)
    deleted: Dict[str, List[Path]] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE


@dataclass
class RestoreResult:
    """Outcome of a restore"""

    archive_path: Path
    target_dir: Path
    dry_run: bool = False
    verified: bool = False
    extracted_members: int = 0
    logs: List[str] = field(default_factory=list)
