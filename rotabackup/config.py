import os
import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Tuple

from rotabackup.errors import ConfigError


ENV_PREFIX = 'ROTABACKUP_'

COMPRESSION_FORMATS = ('tar.gz', 'tar.bz2', 'tar.xz', 'none', 'zip')


class Config:
    """Base configuration"""

    # Backup root holding daily/, weekly/, monthly/ and restore/
    # Relative paths resolve against the working directory
    BACKUP_ROOT = 'backups'
    RESTORE_DIR = None  # defaults to <root>/restore
    LOG_FILE = None  # defaults to <root>/backup.log

    # Retention
    DAILY_KEEP = 7
    WEEKLY_KEEP = 4
    MONTHLY_KEEP = 3

    # Calendar rules (ISO weekday: 1=Monday, 7=Sunday)
    WEEKLY_DAY = 7
    MONTHLY_DAY = 1

    # Archive
    COMPRESSION_FORMAT = 'tar.gz'
    EXCLUDE_PATTERNS = ()

    # Accepted for compatibility, nothing is delivered
    NOTIFY_TARGET = None

    # Lock
    RECLAIM_STALE_LOCK = False

    # Logging
    DEBUG = False
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep backups inside the checkout
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    BACKUP_ROOT = os.path.join(BASE_DIR, 'data', 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class Settings:
    """Resolved settings for one invocation"""

    backup_root: Path
    restore_dir: Path
    log_file: Path
    daily_keep: int
    weekly_keep: int
    monthly_keep: int
    weekly_day: int
    monthly_day: int
    compression_format: str
    exclude_patterns: Tuple[str, ...]
    notify_target: Optional[str]
    reclaim_stale_lock: bool
    debug: bool
    log_max_bytes: int
    log_backup_count: int

    @property
    def keep_counts(self):
        return {
            'daily': self.daily_keep,
            'weekly': self.weekly_keep,
            'monthly': self.monthly_keep,
        }


_INT_KEYS = ('daily_keep', 'weekly_keep', 'monthly_keep', 'weekly_day',
             'monthly_day', 'log_max_bytes', 'log_backup_count')
_BOOL_KEYS = ('reclaim_stale_lock', 'debug')
_PATH_KEYS = ('backup_root', 'restore_dir', 'log_file')
_KNOWN_KEYS = tuple(f.name for f in fields(Settings))


def load_settings(config_name: Optional[str] = None,
                  config_file: Optional[str] = None,
                  **overrides) -> Settings:
    """
    Resolve settings for one invocation.

    Precedence (lowest first): configuration class, JSON config file,
    ROTABACKUP_* environment variables, keyword overrides.

    Args:
        config_name: Key into ``config`` (defaults to $ROTABACKUP_ENV or production)
        config_file: Optional path to a JSON file with lowercase keys
        **overrides: Final values, e.g. from the command line

    Returns:
        Validated Settings

    Raises:
        ConfigError: If any source is malformed or a value is out of range
    """
    if config_name is None:
        config_name = os.environ.get(ENV_PREFIX + 'ENV', 'production')

    if config_name not in config:
        raise ConfigError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    config_class = config[config_name]
    values = {
        key: getattr(config_class, key.upper())
        for key in _KNOWN_KEYS
    }

    if config_file:
        values.update(_read_config_file(config_file))

    values.update(_read_environment())
    values.update({k: v for k, v in overrides.items() if v is not None})

    return _build_settings(values)


def _read_config_file(config_file: str) -> dict:
    path = Path(config_file).expanduser()

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    # Older configs name the backup root "destination"
    if 'destination' in data and 'backup_root' not in data:
        data['backup_root'] = data.pop('destination')

    unknown = sorted(set(data) - set(_KNOWN_KEYS))
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    return data


def _read_environment() -> dict:
    values = {}

    for key in _KNOWN_KEYS:
        raw = os.environ.get(ENV_PREFIX + key.upper())
        if raw is None or raw == '':
            continue

        if key == 'exclude_patterns':
            values[key] = [p.strip() for p in raw.split(',') if p.strip()]
        elif key in _BOOL_KEYS:
            values[key] = raw.strip().lower() in ('1', 'true', 'yes', 'on')
        elif key in _INT_KEYS:
            try:
                values[key] = int(raw)
            except ValueError:
                raise ConfigError(f"{ENV_PREFIX}{key.upper()} must be an integer, got {raw!r}")
        else:
            values[key] = raw

    return values


def _build_settings(values: dict) -> Settings:
    for key in _INT_KEYS:
        value = values[key]
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer, got {value!r}")

    for key in ('daily_keep', 'weekly_keep', 'monthly_keep'):
        if values[key] < 0:
            raise ConfigError(f"{key} must be >= 0, got {values[key]}")

    if not 1 <= values['weekly_day'] <= 7:
        raise ConfigError(f"weekly_day must be 1 (Monday) to 7 (Sunday), got {values['weekly_day']}")

    if not 1 <= values['monthly_day'] <= 28:
        raise ConfigError(f"monthly_day must be between 1 and 28, got {values['monthly_day']}")

    if values['compression_format'] not in COMPRESSION_FORMATS:
        raise ConfigError(
            f"Invalid compression format: {values['compression_format']}. "
            f"Valid options: {list(COMPRESSION_FORMATS)}"
        )

    patterns = values['exclude_patterns'] or ()
    if isinstance(patterns, str) or not all(isinstance(p, str) for p in patterns):
        raise ConfigError("exclude_patterns must be a list of glob patterns")

    for key in _BOOL_KEYS:
        if not isinstance(values[key], bool):
            raise ConfigError(f"{key} must be true or false, got {values[key]!r}")

    if not values['backup_root']:
        raise ConfigError("backup_root is not configured")

    backup_root = Path(values['backup_root']).expanduser().resolve()
    restore_dir = values['restore_dir'] or backup_root / 'restore'
    log_file = values['log_file'] or backup_root / 'backup.log'

    notify_target = values['notify_target']
    if notify_target is not None and not isinstance(notify_target, str):
        raise ConfigError("notify_target must be a string")

    return Settings(
        backup_root=backup_root,
        restore_dir=Path(restore_dir).expanduser().resolve(),
        log_file=Path(log_file).expanduser().resolve(),
        daily_keep=values['daily_keep'],
        weekly_keep=values['weekly_keep'],
        monthly_keep=values['monthly_keep'],
        weekly_day=values['weekly_day'],
        monthly_day=values['monthly_day'],
        compression_format=values['compression_format'],
        exclude_patterns=tuple(patterns),
        notify_target=notify_target,
        reclaim_stale_lock=values['reclaim_stale_lock'],
        debug=values['debug'],
        log_max_bytes=values['log_max_bytes'],
        log_backup_count=values['log_backup_count'],
    )
