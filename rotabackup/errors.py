"""
Error taxonomy for rotabackup.

Every error that aborts an invocation derives from BackupError. Modules
define their own subclasses next to the code that raises them.
"""


class BackupError(Exception):
    """Base class for errors that terminate a backup invocation."""
    pass


class ConfigError(BackupError):
    """Raised when configuration is missing or malformed."""
    pass
