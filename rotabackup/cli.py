"""
Command line interface.

    rotabackup <source_dir>
    rotabackup --dry-run <source_dir>
    rotabackup --list
    rotabackup --restore <archive_file> [--to <target_dir>] [--verify]

Every failure exits with status 1, usage errors included.
"""

import logging
from pathlib import Path

import click

from rotabackup import __version__, configure_console_logging, configure_logging
from rotabackup.config import load_settings
from rotabackup.errors import BackupError, ConfigError
from rotabackup.models import TIERS, CHECKSUM_SUFFIX
from rotabackup.backup.storage import BackupRoot
from rotabackup.backup.retention import sort_newest_first
from rotabackup.backup.executor import run_rotation
from rotabackup.backup.restore import restore_archive


logger = logging.getLogger(__name__)

EXIT_FAILURE = 1

USAGE = "rotabackup [--dry-run|--list|--restore <file> --to <folder>] <source_dir>"


class RotabackupCommand(click.Command):
    """Click command that reports usage errors with exit status 1."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = EXIT_FAILURE
            raise


def usage_error(message, ctx=None):
    error = click.UsageError(message, ctx)
    error.exit_code = EXIT_FAILURE
    return error


def human_size(size: int) -> str:
    """Size in the style of ``tree -h``."""
    value = float(size)
    for unit in ('', 'K', 'M', 'G', 'T'):
        if value < 1024 or unit == 'T':
            if unit == '':
                return f"{int(value)}"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{int(size)}"


def render_inventory(root: BackupRoot) -> str:
    """
    Tree-like listing of every tier.

    Returns:
        Listing text, or an empty string when there are no archives
    """
    inventory = root.inventory()
    if not any(inventory.values()):
        return ''

    lines = [str(root.base_path)]
    total = 0

    for index, tier in enumerate(TIERS):
        last_tier = index == len(TIERS) - 1
        archives = sort_newest_first(inventory[tier])
        lines.append(f"{'└── ' if last_tier else '├── '}{tier}/ ({len(archives)})")

        branch = '    ' if last_tier else '│   '
        for position, archive in enumerate(archives):
            last = position == len(archives) - 1
            marker = '' if archive.checksum_path.exists() else f'  [no {CHECKSUM_SUFFIX.lstrip(".")}]'
            lines.append(
                f"{branch}{'└── ' if last else '├── '}[{human_size(archive.size_bytes):>6}]  "
                f"{archive.name}{marker}"
            )
            total += 1

    lines.append('')
    lines.append(f"{total} archives")
    return '\n'.join(lines)


@click.command(cls=RotabackupCommand, context_settings={'help_option_names': ['-h', '--help']})
@click.argument('source_dir', required=False, type=click.Path(path_type=Path))
@click.option('--dry-run', is_flag=True, help='Simulate the run; nothing is written or deleted.')
@click.option('--list', 'list_backups', is_flag=True, help='List available backups and exit.')
@click.option('--restore', 'restore_file', type=click.Path(path_type=Path), metavar='ARCHIVE',
              help='Restore ARCHIVE (path, or archive name inside the backup root).')
@click.option('--to', 'restore_target', type=click.Path(path_type=Path), metavar='DIR',
              help='Restore target directory (default: <backup root>/restore).')
@click.option('--verify', 'verify_checksum', is_flag=True,
              help='Verify the archive checksum before restoring.')
@click.option('--config', '-c', 'config_file', type=click.Path(dir_okay=False, path_type=Path),
              help='JSON configuration file.')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging.')
@click.version_option(version=__version__, prog_name='rotabackup')
@click.pass_context
def cli(ctx, source_dir, dry_run, list_backups, restore_file, restore_target,
        verify_checksum, config_file, verbose):
    """Automated backup with daily, weekly and monthly rotation.

    Archives SOURCE_DIR into <backup root>/daily, copies it into weekly/
    on the weekly day and monthly/ on the first of the month, then prunes
    every tier to its configured keep count.
    """
    if list_backups and (restore_file or source_dir):
        raise usage_error("--list cannot be combined with a source or --restore", ctx)

    if restore_target and not restore_file:
        raise usage_error("--to is only valid with --restore", ctx)

    if verify_checksum and not restore_file:
        raise usage_error("--verify is only valid with --restore", ctx)

    configure_console_logging(verbose=verbose)
    try:
        settings = load_settings(config_file=str(config_file) if config_file else None)
    except ConfigError as e:
        fail(ctx, f"Configuration error: {e}", e)

    if list_backups:
        list_inventory(settings)
        return

    if restore_file:
        # Backwards compatible form: --restore <file> <target>
        if source_dir and restore_target:
            raise usage_error("Give the restore target either with --to or as an argument, not both", ctx)
        target = restore_target or source_dir

        try:
            configure_logging(settings, verbose=verbose, create_log_dir=False)
            restore_archive(settings, restore_file, target, dry_run=dry_run,
                            verify_checksum=verify_checksum)
        except (BackupError, OSError) as e:
            fail(ctx, f"Restore failed: {e}", e)
        return

    if source_dir is None:
        raise usage_error(f"Missing source directory.\nUsage: {USAGE}", ctx)

    try:
        configure_logging(settings, verbose=verbose, create_log_dir=not dry_run)
    except OSError as e:
        fail(ctx, f"Cannot open log file {settings.log_file}: {e}", e)

    try:
        run_rotation(settings, source_dir, dry_run=dry_run)
    except (BackupError, OSError) as e:
        # Already logged with a timestamp by the controller
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_FAILURE)


def fail(ctx, message, error):
    """Log ``message``, print ``error`` and exit with status 1."""
    logger.error(message)
    click.echo(f"Error: {error}", err=True)
    ctx.exit(EXIT_FAILURE)


def list_inventory(settings):
    root = BackupRoot.from_settings(settings)
    click.echo("=== Available Backups ===")

    try:
        listing = render_inventory(root)
    except BackupError as e:
        click.echo(f"Error: {e}", err=True)
        raise click.exceptions.Exit(EXIT_FAILURE)

    click.echo(listing or "No backups found.")


def main():
    """Console script entry point."""
    cli(prog_name='rotabackup')


if __name__ == '__main__':  # pragma: no cover
    main()
