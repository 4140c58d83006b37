"""
vault-backup command line interface.

Stream a Vault Raft snapshot straight into S3:

    vault-backup --auth-mode kubernetes --secret backup/s3

Every option falls back to its environment variable; see vault_backup.config.
"""

import logging
import sys

import click

from vault_backup import __version__, configure_logging
from vault_backup.backup import BackupExecutor
from vault_backup.config import config, load_settings
from vault_backup.errors import BackupError, ConfigError


logger = logging.getLogger(__name__)


@click.command(name='vault-backup')
@click.version_option(version=__version__, prog_name='vault-backup')
@click.option('--auth-mode', 'auth_mode', default=None,
              help='Vault authentication mode: token or kubernetes [env: VAULT_AUTH_MODE]')
@click.option('--kubernetes-service-account-path', 'kubernetes_token_path', default=None,
              help='Path to the kubernetes service account token [env: VAULT_K8S_TOKEN_PATH]')
@click.option('--mount', 'vault_mount', default=None,
              help='Vault KV v2 secret mount [env: VAULT_MOUNT]')
@click.option('--secret', 'secret_path', default=None,
              help='Path to secret that contains S3 credentials [env: VAULT_SECRET]')
@click.option('--config', 'config_name', default=None,
              type=click.Choice(sorted(config.keys())),
              help='Configuration profile [env: BACKUP_ENV]')
def main(auth_mode, kubernetes_token_path, vault_mount, secret_path, config_name):
    """Back up a Vault Raft snapshot to S3."""
    try:
        settings = load_settings(
            config_name,
            auth_mode=auth_mode,
            kubernetes_token_path=kubernetes_token_path,
            vault_mount=vault_mount,
            secret_path=secret_path,
        )
    except ConfigError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    configure_logging(settings)

    try:
        result = BackupExecutor(settings).execute()
    except BackupError as e:
        logger.error(f"Backup failed: {e}")
        sys.exit(1)

    logger.info(f"Backup completed in {result.duration_seconds:.1f}s: {result.location}")


if __name__ == '__main__':
    main()
