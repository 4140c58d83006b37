"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Authenticate to Vault (token or kubernetes)
2. Materialize S3 settings from a Vault secret (if configured)
3. Resolve the destination bucket and snapshot key
4. Stream the Raft snapshot from Vault straight into S3

Any failure aborts the run; nothing is retried.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional

from vault_backup.config import SETTINGS_OVERRIDE_KEYS, BackupSettings
from .auth import CredentialResolver, strategy_from_settings
from .materializer import SecretMaterializer
from .naming import generate_snapshot_key
from .pipeline import StreamingTransfer, TransferJob
from .storage import CLIENT_OVERRIDE_KEYS, S3Storage
from .vault import VaultClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupResult:
    key: str
    bucket: str
    location: str
    bytes_transferred: int
    started_at: datetime
    completed_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


def warn_unused_overrides(overrides) -> None:
    """Warn about secret fields that neither the settings nor the S3 client read."""
    used = set(SETTINGS_OVERRIDE_KEYS) | set(CLIENT_OVERRIDE_KEYS)
    for name in sorted(set(overrides) - used):
        logger.warning(f"Warning: '{name}' from secret is not used by the backup")


def create_storage(settings: BackupSettings, overrides) -> S3Storage:
    """Build the S3 handler from resolved settings and Vault overrides."""
    return S3Storage(
        bucket_name=settings.require_bucket(),
        endpoint=settings.endpoint,
        path_style=settings.path_style,
        overrides=overrides,
        part_size=settings.upload_part_size,
    )


class BackupExecutor:
    """
    Orchestrates a single Vault snapshot backup.
    """

    def __init__(self, settings: BackupSettings,
                 vault_client: Optional[VaultClient] = None,
                 storage_factory: Optional[Callable] = None):
        """
        Initialize backup executor.

        Args:
            settings: Resolved run settings
            vault_client: Vault client (built from settings when omitted)
            storage_factory: Callable(settings, overrides) returning the
                storage handler (defaults to create_storage)
        """
        self.settings = settings
        if vault_client is None:
            vault_client = VaultClient(
                settings.vault_addr,
                namespace=settings.vault_namespace,
                verify=settings.vault_verify,
            )
        if storage_factory is None:
            storage_factory = create_storage
        self.vault_client = vault_client
        self.storage_factory = storage_factory

    def execute(self) -> BackupResult:
        """
        Execute the backup.

        Returns:
            BackupResult describing the uploaded snapshot

        Raises:
            BackupError: Any ConfigError, AuthError, SecretFetchError,
                ExportError or UploadError raised by a workflow step
        """
        started_at = datetime.now(timezone.utc)

        # Strategy selection happens before any Vault call
        strategy = strategy_from_settings(self.settings)
        logger.info(f"Authenticating to Vault at {self.settings.vault_addr} (mode: {self.settings.auth_mode})")
        session = CredentialResolver(self.vault_client, strategy).resolve()

        materializer = SecretMaterializer(
            self.vault_client,
            mount=self.settings.vault_mount,
            path=self.settings.secret_path,
        )
        overrides = materializer.materialize(session)
        warn_unused_overrides(overrides)

        settings = self.settings.with_overrides(overrides)
        storage = self.storage_factory(settings, overrides)

        key = generate_snapshot_key()
        job = TransferJob(
            export=partial(
                self.vault_client.export_snapshot,
                session,
                chunk_size=settings.snapshot_chunk_size,
            ),
            key=key,
            bucket=settings.bucket,
        )

        logger.info(f"Streaming Vault snapshot to s3://{job.bucket}/{job.key}")
        result = StreamingTransfer(storage, capacity=settings.conduit_capacity).run(job)

        completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Vault snapshot uploaded as {key} "
            f"({result.bytes_transferred / 1024 / 1024:.2f} MB, {result.location.parts} part(s))"
        )

        return BackupResult(
            key=key,
            bucket=job.bucket,
            location=result.location.url,
            bytes_transferred=result.bytes_transferred,
            started_at=started_at,
            completed_at=completed_at,
        )
