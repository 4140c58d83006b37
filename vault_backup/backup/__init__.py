"""
Backup module for vault-backup.

This module handles the core backup functionality including:
- Vault authentication (token and kubernetes)
- Secret materialization for the S3 client
- Streaming the Raft snapshot through a bounded conduit
- Multipart upload to S3
- Snapshot key naming
"""

from .executor import BackupExecutor, BackupResult
from .auth import CredentialResolver, select_strategy
from .materializer import SecretMaterializer
from .pipeline import StreamingTransfer, TransferJob
from .storage import S3Storage
from .naming import generate_snapshot_key

__all__ = [
    'BackupExecutor',
    'BackupResult',
    'CredentialResolver',
    'select_strategy',
    'SecretMaterializer',
    'StreamingTransfer',
    'TransferJob',
    'S3Storage',
    'generate_snapshot_key'
]
