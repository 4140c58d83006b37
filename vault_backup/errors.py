"""
Error taxonomy for a backup run.

Every error is fatal for the run; none are retried.
"""


class BackupError(Exception):
    """Base class for all backup run failures."""
    pass


class ConfigError(BackupError):
    """Raised when required configuration is missing or invalid."""
    pass


class AuthError(BackupError):
    """Raised when the Vault login fails or returns no usable session."""
    pass


class SecretFetchError(BackupError):
    """Raised when reading the secret bundle from Vault fails."""
    pass


class ExportError(BackupError):
    """Raised when reading the snapshot from Vault fails."""
    pass


class UploadError(BackupError):
    """Raised when writing the snapshot to object storage fails."""
    pass
