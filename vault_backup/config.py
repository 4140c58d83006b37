import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Union

from vault_backup.errors import ConfigError


AUTH_MODE_TOKEN = 'token'
AUTH_MODE_KUBERNETES = 'kubernetes'

_TRUE_VALUES = ('1', 't', 'true')
_FALSE_VALUES = ('0', 'f', 'false')

# Secret fields applied to BackupSettings by with_overrides()
SETTINGS_OVERRIDE_KEYS = ('AWS_BUCKET', 'AWS_ENDPOINT', 'AWS_PATHSTYLE')


class Config:
    """Base configuration"""

    # Vault
    VAULT_ADDR = 'https://127.0.0.1:8200'
    AUTH_MODE = AUTH_MODE_TOKEN
    KUBERNETES_SERVICE_ACCOUNT_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/token'
    KUBERNETES_AUTH_MOUNT = 'kubernetes'
    VAULT_MOUNT = 'secret'

    # Transfer
    CONDUIT_CAPACITY = 8 * 1024 * 1024
    UPLOAD_PART_SIZE = 8 * 1024 * 1024
    SNAPSHOT_CHUNK_SIZE = 64 * 1024

    # Logging
    LOG_DIR = None
    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    LOG_DIR = os.path.join(BASE_DIR, 'data', 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def parse_bool(value: Optional[str]) -> bool:
    """
    Parse a boolean flag the way Vault and the AWS tooling do.

    Accepts 1/t/true and 0/f/false (word forms case-insensitive).

    Raises:
        ValueError: If the value is not a recognised boolean
    """
    if value is None:
        raise ValueError("empty boolean value")

    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def _parse_size(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        size = int(raw)
    except ValueError:
        raise ConfigError(f"'{name}' must be an integer number of bytes, got {raw!r}")
    if size <= 0:
        raise ConfigError(f"'{name}' must be positive, got {size}")
    return size


@dataclass(frozen=True)
class BackupSettings:
    """Resolved settings for a single backup run."""

    auth_mode: str
    vault_addr: str
    vault_token: Optional[str]
    vault_role: Optional[str]
    vault_namespace: Optional[str]
    vault_verify: Union[bool, str]
    kubernetes_token_path: str
    kubernetes_auth_mount: str
    vault_mount: str
    secret_path: str
    bucket: Optional[str]
    endpoint: Optional[str]
    path_style: bool
    conduit_capacity: int
    upload_part_size: int
    snapshot_chunk_size: int
    log_dir: Optional[str]
    debug: bool

    def with_overrides(self, overrides: Mapping[str, str]) -> 'BackupSettings':
        """
        Apply destination settings materialized from a Vault secret.

        Values in the override map take precedence over the environment.
        An unparseable AWS_PATHSTYLE falls back to False.
        """
        changes = {}
        if overrides.get('AWS_BUCKET'):
            changes['bucket'] = overrides['AWS_BUCKET']
        if overrides.get('AWS_ENDPOINT'):
            changes['endpoint'] = overrides['AWS_ENDPOINT']
        if 'AWS_PATHSTYLE' in overrides:
            try:
                changes['path_style'] = parse_bool(overrides['AWS_PATHSTYLE'])
            except ValueError:
                changes['path_style'] = False
        return replace(self, **changes) if changes else self

    def require_bucket(self) -> str:
        if not self.bucket:
            raise ConfigError("'AWS_BUCKET' not set")
        return self.bucket


def _vault_verify(environ: Mapping[str, str]) -> Union[bool, str]:
    """Translate VAULT_CACERT / VAULT_SKIP_VERIFY into an hvac `verify` value."""
    skip = environ.get('VAULT_SKIP_VERIFY')
    if skip:
        try:
            if parse_bool(skip):
                return False
        except ValueError:
            raise ConfigError(f"'VAULT_SKIP_VERIFY' is not a boolean: {skip!r}")
    return environ.get('VAULT_CACERT') or True


def load_settings(config_name: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None,
                  **options) -> BackupSettings:
    """
    Build run settings from the environment.

    Args:
        config_name: Key into `config` (defaults to BACKUP_ENV or 'production')
        environ: Environment mapping (defaults to os.environ)
        **options: Explicit values (e.g. from CLI flags) taking precedence
            over the environment. None values are ignored.

    Returns:
        BackupSettings instance

    Raises:
        ConfigError: If a setting has an invalid value
    """
    if environ is None:
        environ = os.environ

    if config_name is None:
        config_name = environ.get('BACKUP_ENV', 'production')
    if config_name not in config:
        raise ConfigError(f"Unknown configuration '{config_name}'")
    defaults = config[config_name]

    options = {k: v for k, v in options.items() if v is not None}

    try:
        path_style = parse_bool(environ.get('AWS_PATHSTYLE'))
    except ValueError:
        path_style = False

    return BackupSettings(
        auth_mode=options.get('auth_mode', environ.get('VAULT_AUTH_MODE', defaults.AUTH_MODE)),
        vault_addr=environ.get('VAULT_ADDR') or defaults.VAULT_ADDR,
        vault_token=environ.get('VAULT_TOKEN') or None,
        vault_role=environ.get('VAULT_ROLE') or None,
        vault_namespace=environ.get('VAULT_NAMESPACE') or None,
        vault_verify=_vault_verify(environ),
        kubernetes_token_path=options.get(
            'kubernetes_token_path',
            environ.get('VAULT_K8S_TOKEN_PATH') or defaults.KUBERNETES_SERVICE_ACCOUNT_PATH,
        ),
        kubernetes_auth_mount=environ.get('VAULT_K8S_MOUNT') or defaults.KUBERNETES_AUTH_MOUNT,
        vault_mount=options.get('vault_mount', environ.get('VAULT_MOUNT') or defaults.VAULT_MOUNT),
        secret_path=options.get('secret_path', environ.get('VAULT_SECRET', '')),
        bucket=environ.get('AWS_BUCKET') or None,
        endpoint=environ.get('AWS_ENDPOINT') or None,
        path_style=path_style,
        conduit_capacity=_parse_size(environ, 'CONDUIT_CAPACITY', defaults.CONDUIT_CAPACITY),
        upload_part_size=_parse_size(environ, 'UPLOAD_PART_SIZE', defaults.UPLOAD_PART_SIZE),
        snapshot_chunk_size=defaults.SNAPSHOT_CHUNK_SIZE,
        log_dir=environ.get('LOG_DIR') or defaults.LOG_DIR,
        debug=defaults.DEBUG,
    )
