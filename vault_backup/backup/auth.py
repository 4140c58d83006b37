"""
Credential resolution for Vault.

Supports:
- TokenStrategy: use the ambient VAULT_TOKEN as-is
- KubernetesStrategy: log in with the pod's service-account token

Exactly one strategy is selected per run, before any Vault call is made.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Union

from vault_backup.config import AUTH_MODE_KUBERNETES, AUTH_MODE_TOKEN, BackupSettings
from vault_backup.errors import AuthError, ConfigError
from .vault import Session, VaultClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenStrategy:
    token: str

    def __repr__(self):
        return 'TokenStrategy(token=***)'


@dataclass(frozen=True)
class KubernetesStrategy:
    role: str
    service_account_token_path: str
    mount: str = 'kubernetes'


AuthStrategy = Union[TokenStrategy, KubernetesStrategy]


class AuthState(enum.Enum):
    UNAUTHENTICATED = 'unauthenticated'
    AUTHENTICATING = 'authenticating'
    AUTHENTICATED = 'authenticated'
    FAILED = 'failed'


def select_strategy(mode: Optional[str], token: Optional[str] = None,
                    role: Optional[str] = None,
                    service_account_token_path: Optional[str] = None,
                    mount: str = 'kubernetes') -> AuthStrategy:
    """
    Pick the authentication strategy for a mode selector.

    Args:
        mode: 'token' or 'kubernetes'
        token: Ambient Vault token (token mode)
        role: Vault role (kubernetes mode)
        service_account_token_path: Path to the service-account JWT
        mount: Kubernetes auth method mount path

    Returns:
        The selected strategy

    Raises:
        ConfigError: If the mode is empty or unknown, or a required value is missing
    """
    if not mode:
        raise ConfigError("authMode not set, set to token or kubernetes")

    if mode == AUTH_MODE_TOKEN:
        if not token:
            raise ConfigError("Vault: env. variable VAULT_TOKEN not set.")
        return TokenStrategy(token=token)

    if mode == AUTH_MODE_KUBERNETES:
        if not role:
            raise ConfigError("Vault: env. variable VAULT_ROLE not set.")
        if not service_account_token_path:
            raise ConfigError("Vault: kubernetes service account token path not set.")
        return KubernetesStrategy(
            role=role,
            service_account_token_path=service_account_token_path,
            mount=mount,
        )

    raise ConfigError(f"authMode '{mode}' unknown, set to token or kubernetes")


def strategy_from_settings(settings: BackupSettings) -> AuthStrategy:
    return select_strategy(
        settings.auth_mode,
        token=settings.vault_token,
        role=settings.vault_role,
        service_account_token_path=settings.kubernetes_token_path,
        mount=settings.kubernetes_auth_mount,
    )


class CredentialResolver:
    """
    Runs one authentication strategy against Vault and holds the resulting session.

    State machine:
        UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
        UNAUTHENTICATED -> AUTHENTICATING -> FAILED (terminal)
    """

    def __init__(self, client: VaultClient, strategy: AuthStrategy):
        self.client = client
        self.strategy = strategy
        self.state = AuthState.UNAUTHENTICATED
        self.session = None

    def resolve(self) -> Session:
        """
        Authenticate and return the session.

        Calling resolve() again after success returns the same session.

        Raises:
            AuthError: If authentication fails, or if a previous attempt failed
        """
        if self.state is AuthState.AUTHENTICATED:
            return self.session
        if self.state is not AuthState.UNAUTHENTICATED:
            raise AuthError(f"Vault: cannot authenticate from state '{self.state.value}'")

        self.state = AuthState.AUTHENTICATING
        try:
            session = self._authenticate()
        except Exception:
            self.state = AuthState.FAILED
            raise

        self.session = session
        self.state = AuthState.AUTHENTICATED
        logger.info(f"Vault: authenticated using {session.method} auth")
        return session

    def _authenticate(self) -> Session:
        if isinstance(self.strategy, TokenStrategy):
            return Session(token=self.strategy.token, method=AUTH_MODE_TOKEN)

        if isinstance(self.strategy, KubernetesStrategy):
            jwt = self._read_service_account_token(self.strategy.service_account_token_path)
            return self.client.login_kubernetes(
                role=self.strategy.role,
                jwt=jwt,
                mount=self.strategy.mount,
            )

        raise AuthError(f"Vault: unsupported auth strategy {type(self.strategy).__name__}")

    @staticmethod
    def _read_service_account_token(path: str) -> str:
        try:
            with open(path, 'r') as f:
                jwt = f.read().strip()
        except OSError as e:
            raise AuthError(f"Vault: unable to initialize Kubernetes auth method: {e}") from e

        if not jwt:
            raise AuthError(f"Vault: service account token file is empty: {path}")
        return jwt
