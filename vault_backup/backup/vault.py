"""
Vault client.

Wraps the three hvac calls a backup run needs:
- Kubernetes service-account login
- KV version 2 secret read
- Integrated storage (Raft) snapshot export, streamed into a sink
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

import hvac
import requests
from hvac import adapters, exceptions

from vault_backup.errors import AuthError, ExportError, SecretFetchError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Authenticated Vault handle. The token is never shown in repr()."""

    token: str = field(repr=False)
    method: str
    accessor: Optional[str] = None
    policies: Tuple[str, ...] = ()
    lease_duration: int = 0


class VaultClient:
    """
    Vault API client built on hvac.

    Each method translates hvac and transport failures into the error kind
    of the calling component (AuthError, SecretFetchError, ExportError).
    """

    def __init__(self, address: str, namespace: Optional[str] = None,
                 verify: Union[bool, str] = True, timeout: int = 30):
        """
        Initialize Vault client.

        Args:
            address: Vault server address (e.g. https://vault:8200)
            namespace: Optional Vault Enterprise namespace
            verify: TLS verification (bool or CA bundle path)
            timeout: Request timeout in seconds
        """
        self.address = address.rstrip('/')
        self.namespace = namespace
        self.verify = verify
        self.timeout = timeout
        self.http = requests.Session()

    def _client(self, session: Optional[Session] = None, adapter=adapters.JSONAdapter) -> hvac.Client:
        # An empty token keeps hvac from picking up VAULT_TOKEN or ~/.vault-token
        return hvac.Client(
            url=self.address,
            token=session.token if session is not None else '',
            namespace=self.namespace,
            verify=self.verify,
            timeout=self.timeout,
            session=self.http,
            adapter=adapter,
        )

    def login_kubernetes(self, role: str, jwt: str, mount: str = 'kubernetes') -> Session:
        """
        Log in with a Kubernetes service-account token.

        Args:
            role: Vault role bound to the service account
            jwt: Service-account JWT
            mount: Mount path of the Kubernetes auth method

        Returns:
            Session for the issued client token

        Raises:
            AuthError: If the login fails or returns no auth info
        """
        try:
            response = self._client().auth.kubernetes.login(
                role=role,
                jwt=jwt,
                use_token=False,
                mount_point=mount.strip('/'),
            )
        except exceptions.VaultError as e:
            raise AuthError(f"Vault: kubernetes login failed: {e}") from e
        except requests.RequestException as e:
            raise AuthError(f"Vault: kubernetes login request failed: {e}") from e
        except ValueError as e:
            raise AuthError(f"Vault: kubernetes login returned invalid JSON: {e}") from e

        auth = response.get('auth') if isinstance(response, dict) else None
        if not auth or not auth.get('client_token'):
            raise AuthError("Vault: no auth info was returned after login")

        return Session(
            token=auth['client_token'],
            method='kubernetes',
            accessor=auth.get('accessor'),
            policies=tuple(auth.get('policies') or ()),
            lease_duration=int(auth.get('lease_duration') or 0),
        )

    def read_kv2(self, session: Session, mount: str, path: str) -> Dict[str, Any]:
        """
        Read the latest version of a KV v2 secret.

        Returns:
            The secret's key/value data

        Raises:
            SecretFetchError: If the read fails or the secret has no data
        """
        try:
            response = self._client(session).secrets.kv.v2.read_secret_version(
                path=path.strip('/'),
                mount_point=mount.strip('/'),
                raise_on_deleted_version=True,
            )
        except exceptions.InvalidPath as e:
            raise SecretFetchError(f"unable to read Vault secret {mount}/{path}: secret not found") from e
        except exceptions.VaultError as e:
            raise SecretFetchError(f"unable to read Vault secret {mount}/{path}: {e}") from e
        except requests.RequestException as e:
            raise SecretFetchError(f"unable to read Vault secret {mount}/{path}: {e}") from e

        data = None
        if isinstance(response, dict):
            data = (response.get('data') or {}).get('data')
        if data is None:
            raise SecretFetchError(f"unable to read Vault secret {mount}/{path}: secret has no data")
        return data

    def export_snapshot(self, session: Session, sink, chunk_size: int = 64 * 1024) -> int:
        """
        Stream a Raft snapshot into `sink`.

        Bytes are written to the sink as they arrive; the snapshot is never
        held in memory as a whole. The sink is not closed here.

        Args:
            session: Authenticated session
            sink: Object with a write(bytes) method
            chunk_size: Size of chunks read from the HTTP response

        Returns:
            Number of bytes written

        Raises:
            ExportError: If the request fails or the sink rejects a write
        """
        written = 0
        try:
            # The raw adapter hands back the streamed response unread
            response = self._client(session, adapter=adapters.RawAdapter).sys.take_raft_snapshot()
            with response:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        sink.write(chunk)
                        written += len(chunk)
        except exceptions.VaultError as e:
            raise ExportError(f"unable to read snapshot from Vault: {e}") from e
        except requests.RequestException as e:
            raise ExportError(f"unable to read snapshot from Vault: {e}") from e
        except OSError as e:
            raise ExportError(f"unable to write snapshot to sink: {e}") from e

        logger.debug(f"Snapshot stream finished after {written} bytes")
        return written
