"""
Secret materialization.

Reads a KV v2 secret and turns its string fields into configuration
overrides for the S3 client (e.g. AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY,
AWS_REGION, AWS_BUCKET). The overrides are returned as a plain dict and
passed explicitly to the storage constructor; os.environ is left untouched.
"""

import logging
from typing import Dict

from .vault import Session, VaultClient


logger = logging.getLogger(__name__)


class SecretMaterializer:

    def __init__(self, client: VaultClient, mount: str, path: str = ''):
        self.client = client
        self.mount = mount
        self.path = path

    def materialize(self, session: Session) -> Dict[str, str]:
        """
        Fetch the secret and project its string fields.

        Returns an empty dict when no secret path is configured. Fields whose
        value is not a string are skipped with a warning.

        Raises:
            SecretFetchError: If the secret cannot be read
        """
        if not self.path:
            logger.debug("No secret path configured, skipping secret materialization")
            return {}

        bundle = self.client.read_kv2(session, self.mount, self.path)

        overrides = {}
        for name, value in bundle.items():
            if isinstance(value, str):
                overrides[name] = value
                logger.info(f"{name} set from secret")
            else:
                logger.warning(
                    f"Warning: cannot set '{name}' as type '{type(value).__name__}' is not a string"
                )

        return overrides
