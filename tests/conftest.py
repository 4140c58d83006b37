"""
Shared pytest fixtures for vault-backup tests.

This module provides fixtures for:
- Run settings built from a controlled environment
- A mocked hvac client
- Mocked S3 (moto) with a test bucket
- In-memory storage for pipeline tests
- Service-account token files
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from vault_backup.config import load_settings
from vault_backup.backup.storage import ObjectLocation
from vault_backup.backup.vault import Session, VaultClient


@pytest.fixture
def base_env():
    """
    Environment for a token-mode run against 'test-bucket'.
    """
    return {
        'VAULT_ADDR': 'https://vault.example.com:8200',
        'VAULT_AUTH_MODE': 'token',
        'VAULT_TOKEN': 's.test-token',
        'AWS_BUCKET': 'test-bucket',
    }


@pytest.fixture
def settings(base_env):
    """Production settings built from base_env."""
    return load_settings('production', environ=base_env)


@pytest.fixture
def session():
    return Session(token='s.test-token', method='token')


@pytest.fixture
def mock_hvac():
    """
    Patched hvac.Client class.

    Every client VaultClient builds is `mock_hvac.return_value`.
    """
    with patch('hvac.Client') as client_cls:
        yield client_cls


@pytest.fixture
def vault_client(mock_hvac):
    """VaultClient whose hvac clients are mocked."""
    return VaultClient('https://vault.example.com:8200')


def _make_response(chunks=None):
    response = MagicMock()
    response.iter_content.return_value = iter(chunks or [])
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


@pytest.fixture
def make_response():
    """
    Factory for MagicMocks shaped like a streamed requests.Response.
    """
    return _make_response


@pytest.fixture
def sa_token_file(tmp_path):
    """Service-account token file containing a fake JWT."""
    path = tmp_path / 'token'
    path.write_text('eyJhbGciOiJSUzI1NiJ9.test.jwt\n')
    return path


class MemoryStorage:
    """
    In-memory upload sink with the S3Storage.upload_stream interface.

    Records the bytes it read, and whether the source's write end was closed
    at the moment the object was finalized.
    """

    def __init__(self, bucket_name='test-bucket', read_size=7):
        self.bucket_name = bucket_name
        self.read_size = read_size
        self.source_closed_at_finalize = None
        self.objects = {}
        self.finalized = threading.Event()

    def upload_stream(self, source, key):
        data = bytearray()
        while True:
            chunk = source.read(self.read_size)
            if not chunk:
                break
            data += chunk
        self.source_closed_at_finalize = source.write_closed
        self.objects[key] = bytes(data)
        self.finalized.set()
        return ObjectLocation(self.bucket_name, key, etag='"memory"')


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3
