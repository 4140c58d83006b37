"""
S3 storage for snapshot uploads.

Uploads a stream of unknown length:
- Streams that end within the first part are sent with a single put_object
- Longer streams use a multipart upload, one part per `part_size` chunk
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from vault_backup.errors import UploadError


logger = logging.getLogger(__name__)

# S3 rejects multipart parts (other than the last) smaller than 5 MiB
MIN_PART_SIZE = 5 * 1024 * 1024

# Secret fields the S3 client is built from
CLIENT_OVERRIDE_KEYS = (
    'AWS_ACCESS_KEY_ID',
    'AWS_SECRET_ACCESS_KEY',
    'AWS_SESSION_TOKEN',
    'AWS_REGION',
    'AWS_DEFAULT_REGION',
    'AWS_PROFILE',
    'AWS_ENDPOINT_URL',
    'AWS_ENDPOINT_URL_S3',
    'AWS_CA_BUNDLE',
)


@dataclass(frozen=True)
class ObjectLocation:
    bucket: str
    key: str
    etag: Optional[str] = None
    parts: int = 1

    @property
    def url(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def read_chunk(source, size: int) -> bytes:
    """
    Read exactly `size` bytes from `source`, or fewer at end-of-stream.

    Streams may return short reads; this keeps reading until the chunk is
    full or the source returns b''.
    """
    buf = bytearray()
    while len(buf) < size:
        data = source.read(size - len(buf))
        if not data:
            break
        buf += data
    return bytes(buf)


class S3Storage:
    """
    Handler for streaming snapshots to S3 (or an S3-compatible endpoint).
    """

    def __init__(self, bucket_name: str, endpoint: Optional[str] = None,
                 path_style: bool = False, overrides: Optional[Mapping[str, str]] = None,
                 part_size: int = 8 * 1024 * 1024):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            endpoint: Optional endpoint URL (e.g. MinIO); takes precedence over
                AWS_ENDPOINT_URL_S3 and AWS_ENDPOINT_URL from `overrides`
            path_style: Use path-style addressing instead of virtual hosts
            overrides: Configuration materialized from Vault. The keys in
                CLIENT_OVERRIDE_KEYS take precedence over the default boto3
                chain (credentials, region, profile, endpoint, CA bundle)
            part_size: Multipart chunk size (at least 5 MiB)
        """
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_PART_SIZE} bytes, got {part_size}")

        overrides = overrides or {}
        self.bucket_name = bucket_name
        self.part_size = part_size

        try:
            session = boto3.session.Session(
                aws_access_key_id=overrides.get('AWS_ACCESS_KEY_ID'),
                aws_secret_access_key=overrides.get('AWS_SECRET_ACCESS_KEY'),
                aws_session_token=overrides.get('AWS_SESSION_TOKEN'),
                region_name=overrides.get('AWS_REGION') or overrides.get('AWS_DEFAULT_REGION'),
                profile_name=overrides.get('AWS_PROFILE') or None,
            )
            self.s3_client = session.client(
                's3',
                endpoint_url=(
                    endpoint
                    or overrides.get('AWS_ENDPOINT_URL_S3')
                    or overrides.get('AWS_ENDPOINT_URL')
                    or None
                ),
                verify=overrides.get('AWS_CA_BUNDLE') or None,
                config=BotoConfig(s3={'addressing_style': 'path' if path_style else 'auto'}),
            )
        except (BotoCoreError, ValueError) as e:
            raise UploadError(f"Unable to init AWS SDK: {e}") from e

    def upload_stream(self, source, key: str) -> ObjectLocation:
        """
        Upload a stream of unknown length to S3.

        The object is only created once `source` reports end-of-stream. If
        reading the source fails, no object is created.

        Args:
            source: Object with a read(size) method
            key: S3 object key

        Returns:
            ObjectLocation of the uploaded object

        Raises:
            UploadError: If the upload or reading the source fails
        """
        try:
            first = read_chunk(source, self.part_size)

            if len(first) < self.part_size:
                return self._simple_upload(key, first)

            return self._multipart_upload(key, first, source)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise UploadError(f"failed to upload file ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise UploadError(f"failed to upload file: {e}") from e
        except OSError as e:
            raise UploadError(f"failed to upload file: source stream failed: {e}") from e

    def _simple_upload(self, key: str, data: bytes) -> ObjectLocation:
        response = self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data
        )
        return ObjectLocation(self.bucket_name, key, etag=response.get('ETag'), parts=1)

    def _multipart_upload(self, key: str, first: bytes, source) -> ObjectLocation:
        """
        Upload using a multipart upload, starting with an already-read first part.

        The multipart upload is aborted on any error so no partial object
        is left behind.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            data = first
            part_number = 1

            while data:
                response = self.s3_client.upload_part(
                    Bucket=self.bucket_name,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=data
                )

                parts.append({
                    'PartNumber': part_number,
                    'ETag': response['ETag']
                })
                logger.debug(f"Uploaded part {part_number} ({len(data)} bytes)")

                part_number += 1
                data = read_chunk(source, self.part_size)

            response = self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

        return ObjectLocation(self.bucket_name, key, etag=response.get('ETag'), parts=len(parts))
