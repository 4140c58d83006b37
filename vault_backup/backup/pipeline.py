"""
Streaming transfer from a snapshot producer to an S3 upload.

The producer runs on its own thread and writes into a bounded conduit; the
upload runs on the calling thread and reads from it. The producer's result
is always joined, so an export failure is reported even though it happens
off the calling thread.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from vault_backup.errors import ExportError, UploadError
from .conduit import open_conduit
from .storage import ObjectLocation


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferJob:
    """
    A single snapshot transfer.

    `export` writes the snapshot into the sink it is given and returns when
    the snapshot is complete. It must not close the sink.
    """
    export: Callable
    key: str
    bucket: str


@dataclass(frozen=True)
class TransferResult:
    location: ObjectLocation
    bytes_transferred: int


class StreamingTransfer:
    """
    Runs a TransferJob through a bounded conduit.

    Exactly one producer thread and one consumer (the caller) per run.
    """

    def __init__(self, storage, capacity: int = 8 * 1024 * 1024):
        """
        Args:
            storage: Object with a bucket_name and
                upload_stream(source, key) -> ObjectLocation
            capacity: Conduit buffer size in bytes
        """
        self.storage = storage
        self.capacity = capacity

    def run(self, job: TransferJob) -> TransferResult:
        """
        Transfer the snapshot.

        Returns:
            TransferResult with the uploaded location and byte count

        Raises:
            ExportError: If the producer failed
            UploadError: If the upload failed while the producer was healthy,
                or the storage does not write to the job's bucket
        """
        if job.bucket != self.storage.bucket_name:
            raise UploadError(
                f"storage writes to bucket '{self.storage.bucket_name}', not '{job.bucket}'"
            )

        reader, writer = open_conduit(self.capacity)
        outcome = {}

        def produce():
            error = None
            try:
                job.export(writer)
                logger.info("Vault snapshot created")
            except BaseException as e:
                error = e
                outcome['error'] = e
            finally:
                writer.close(error)

        producer = threading.Thread(target=produce, name='snapshot-producer', daemon=True)
        producer.start()

        location = None
        upload_error = None
        try:
            location = self.storage.upload_stream(reader, job.key)
        except Exception as e:
            upload_error = e
        finally:
            # Unblocks a producer still waiting on a full buffer
            reader.close()

        producer.join()

        export_error = outcome.get('error')
        error = self._pick_error(export_error, upload_error)
        if error is not None:
            raise error

        return TransferResult(location=location, bytes_transferred=writer.bytes_written)

    @staticmethod
    def _pick_error(export_error: Optional[BaseException],
                    upload_error: Optional[BaseException]) -> Optional[BaseException]:
        """
        Choose the error that caused the failure.

        A producer that failed only because the upload closed the conduit
        (BrokenPipeError) is a consequence, not the cause. Any other producer
        failure is the cause of whatever the upload reported.
        """
        if export_error is not None:
            caused_by_consumer = (
                isinstance(export_error, BrokenPipeError)
                or isinstance(export_error.__cause__, BrokenPipeError)
            )
            if upload_error is None or not caused_by_consumer:
                return _as(ExportError, "unable to read snapshot from Vault", export_error)

        if upload_error is not None:
            return _as(UploadError, "failed to upload file", upload_error)
        return None


def _as(error_type, message: str, error: BaseException) -> BaseException:
    """Return `error` if it already is `error_type`, else wrap it."""
    if isinstance(error, error_type):
        return error
    wrapped = error_type(f"{message}: {error}")
    wrapped.__cause__ = error
    return wrapped
