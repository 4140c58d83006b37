"""
Unit tests for the streaming transfer (vault_backup/backup/pipeline.py).
"""

import threading

import pytest

from vault_backup.backup.pipeline import StreamingTransfer, TransferJob
from vault_backup.backup.storage import MIN_PART_SIZE, S3Storage
from vault_backup.errors import ExportError, UploadError


def exporter(data, step=5):
    """Export function writing `data` into the sink in `step`-sized writes."""
    def export(sink):
        for i in range(0, len(data), step):
            sink.write(data[i:i + step])
        return len(data)
    return export


class TestStreamingTransferRoundTrip:
    """Destination receives exactly the produced bytes, in order."""

    @pytest.mark.parametrize('size', [0, 1, 1000])
    def test_round_trip(self, memory_storage, size):
        data = bytes((i * 7) % 256 for i in range(size))
        transfer = StreamingTransfer(memory_storage, capacity=16)

        result = transfer.run(TransferJob(export=exporter(data), key='snap.raft', bucket='test-bucket'))

        assert memory_storage.objects['snap.raft'] == data
        assert result.bytes_transferred == size
        assert result.location.key == 'snap.raft'

    def test_finalized_only_after_producer_close(self, memory_storage):
        transfer = StreamingTransfer(memory_storage, capacity=4)

        transfer.run(TransferJob(export=exporter(b'x' * 50), key='k', bucket='test-bucket'))

        assert memory_storage.source_closed_at_finalize is True

    def test_producer_runs_on_separate_thread(self, memory_storage):
        threads = []

        def export(sink):
            threads.append(threading.current_thread())
            sink.write(b'abc')

        StreamingTransfer(memory_storage, capacity=8).run(
            TransferJob(export=export, key='k', bucket='test-bucket')
        )

        assert threads[0] is not threading.current_thread()
        assert threads[0].name == 'snapshot-producer'

    def test_multipart_round_trip_through_s3(self, mock_s3):
        storage = S3Storage('test-bucket', part_size=MIN_PART_SIZE)
        data = b'vault-raft-' * (MIN_PART_SIZE // 5)
        transfer = StreamingTransfer(storage, capacity=64 * 1024)

        result = transfer.run(TransferJob(export=exporter(data, step=100 * 1024), key='big.raft', bucket='test-bucket'))

        assert result.location.parts > 1
        assert mock_s3.Object('test-bucket', 'big.raft').get()['Body'].read() == data


class TestStreamingTransferFailures:
    """Errors from either side reach the caller without hanging."""

    def test_export_error_is_reported(self, memory_storage):
        def export(sink):
            sink.write(b'partial')
            raise ExportError('unable to read snapshot from Vault: 503')

        transfer = StreamingTransfer(memory_storage, capacity=4)

        with pytest.raises(ExportError, match='503'):
            transfer.run(TransferJob(export=export, key='k', bucket='test-bucket'))

        assert 'k' not in memory_storage.objects

    def test_unexpected_producer_exception_is_wrapped(self, memory_storage):
        def export(sink):
            raise RuntimeError('unexpected')

        with pytest.raises(ExportError, match='unexpected') as exc_info:
            StreamingTransfer(memory_storage, capacity=4).run(
                TransferJob(export=export, key='k', bucket='test-bucket')
            )

        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_export_error_aborts_s3_upload(self, mock_s3):
        storage = S3Storage('test-bucket', part_size=MIN_PART_SIZE)

        def export(sink):
            sink.write(b'a' * (MIN_PART_SIZE + 1024))
            raise ExportError('stream reset')

        with pytest.raises(ExportError, match='stream reset'):
            StreamingTransfer(storage, capacity=64 * 1024).run(
                TransferJob(export=export, key='bad.raft', bucket='test-bucket')
            )

        client = mock_s3.meta.client
        assert 'Contents' not in client.list_objects_v2(Bucket='test-bucket')
        assert not client.list_multipart_uploads(Bucket='test-bucket').get('Uploads')

    def test_upload_error_unblocks_producer(self):
        """A failed upload must not leave the producer blocked on a full buffer."""

        class RejectingStorage:
            bucket_name = 'test-bucket'

            def upload_stream(self, source, key):
                source.read(1)
                raise UploadError('failed to upload file (AccessDenied)')

        producer_finished = threading.Event()

        def export(sink):
            try:
                for _ in range(100):
                    sink.write(b'0123456789')
            finally:
                producer_finished.set()

        with pytest.raises(UploadError, match='AccessDenied'):
            StreamingTransfer(RejectingStorage(), capacity=8).run(
                TransferJob(export=export, key='k', bucket='test-bucket')
            )

        assert producer_finished.is_set()

    def test_upload_error_wins_over_broken_pipe(self):
        """The producer's BrokenPipeError is a consequence of the upload failure."""

        class RejectingStorage:
            bucket_name = 'test-bucket'

            def upload_stream(self, source, key):
                raise UploadError('failed to upload file (NoSuchBucket)')

        def export(sink):
            try:
                while True:
                    sink.write(b'x' * 4)
            except BrokenPipeError as e:
                raise ExportError(f'unable to write snapshot to sink: {e}') from e

        with pytest.raises(UploadError, match='NoSuchBucket'):
            StreamingTransfer(RejectingStorage(), capacity=4).run(
                TransferJob(export=export, key='k', bucket='test-bucket')
            )

    def test_export_error_wins_over_resulting_upload_error(self):
        """Upload failures caused by a producer error report the producer error."""

        class PassThroughStorage:
            bucket_name = 'test-bucket'

            def upload_stream(self, source, key):
                try:
                    while source.read(4):
                        pass
                except OSError as e:
                    raise UploadError(f'failed to upload file: source stream failed: {e}') from e

        def export(sink):
            sink.write(b'abc')
            raise ExportError('permission denied')

        with pytest.raises(ExportError, match='permission denied'):
            StreamingTransfer(PassThroughStorage(), capacity=4).run(
                TransferJob(export=export, key='k', bucket='test-bucket')
            )

    def test_sink_write_to_bytesio_shape(self, memory_storage):
        """Export functions can treat the sink like any writable file object."""
        def export(sink):
            sink.write(bytearray(b'ab'))
            sink.write(memoryview(b'cd'))
            sink.flush()

        StreamingTransfer(memory_storage, capacity=3).run(
            TransferJob(export=export, key='k', bucket='test-bucket')
        )

        assert memory_storage.objects['k'] == b'abcd'

    def test_bucket_mismatch_is_rejected_before_export(self, memory_storage):
        started = []

        def export(sink):
            started.append(True)

        with pytest.raises(UploadError, match="not 'other-bucket'"):
            StreamingTransfer(memory_storage, capacity=4).run(
                TransferJob(export=export, key='k', bucket='other-bucket')
            )

        assert started == []
        assert memory_storage.objects == {}
