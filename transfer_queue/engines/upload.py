import base64
import logging
import shlex

from transfer_queue.errors import TransferError
from transfer_queue.operations import Outcome

logger = logging.getLogger(__name__)

CHUNK_SIZE = 256 * 1024  # 256 KiB per remote write


def parent_directory(remote_path: str) -> str:
    """Everything before the last '/', empty for a bare name or a root-level file"""
    return remote_path.rsplit('/', 1)[0] if '/' in remote_path else ''


class ChunkedUploader:
    """Writes a content source to a remote path as base64 chunks piped into `base64 -d`"""

    def __init__(self, channel, chunk_size=CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.channel = channel
        self.chunk_size = chunk_size

    def __call__(self, payload, context):
        return self.upload(payload, context)

    def write_chunk(self, dest_path, encoded, append=False):
        """One remote write: '>' creates/truncates, '>>' extends the file"""
        operator = '>>' if append else '>'
        command = f"base64 -d {operator} {shlex.quote(dest_path)}"
        self.channel.run(['bash', '-c', command], input_data=encoded)

    def upload(self, payload, context):
        source = payload.source
        dest_path = payload.dest_path
        total_size = source.size
        context.set_total_units(total_size)

        parent = parent_directory(dest_path)
        if parent:
            self.channel.make_directories(parent)

        if total_size == 0:
            self.write_chunk(dest_path, '')
            return Outcome.SUCCESS

        offset = 0
        while offset < total_size:
            if context.cancelled:
                logger.info(f"Upload of {dest_path} cancelled at byte {offset}/{total_size}")
                return Outcome.CANCELLED

            length = min(self.chunk_size, total_size - offset)
            data = source.read(offset, length)
            if len(data) != length:
                raise TransferError(
                    f"Short read from {source!r}: expected {length} bytes at offset {offset}, got {len(data)}")

            # Remote append has no addressing, so chunks must go strictly in order
            self.write_chunk(dest_path, base64.b64encode(data).decode('ascii'), append=offset > 0)

            offset += length
            context.add_processed_units(length)
            logger.debug(f"{dest_path}: {offset}/{total_size} bytes")

        return Outcome.SUCCESS
