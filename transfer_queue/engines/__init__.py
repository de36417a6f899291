from .archive import ArchiveRunner, ArchiveTools, ToolAvailability
from .upload import CHUNK_SIZE, ChunkedUploader

__all__ = [
    'ArchiveRunner',
    'ArchiveTools',
    'ToolAvailability',
    'CHUNK_SIZE',
    'ChunkedUploader'
]
