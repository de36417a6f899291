from .events import EventBus, QueueEvent
from .formats import ArchiveFormat, default_archive_name, get_archive_type, get_format_extension
from .operations import (
    CompressPayload,
    ExtractPayload,
    OperationKind,
    OperationSnapshot,
    OperationStatus,
    Outcome,
    QueueState,
    QueueStatus,
    UploadPayload,
)
from .scheduler import OperationContext, TransferScheduler
from .sources import BytesSource, ContentSource, LocalFileSource

__version__ = "1.0.0"

__all__ = [
    'ArchiveFormat',
    'BytesSource',
    'CompressPayload',
    'ContentSource',
    'EventBus',
    'ExtractPayload',
    'LocalFileSource',
    'OperationContext',
    'OperationKind',
    'OperationSnapshot',
    'OperationStatus',
    'Outcome',
    'QueueEvent',
    'QueueState',
    'QueueStatus',
    'TransferScheduler',
    'UploadPayload',
    'default_archive_name',
    'get_archive_type',
    'get_format_extension'
]
