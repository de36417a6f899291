"""
Operation records and immutable queue snapshots

An Operation is a common envelope (id, status, progress counters) around a
kind-tagged payload. Only the scheduler mutates Operation instances; everyone
else sees frozen OperationSnapshot / QueueState copies.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from transfer_queue.formats import ArchiveFormat
from transfer_queue.sources import ContentSource


class OperationKind(str, Enum):
    UPLOAD = 'upload'
    COMPRESS = 'compress'
    EXTRACT = 'extract'


class OperationStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    DONE = 'done'
    ERROR = 'error'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    OperationStatus.DONE,
    OperationStatus.ERROR,
    OperationStatus.CANCELLED,
})


class QueueStatus(str, Enum):
    IDLE = 'idle'
    ACTIVE = 'active'


class Outcome(str, Enum):
    """What an engine reports back; failures are raised instead"""
    SUCCESS = 'success'
    CANCELLED = 'cancelled'


@dataclass(frozen=True)
class UploadPayload:
    source: ContentSource
    dest_path: str

    @property
    def size(self) -> int:
        return self.source.size


@dataclass(frozen=True)
class CompressPayload:
    paths: Tuple[str, ...]
    archive_format: ArchiveFormat
    output_path: str
    working_dir: str


@dataclass(frozen=True)
class ExtractPayload:
    archive_path: str
    dest_dir: str


Payload = Union[UploadPayload, CompressPayload, ExtractPayload]

PAYLOAD_KINDS = {
    UploadPayload: OperationKind.UPLOAD,
    CompressPayload: OperationKind.COMPRESS,
    ExtractPayload: OperationKind.EXTRACT,
}


def kind_of(payload) -> OperationKind:
    try:
        return PAYLOAD_KINDS[type(payload)]
    except KeyError:
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}") from None


@dataclass
class Operation:
    id: str
    kind: OperationKind
    display_name: str
    payload: Payload
    status: OperationStatus = OperationStatus.PENDING
    progress: int = 0
    total_units: int = 0
    processed_units: int = 0
    error: Optional[str] = None

    def snapshot(self) -> 'OperationSnapshot':
        return OperationSnapshot(
            id=self.id,
            kind=self.kind,
            display_name=self.display_name,
            payload=self.payload,
            status=self.status,
            progress=self.progress,
            total_units=self.total_units,
            processed_units=self.processed_units,
            error=self.error,
        )


@dataclass(frozen=True)
class OperationSnapshot:
    id: str
    kind: OperationKind
    display_name: str
    payload: Payload
    status: OperationStatus
    progress: int
    total_units: int
    processed_units: int
    error: Optional[str] = None

    @property
    def percent(self) -> int:
        """Display percentage; uploads derive it from the byte counters"""
        if self.status is OperationStatus.DONE:
            return 100
        if self.kind is OperationKind.UPLOAD:
            if self.total_units <= 0:
                return 0
            return min(100, self.processed_units * 100 // self.total_units)
        return self.progress


@dataclass(frozen=True)
class QueueState:
    operations: Tuple[OperationSnapshot, ...] = field(default_factory=tuple)
    status: QueueStatus = QueueStatus.IDLE

    def get(self, op_id) -> Optional[OperationSnapshot]:
        for op in self.operations:
            if op.id == op_id:
                return op
        return None

    def _count(self, status):
        return sum(1 for op in self.operations if op.status is status)

    @property
    def is_active(self) -> bool:
        return self.status is QueueStatus.ACTIVE

    @property
    def running(self) -> Tuple[OperationSnapshot, ...]:
        return tuple(op for op in self.operations if op.status is OperationStatus.RUNNING)

    @property
    def pending_count(self) -> int:
        return self._count(OperationStatus.PENDING)

    @property
    def done_count(self) -> int:
        return self._count(OperationStatus.DONE)

    @property
    def error_count(self) -> int:
        return self._count(OperationStatus.ERROR)

    @property
    def cancelled_count(self) -> int:
        return self._count(OperationStatus.CANCELLED)

    @property
    def total_count(self) -> int:
        # Cancelled operations are not counted as part of the batch
        return len(self.operations) - self.cancelled_count

    @property
    def all_done(self) -> bool:
        total = self.total_count
        return (not self.is_active and total > 0
                and self.done_count + self.error_count == total)

    @property
    def all_success(self) -> bool:
        return self.all_done and self.error_count == 0

    @property
    def total_bytes(self) -> int:
        return sum(op.payload.size for op in self.operations
                   if op.kind is OperationKind.UPLOAD)

    @property
    def uploaded_bytes(self) -> int:
        return sum(op.processed_units for op in self.operations
                   if op.kind is OperationKind.UPLOAD)

    @property
    def overall_percent(self) -> int:
        active = [op for op in self.operations if op.status is not OperationStatus.CANCELLED]
        if not active:
            return 0
        if all(op.kind is OperationKind.UPLOAD for op in active):
            total = sum(op.payload.size for op in active)
            if total <= 0:
                return 0
            return round(sum(op.processed_units for op in active) / total * 100)
        return round(sum(op.percent for op in active) / len(active))
