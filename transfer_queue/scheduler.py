"""
Serial, cancellable operation queue

One drain thread per scheduler runs pending operations strictly in enqueue
order. Cancellation is cooperative: a running engine polls its
OperationContext at its own checkpoints.
"""
import itertools
import logging
import os
import posixpath
import threading
from typing import Callable, Dict, Iterable, List, Optional

from transfer_queue.engines import ArchiveRunner, ChunkedUploader
from transfer_queue.engines.upload import CHUNK_SIZE
from transfer_queue.errors import TransferError
from transfer_queue.events import EventBus, QueueEvent
from transfer_queue.operations import (
    CompressPayload,
    ExtractPayload,
    Operation,
    OperationKind,
    OperationStatus,
    Outcome,
    QueueState,
    QueueStatus,
    UploadPayload,
    kind_of,
)
from transfer_queue.sources import LocalFileSource
from transfer_queue.traversal import DEFAULT_BATCH_SIZE, LocalDirectoryEntry, ensure_directories, traverse

logger = logging.getLogger(__name__)


def display_name_for(payload) -> str:
    if isinstance(payload, UploadPayload):
        return payload.source.name or posixpath.basename(payload.dest_path)
    if isinstance(payload, CompressPayload):
        return posixpath.basename(payload.output_path) or 'archive'
    return posixpath.basename(payload.archive_path) or 'archive'


class OperationContext:
    """Cancellation token and progress sink handed to an engine for one operation"""

    def __init__(self, scheduler, op_id):
        self._scheduler = scheduler
        self.op_id = op_id

    @property
    def cancelled(self) -> bool:
        return self._scheduler.is_cancel_requested(self.op_id)

    @property
    def total_units(self) -> int:
        return self._scheduler._read_units(self.op_id)[0]

    @property
    def processed_units(self) -> int:
        return self._scheduler._read_units(self.op_id)[1]

    def set_total_units(self, total: int):
        self._scheduler._apply_progress(self.op_id, total=total)

    def update(self, processed_units: int, progress: Optional[int] = None):
        self._scheduler._apply_progress(self.op_id, processed=processed_units, progress=progress)

    def add_processed_units(self, count: int):
        self._scheduler._apply_progress(self.op_id, delta=count)


class TransferScheduler:
    """Owns the operation list and runs exactly one operation at a time"""

    def __init__(self, engines: Dict[OperationKind, Callable], bus: Optional[EventBus] = None,
                 channel=None, batch_size=DEFAULT_BATCH_SIZE):
        self._engines = {OperationKind(kind): engine for kind, engine in engines.items()}
        self.bus = bus or EventBus()
        self.channel = channel
        self.batch_size = batch_size
        self.archiver = None

        self._operations: List[Operation] = []
        self._status = QueueStatus.IDLE
        self._cancelled = set()
        self._draining = False
        self._drain_callbacks: List[Callable] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._idle = threading.Event()
        self._idle.set()
        self._thread = None

    @classmethod
    def for_channel(cls, channel, chunk_size=CHUNK_SIZE, bus=None, tools=None,
                    batch_size=DEFAULT_BATCH_SIZE):
        """Scheduler wired to the upload and archive engines of one channel"""
        archiver = ArchiveRunner(channel, tools=tools)
        engines = {
            OperationKind.UPLOAD: ChunkedUploader(channel, chunk_size),
            OperationKind.COMPRESS: archiver.compress,
            OperationKind.EXTRACT: archiver.extract,
        }
        scheduler = cls(engines, bus=bus, channel=channel, batch_size=batch_size)
        scheduler.archiver = archiver
        return scheduler

    # --- Events ---

    def on(self, event, listener):
        self.bus.on(event, listener)

    def off(self, event, listener):
        self.bus.off(event, listener)

    # --- State ---

    def get_state(self) -> QueueState:
        with self._lock:
            return QueueState(
                operations=tuple(op.snapshot() for op in self._operations),
                status=self._status,
            )

    @property
    def status(self) -> QueueStatus:
        return self._status

    def is_cancel_requested(self, op_id) -> bool:
        with self._lock:
            return op_id in self._cancelled

    def _find(self, op_id) -> Optional[Operation]:
        for op in self._operations:
            if op.id == op_id:
                return op
        return None

    def _read_units(self, op_id):
        with self._lock:
            op = self._find(op_id)
            return (op.total_units, op.processed_units) if op else (0, 0)

    def _apply_progress(self, op_id, total=None, processed=None, delta=None, progress=None):
        with self._lock:
            op = self._find(op_id)
            if op is None or op.status is not OperationStatus.RUNNING:
                return
            if total is not None:
                op.total_units = max(0, int(total))
            if processed is not None:
                op.processed_units = max(0, int(processed))
            if delta:
                op.processed_units += delta
            if progress is None:
                progress = (min(100, op.processed_units * 100 // op.total_units)
                            if op.total_units > 0 else 0)
            op.progress = max(op.progress, min(100, int(progress)))
        self.bus.emit(QueueEvent.STATE_CHANGED)

    # --- Queue management ---

    def enqueue(self, payload, display_name=None) -> str:
        """Append one pending operation and start draining; returns its id"""
        return self.enqueue_many([payload], [display_name])[0]

    def enqueue_many(self, payloads: Iterable, display_names=None) -> List[str]:
        payloads = list(payloads)
        names = list(display_names) if display_names is not None else [None] * len(payloads)
        if not payloads:
            return []

        with self._lock:
            ids = []
            for payload, name in zip(payloads, names):
                kind = kind_of(payload)
                op = Operation(
                    id=f"{kind.value}-{next(self._ids)}",
                    kind=kind,
                    display_name=name or display_name_for(payload),
                    payload=payload,
                    total_units=payload.size if kind is OperationKind.UPLOAD else 0,
                )
                self._operations.append(op)
                ids.append(op.id)
            self._start_drain_locked()

        logger.info(f"Queued {len(ids)} operation(s): {', '.join(ids)}")
        self.bus.emit(QueueEvent.STATE_CHANGED)
        return ids

    def enqueue_upload(self, source, dest_path, display_name=None) -> str:
        return self.enqueue(UploadPayload(source, dest_path), display_name)

    def enqueue_compress(self, paths, archive_format, output_path, working_dir) -> str:
        return self.enqueue(CompressPayload(tuple(paths), archive_format, output_path, working_dir))

    def enqueue_extract(self, archive_path, dest_dir) -> str:
        return self.enqueue(ExtractPayload(archive_path, dest_dir))

    def upload_files(self, sources, target_dir) -> List[str]:
        """Queue plain files to <target_dir>/<name>"""
        payloads = [UploadPayload(source, posixpath.join(target_dir, source.name)) for source in sources]
        return self.enqueue_many(payloads)

    def upload_tree(self, paths, target_dir) -> List[str]:
        """Queue local files and directories, recreating directory structure remotely"""
        if self.channel is None:
            raise TransferError("upload_tree needs a scheduler bound to a channel")

        payloads = []
        relative_paths = []
        for path in paths:
            if os.path.isdir(path):
                entry = LocalDirectoryEntry(path, self.batch_size)
                for source, rel_path in traverse(entry):
                    relative_paths.append(rel_path)
                    payloads.append(UploadPayload(source, posixpath.join(target_dir, rel_path)))
            else:
                source = LocalFileSource(path)
                payloads.append(UploadPayload(source, posixpath.join(target_dir, source.name)))

        # skeleton first, so empty-file writes never race a missing parent
        if relative_paths:
            ensure_directories(relative_paths, target_dir, self.channel)
        return self.enqueue_many(payloads)

    def cancel(self, op_id) -> bool:
        """Cancel a pending operation now, or flag a running one for its next checkpoint"""
        with self._lock:
            op = self._find(op_id)
            if op is None:
                logger.warning(f"Cancel requested for unknown operation {op_id}")
                return False
            if op.status.is_terminal:
                return False
            self._cancelled.add(op_id)
            snapshot = None
            if op.status is OperationStatus.PENDING:
                op.status = OperationStatus.CANCELLED
                snapshot = op.snapshot()

        if snapshot is not None:
            logger.info(f"Cancelled pending operation {op_id}")
            self.bus.emit(QueueEvent.STATE_CHANGED)
            self.bus.emit(QueueEvent.OPERATION_DONE, snapshot)
        else:
            logger.info(f"Cancellation requested for running operation {op_id}")
        return True

    def cancel_all(self) -> int:
        with self._lock:
            targets = [op.id for op in self._operations if not op.status.is_terminal]
        return sum(1 for op_id in targets if self.cancel(op_id))

    def clear_completed(self) -> int:
        """Drop every terminal operation; returns how many were removed"""
        with self._lock:
            before = len(self._operations)
            self._operations = [op for op in self._operations if not op.status.is_terminal]
            removed = before - len(self._operations)
        self.bus.emit(QueueEvent.STATE_CHANGED)
        return removed

    def retry(self, op_id) -> str:
        """Re-queue a failed operation from scratch with the same payload"""
        with self._lock:
            op = self._find(op_id)
            if op is None:
                raise KeyError(op_id)
            if op.status is not OperationStatus.ERROR:
                raise ValueError(f"Only failed operations can be retried ({op_id} is {op.status.value})")
            payload, name = op.payload, op.display_name
        logger.info(f"Retrying {op_id}")
        return self.enqueue(payload, name)

    def on_drain_complete(self, callback: Callable):
        """Run `callback` now when idle, otherwise once the current drain finishes"""
        with self._lock:
            if self._status is QueueStatus.ACTIVE:
                self._drain_callbacks.append(callback)
                return
        callback()

    def wait_idle(self, timeout=None) -> bool:
        return self._idle.wait(timeout)

    # --- Drain loop ---

    def _start_drain_locked(self) -> bool:
        if self._draining:
            return False
        self._draining = True
        self._status = QueueStatus.ACTIVE
        self._idle.clear()
        self._thread = threading.Thread(target=self._drain, name="transfer-queue-drain", daemon=True)
        self._thread.start()
        return True

    def _next_pending(self) -> Optional[Operation]:
        # scan from the front on every pass so operations added mid-drain are picked up
        for op in self._operations:
            if op.status is OperationStatus.PENDING:
                return op
        return None

    def _drain(self):
        logger.info("Queue drain started")
        self.bus.emit(QueueEvent.STATE_CHANGED)

        while True:
            with self._lock:
                op = self._next_pending()
                if op is None:
                    self._status = QueueStatus.IDLE
                    self._draining = False
                    self._cancelled.clear()
                    callbacks, self._drain_callbacks = self._drain_callbacks, []
                    break
                if op.id in self._cancelled:
                    op.status = OperationStatus.CANCELLED
                    skipped = op.snapshot()
                else:
                    op.status = OperationStatus.RUNNING
                    skipped = None

            self.bus.emit(QueueEvent.STATE_CHANGED)
            if skipped is not None:
                self.bus.emit(QueueEvent.OPERATION_DONE, skipped)
                continue

            self._run_operation(op)

        logger.info("Queue drain complete")
        self.bus.emit(QueueEvent.STATE_CHANGED)
        self.bus.emit(QueueEvent.DRAIN_COMPLETE)

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Drain-complete callback error")

        with self._lock:
            if self._status is QueueStatus.IDLE:
                self._idle.set()

    def _run_operation(self, op: Operation):
        logger.info(f"Starting {op.kind.value} {op.id} ({op.display_name})")
        engine = self._engines.get(op.kind)
        outcome = None
        error = None

        try:
            if engine is None:
                raise TransferError(f"No engine registered for {op.kind.value}")
            outcome = engine(op.payload, OperationContext(self, op.id))
        except TransferError as e:
            error = str(e) or e.__class__.__name__
        except Exception as e:
            logger.exception(f"Unexpected failure in {op.id}")
            error = str(e) or e.__class__.__name__

        with self._lock:
            if outcome is Outcome.CANCELLED or op.id in self._cancelled:
                op.status = OperationStatus.CANCELLED
            elif error is not None:
                op.status = OperationStatus.ERROR
                op.error = error
            else:
                op.status = OperationStatus.DONE
                op.progress = 100
                op.processed_units = max(op.processed_units, op.total_units)
            snapshot = op.snapshot()

        if snapshot.status is OperationStatus.ERROR:
            logger.error(f"{op.kind.value} {op.id} ({op.display_name}) failed: {error}")
        else:
            logger.info(f"{op.kind.value} {op.id} finished: {snapshot.status.value}")

        self.bus.emit(QueueEvent.OPERATION_DONE, snapshot)
        self.bus.emit(QueueEvent.STATE_CHANGED)
