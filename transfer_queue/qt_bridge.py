"""
Re-emits scheduler events as Qt signals

Events fire on the drain thread; connecting a widget slot to these signals
lets Qt queue the call onto the widget's own thread.
"""
from PyQt5.QtCore import QObject, pyqtSignal

from transfer_queue.events import QueueEvent


class QueueSignals(QObject):
    state_changed = pyqtSignal(object)     # QueueState
    operation_done = pyqtSignal(object)    # OperationSnapshot
    drain_complete = pyqtSignal()

    def __init__(self, scheduler, parent=None):
        super().__init__(parent)
        self.scheduler = scheduler
        self.attached = False

    def attach(self):
        if not self.attached:
            self.scheduler.on(QueueEvent.STATE_CHANGED, self._on_state_changed)
            self.scheduler.on(QueueEvent.OPERATION_DONE, self._on_operation_done)
            self.scheduler.on(QueueEvent.DRAIN_COMPLETE, self._on_drain_complete)
            self.attached = True
        return self

    def detach(self):
        self.scheduler.off(QueueEvent.STATE_CHANGED, self._on_state_changed)
        self.scheduler.off(QueueEvent.OPERATION_DONE, self._on_operation_done)
        self.scheduler.off(QueueEvent.DRAIN_COMPLETE, self._on_drain_complete)
        self.attached = False

    def _on_state_changed(self):
        self.state_changed.emit(self.scheduler.get_state())

    def _on_operation_done(self, snapshot):
        self.operation_done.emit(snapshot)

    def _on_drain_complete(self):
        self.drain_complete.emit()
