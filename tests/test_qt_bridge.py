from transfer_queue.events import QueueEvent
from transfer_queue.operations import OperationKind, Outcome, QueueState
from transfer_queue.qt_bridge import QueueSignals
from transfer_queue.scheduler import TransferScheduler


class TestQueueSignals:

    def test_relays_events_as_signals(self, qapp):
        scheduler = TransferScheduler({OperationKind.EXTRACT: lambda payload, context: Outcome.SUCCESS})
        signals = QueueSignals(scheduler).attach()
        states, snapshots, drained = [], [], []
        signals.state_changed.connect(states.append)
        signals.operation_done.connect(snapshots.append)
        signals.drain_complete.connect(lambda: drained.append(True))

        scheduler.bus.emit(QueueEvent.STATE_CHANGED)
        scheduler.bus.emit(QueueEvent.OPERATION_DONE, 'snapshot')
        scheduler.bus.emit(QueueEvent.DRAIN_COMPLETE)

        assert len(states) == 1
        assert isinstance(states[0], QueueState)
        assert snapshots == ['snapshot']
        assert drained == [True]

    def test_attach_is_idempotent(self, qapp):
        scheduler = TransferScheduler({})
        signals = QueueSignals(scheduler).attach()
        signals.attach()

        assert scheduler.bus.listener_count(QueueEvent.STATE_CHANGED) == 1

    def test_detach(self, qapp):
        scheduler = TransferScheduler({})
        signals = QueueSignals(scheduler).attach()
        received = []
        signals.state_changed.connect(received.append)

        signals.detach()
        scheduler.bus.emit(QueueEvent.STATE_CHANGED)

        assert received == []
        assert not signals.attached
