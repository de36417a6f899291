"""
Shared fixtures: a scripted in-memory channel and scheduler factories
"""
import threading

import pytest

from transfer_queue.channels.base import BaseChannel, ChannelProcess
from transfer_queue.errors import TransportFailure
from transfer_queue.scheduler import TransferScheduler


def _matches(pattern, argv):
    if callable(pattern):
        return pattern(argv)
    return pattern in ' '.join(argv)


class FakeProcess(ChannelProcess):
    def __init__(self, argv, lines=(), exit_status=0, stderr='', before_line=None,
                 terminate_error=None):
        super().__init__(argv)
        self._lines = list(lines)
        self.exit_status = exit_status
        self.stderr = stderr
        self.before_line = before_line
        self.terminate_error = terminate_error
        self.terminated = False
        self.waited = False

    def lines(self):
        for index, line in enumerate(self._lines):
            if self.before_line:
                self.before_line(index)
            if self.terminated:
                return
            yield line

    def wait(self):
        self.waited = True
        if self.terminated:
            raise TransportFailure("terminated", self.argv, -15)
        if self.exit_status != 0:
            raise TransportFailure(self.stderr or f"{self.argv[0]} failed", self.argv, self.exit_status)

    def terminate(self):
        self.terminated = True
        if self.terminate_error:
            raise self.terminate_error


class FakeChannel(BaseChannel):
    """Records every command; responses are scripted by substring match"""

    def __init__(self):
        super().__init__(superuser=None)
        self.commands = []
        self.inputs = []
        self.processes = []
        self._run_rules = []
        self._spawn_rules = []
        self._lock = threading.Lock()

    def on_run(self, pattern, stdout='', status=0, stderr='', hook=None):
        self._run_rules.append((pattern, stdout, status, stderr, hook))

    def on_spawn(self, pattern, **process_kwargs):
        self._spawn_rules.append((pattern, process_kwargs))

    def _execute(self, argv, input_data):
        with self._lock:
            self.commands.append(list(argv))
            self.inputs.append(input_data)
        for pattern, stdout, status, stderr, hook in self._run_rules:
            if _matches(pattern, argv):
                if hook:
                    hook(argv, input_data)
                return status, stdout.encode(), stderr.encode()
        return 0, b'', b''

    def _start(self, argv):
        with self._lock:
            self.commands.append(list(argv))
            self.inputs.append(None)
        for pattern, process_kwargs in self._spawn_rules:
            if _matches(pattern, argv):
                process = FakeProcess(argv, **process_kwargs)
                break
        else:
            process = FakeProcess(argv)
        self.processes.append(process)
        return process

    @property
    def writes(self):
        """(dest command, stdin) for every base64 chunk write"""
        return [(argv[2], data) for argv, data in zip(self.commands, self.inputs)
                if argv[:2] == ['bash', '-c'] and argv[2].startswith('base64 -d')]

    def __str__(self):
        return "fake channel"


class RecordingContext:
    """Stand-in for OperationContext when engines are tested on their own"""

    def __init__(self, cancel_when=None):
        self.cancel_when = cancel_when
        self.total_units = 0
        self.processed_units = 0
        self.progress = 0
        self.history = []
        self._cancelled = False

    @property
    def cancelled(self):
        if not self._cancelled and self.cancel_when is not None:
            self._cancelled = bool(self.cancel_when(self))
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def set_total_units(self, total):
        self.total_units = total

    def update(self, processed_units, progress=None):
        self.processed_units = processed_units
        if progress is None:
            progress = min(100, processed_units * 100 // self.total_units) if self.total_units else 0
        self.progress = max(self.progress, progress)
        self.history.append((processed_units, self.progress))

    def add_processed_units(self, count):
        self.update(self.processed_units + count)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def make_scheduler():
    """Build schedulers and make sure their drain threads finish before teardown"""
    created = []

    def factory(engines=None, channel=None, **kwargs):
        if engines is None:
            scheduler = TransferScheduler.for_channel(channel or FakeChannel(), **kwargs)
        else:
            scheduler = TransferScheduler(engines, channel=channel, **kwargs)
        created.append(scheduler)
        return scheduler

    yield factory

    for scheduler in created:
        scheduler.cancel_all()
        assert scheduler.wait_idle(5), "drain thread did not finish"


@pytest.fixture
def recording_context():
    return RecordingContext()


@pytest.fixture(scope="session")
def qapp():
    from PyQt5.QtCore import QCoreApplication
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def ini_settings(tmp_path):
    """A QSettings backed by a throwaway ini file instead of the user's profile"""
    from PyQt5.QtCore import QSettings
    return QSettings(str(tmp_path / "settings.ini"), QSettings.IniFormat)
