import os
import subprocess
import tempfile

from transfer_queue.channels.base import BaseChannel, ChannelProcess, failure_message
from transfer_queue.errors import TransportFailure


class LocalProcess(ChannelProcess):
    def __init__(self, argv):
        super().__init__(argv)
        # stderr goes to a spool file so a chatty tool can't block on a full pipe
        self._stderr = tempfile.TemporaryFile()
        try:
            self._popen = subprocess.Popen(argv, stdin=subprocess.DEVNULL,
                                           stdout=subprocess.PIPE, stderr=self._stderr)
        except OSError as e:
            self._stderr.close()
            raise TransportFailure(f"Failed to start {argv[0]}: {e}", argv) from e

    def lines(self):
        for raw in self._popen.stdout:
            yield raw.decode('utf-8', errors='replace').rstrip('\r\n')

    def wait(self):
        try:
            status = self._popen.wait()
            self._popen.stdout.close()
            self._stderr.seek(0)
            stderr = self._stderr.read()
        finally:
            self._stderr.close()

        if status != 0:
            raise TransportFailure(failure_message(self.argv, status, stderr), self.argv, status)

    def terminate(self):
        if self._popen.poll() is None:
            self._popen.terminate()


class LocalChannel(BaseChannel):
    """Runs commands as child processes of this program"""

    def is_privileged(self):
        geteuid = getattr(os, 'geteuid', None)
        return geteuid is not None and geteuid() == 0

    def _execute(self, argv, input_data):
        try:
            completed = subprocess.run(argv, input=input_data if input_data is not None else b'',
                                       stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise TransportFailure(f"Failed to run {argv[0]}: {e}", argv) from e
        return completed.returncode, completed.stdout, completed.stderr

    def _start(self, argv):
        return LocalProcess(argv)

    def __str__(self):
        return "local host"
