import logging
import shlex
import socket
import time

import paramiko

from transfer_queue.channels.base import BaseChannel, ChannelProcess, failure_message
from transfer_queue.errors import TransportFailure

logger = logging.getLogger(__name__)

RECV_SIZE = 32768
POLL_INTERVAL = 0.01


def collect_output(chan):
    """Read stdout and stderr together until the command exits

    Both streams share one flow-control window, so neither may be left unread
    while the other is drained.
    """
    stdout, stderr = [], []
    while True:
        received = False
        while chan.recv_ready():
            stdout.append(chan.recv(RECV_SIZE))
            received = True
        while chan.recv_stderr_ready():
            stderr.append(chan.recv_stderr(RECV_SIZE))
            received = True
        if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
            break
        if not received:
            time.sleep(POLL_INTERVAL)
    return b''.join(stdout), b''.join(stderr)


class SSHProcess(ChannelProcess):
    """A remote command streamed over one exec session

    stderr is only read after stdout reaches EOF, so a tool that fills the
    channel window with stderr while stdout is still open stalls.
    """

    def __init__(self, argv, channel):
        super().__init__(argv)
        self._chan = channel

    def lines(self):
        try:
            for raw in self._chan.makefile('rb'):
                yield raw.decode('utf-8', errors='replace').rstrip('\r\n')
        except (paramiko.SSHException, socket.error) as e:
            if not self._chan.closed:
                raise TransportFailure(f"Lost connection while reading output: {e}", self.argv) from e

    def wait(self):
        try:
            stderr = self._chan.makefile_stderr('rb').read()
            status = self._chan.recv_exit_status()
        except (paramiko.SSHException, socket.error) as e:
            raise TransportFailure(f"Lost connection: {e}", self.argv) from e
        finally:
            self._chan.close()

        if status != 0:
            raise TransportFailure(failure_message(self.argv, status, stderr), self.argv, status)

    def terminate(self):
        """Close the session

        sshd sends no signal for a closed exec channel; the remote tool exits on
        SIGPIPE at its next write to stdout.
        """
        self._chan.close()


class SSHChannel(BaseChannel):
    """Runs commands on a remote host through SSH exec sessions"""

    def __init__(self, host, port, username, password, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.transport = None
        self.is_connected = False

    def connect(self):
        try:
            self.transport = paramiko.Transport((self.host, self.port))
            self.transport.connect(username=self.username, password=self.password)
            self.is_connected = True
            logger.info(f"Connected to {self}")
            return True, "Connected successfully"
        except Exception as e:
            self.is_connected = False
            return False, f"Connection failed: {str(e)}"

    def close(self):
        if self.transport:
            self.transport.close()
        self.is_connected = False

    def is_privileged(self):
        return self.username == 'root'

    def _open_session(self, argv):
        if not self.is_connected:
            raise TransportFailure("Not connected", argv)
        try:
            chan = self.transport.open_session()
            chan.exec_command(' '.join(shlex.quote(arg) for arg in argv))
        except (paramiko.SSHException, socket.error) as e:
            raise TransportFailure(f"Failed to start {argv[0]}: {e}", argv) from e
        return chan

    def _execute(self, argv, input_data):
        chan = self._open_session(argv)
        try:
            if input_data:
                chan.sendall(input_data)
            chan.shutdown_write()
            stdout, stderr = collect_output(chan)
            status = chan.recv_exit_status()
        except (paramiko.SSHException, socket.error) as e:
            raise TransportFailure(f"SSH command failed: {e}", argv) from e
        finally:
            chan.close()
        return status, stdout, stderr

    def _start(self, argv):
        chan = self._open_session(argv)
        chan.shutdown_write()
        return SSHProcess(argv, chan)

    def __str__(self):
        return f"{self.username}@{self.host}:{self.port}"
