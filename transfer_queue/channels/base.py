import logging
from typing import Iterator, List, Optional, Sequence, Tuple

from transfer_queue.errors import TransportFailure

logger = logging.getLogger(__name__)

SUDO_PREFIX = ['sudo', '-n']

# Sentinel: use the channel's own elevation mode
DEFAULT = object()


def failure_message(argv: Sequence[str], exit_status: int, stderr: bytes) -> str:
    """Error text for a failed command, the tool's own message when it printed one"""
    text = stderr.decode('utf-8', errors='replace').strip() if stderr else ''
    if text:
        return text
    return f"{argv[0] if argv else 'command'} exited with status {exit_status}"


class ChannelProcess:
    """An in-flight command whose stdout is consumed line by line"""

    def __init__(self, argv: Sequence[str]):
        self.argv = list(argv)

    def lines(self) -> Iterator[str]:
        """Yield stdout lines without their trailing newline"""
        raise NotImplementedError("Subclasses must implement lines method")

    def wait(self):
        """Block until the command exits; raise TransportFailure on a non-zero status"""
        raise NotImplementedError("Subclasses must implement wait method")

    def terminate(self):
        """Ask the command to stop"""
        raise NotImplementedError("Subclasses must implement terminate method")


class BaseChannel:
    """Base class for remote execution channels with common functionality"""

    def __init__(self, superuser: Optional[str] = 'try'):
        if superuser not in (None, 'try', 'require'):
            raise ValueError(f"Unsupported superuser mode: {superuser}")
        self.superuser = superuser
        self._can_elevate = None

    def _execute(self, argv: List[str], input_data: Optional[bytes]) -> Tuple[int, bytes, bytes]:
        """Run to completion and return (exit_status, stdout, stderr)"""
        raise NotImplementedError("Subclasses must implement _execute method")

    def _start(self, argv: List[str]) -> ChannelProcess:
        raise NotImplementedError("Subclasses must implement _start method")

    def is_privileged(self) -> bool:
        """True when commands already run as root"""
        return False

    def elevation_available(self) -> bool:
        """Probe passwordless sudo once per channel"""
        if self._can_elevate is None:
            try:
                status, _, _ = self._execute(SUDO_PREFIX + ['true'], None)
            except TransportFailure:
                status = 1
            self._can_elevate = status == 0
            logger.info(f"Privilege elevation {'available' if self._can_elevate else 'unavailable'} on {self}")
        return self._can_elevate

    def _elevate(self, argv, superuser=DEFAULT) -> List[str]:
        mode = self.superuser if superuser is DEFAULT else superuser
        argv = list(argv)
        if not mode or self.is_privileged():
            return argv
        if mode == 'require' or self.elevation_available():
            return SUDO_PREFIX + argv
        return argv

    def run(self, argv: Sequence[str], input_data=None, superuser=DEFAULT) -> str:
        """Run a command to completion and return its stdout"""
        argv = self._elevate(argv, superuser)
        if isinstance(input_data, str):
            input_data = input_data.encode('ascii')

        status, stdout, stderr = self._execute(argv, input_data)
        if status != 0:
            raise TransportFailure(failure_message(argv, status, stderr), argv, status)
        return stdout.decode('utf-8', errors='replace')

    def spawn(self, argv: Sequence[str], superuser=DEFAULT) -> ChannelProcess:
        """Start a command whose output is streamed"""
        return self._start(self._elevate(argv, superuser))

    def make_directories(self, path: str):
        """Create a directory and its parents (idempotent)"""
        self.run(['mkdir', '-p', path])

    def which(self, tool: str) -> bool:
        try:
            self.run(['which', tool])
            return True
        except TransportFailure:
            return False

    def close(self):
        """Release the channel"""
