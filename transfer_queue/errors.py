"""
Exception hierarchy for the transfer queue
"""
from typing import Optional, Sequence


class TransferError(Exception):
    """Base class for every error raised by the transfer queue"""


class TransportFailure(TransferError):
    """The remote execution channel reported a failed outcome"""

    def __init__(self, message: str, argv: Optional[Sequence[str]] = None,
                 exit_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.argv = list(argv) if argv else []
        self.exit_status = exit_status


class EstimationFailure(TransferError):
    """A pre-flight item count could not be obtained"""


class UnsupportedFormatError(TransferError):
    """The archive format is unknown or has no tool for the requested action"""
