from .base import BaseChannel, ChannelProcess
from .local import LocalChannel
from .ssh import SSHChannel

__all__ = [
    'BaseChannel',
    'ChannelProcess',
    'LocalChannel',
    'SSHChannel'
]
