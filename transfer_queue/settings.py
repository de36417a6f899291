"""
Persistent transfer settings backed by QSettings
"""
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from PyQt5.QtCore import QSettings

from transfer_queue.engines.upload import CHUNK_SIZE
from transfer_queue.traversal import DEFAULT_BATCH_SIZE

logger = logging.getLogger(__name__)

ORGANIZATION = "RemoteTransferQueue"
APPLICATION = "Settings"


@dataclass
class TransferSettings:
    chunk_size: int = CHUNK_SIZE
    superuser: Optional[str] = 'try'   # 'try', 'require' or None
    batch_size: int = DEFAULT_BATCH_SIZE
    ssh_port: int = 22
    log_dir: str = 'logs'


def _int_value(qsettings, key, default, minimum=1):
    raw = qsettings.value(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed setting {key}={raw!r}")
        return default
    if value < minimum:
        logger.warning(f"Ignoring out-of-range setting {key}={value}")
        return default
    return value


def load_settings(qsettings: Optional[QSettings] = None) -> TransferSettings:
    qsettings = qsettings or QSettings(ORGANIZATION, APPLICATION)
    defaults = TransferSettings()

    superuser = qsettings.value("transfer/superuser", defaults.superuser or '')
    if superuser not in ('', 'try', 'require'):
        logger.warning(f"Ignoring unknown superuser mode {superuser!r}")
        superuser = defaults.superuser

    return TransferSettings(
        chunk_size=_int_value(qsettings, "transfer/chunk_size", defaults.chunk_size),
        superuser=superuser or None,
        batch_size=_int_value(qsettings, "transfer/batch_size", defaults.batch_size),
        ssh_port=_int_value(qsettings, "ssh/port", defaults.ssh_port),
        log_dir=str(qsettings.value("logging/dir", defaults.log_dir) or defaults.log_dir),
    )


def save_settings(settings: TransferSettings, qsettings: Optional[QSettings] = None):
    qsettings = qsettings or QSettings(ORGANIZATION, APPLICATION)
    qsettings.setValue("transfer/chunk_size", settings.chunk_size)
    qsettings.setValue("transfer/superuser", settings.superuser or '')
    qsettings.setValue("transfer/batch_size", settings.batch_size)
    qsettings.setValue("ssh/port", settings.ssh_port)
    qsettings.setValue("logging/dir", settings.log_dir)
    qsettings.sync()
    logger.debug(f"Saved settings {asdict(settings)}")
