"""
Archive operations (compress / extract) driven by external archivers

Progress is approximate: every non-empty line the archiver prints counts as
one processed item, measured against a cheap pre-flight count. The estimate
is capped at 99% until the process has exited successfully.
"""
import logging
import os
import shlex
import threading
from dataclasses import dataclass
from typing import List, Optional

from transfer_queue.errors import EstimationFailure, TransportFailure, UnsupportedFormatError
from transfer_queue.formats import ArchiveFormat, get_archive_type
from transfer_queue.operations import Outcome

logger = logging.getLogger(__name__)

RUNNING_PROGRESS_CEILING = 99

TAR_COMPRESS_FLAGS = {
    ArchiveFormat.TAR: 'cvf',
    ArchiveFormat.TAR_GZ: 'czvf',
    ArchiveFormat.TAR_BZ2: 'cjvf',
    ArchiveFormat.TAR_XZ: 'cJvf',
}


@dataclass(frozen=True)
class ToolAvailability:
    tar: bool = False
    zip: bool = False
    unzip: bool = False
    p7zip: bool = False
    unrar: bool = False


# attribute -> executable probed with `which`
TOOL_COMMANDS = {
    'tar': 'tar',
    'zip': 'zip',
    'unzip': 'unzip',
    'p7zip': '7z',
    'unrar': 'unrar',
}


class ArchiveTools:
    """Archiver availability on the channel's host, probed once and cached"""

    def __init__(self, channel):
        self.channel = channel
        self._tools = None
        self._lock = threading.Lock()

    @property
    def available(self) -> Optional[ToolAvailability]:
        return self._tools

    def detect(self) -> ToolAvailability:
        with self._lock:
            if self._tools is None:
                found = {attr: self.channel.which(command) for attr, command in TOOL_COMMANDS.items()}
                self._tools = ToolAvailability(**found)
                logger.info(f"Archive tools on {self.channel}: "
                            f"{', '.join(a for a, ok in found.items() if ok) or 'none'}")
            return self._tools

    def compress_formats(self) -> List[ArchiveFormat]:
        """Formats that can be created; rar is never offered"""
        tools = self.detect()
        formats = []
        if tools.tar:
            formats.extend([ArchiveFormat.TAR, ArchiveFormat.TAR_GZ,
                            ArchiveFormat.TAR_BZ2, ArchiveFormat.TAR_XZ])
        if tools.zip:
            formats.append(ArchiveFormat.ZIP)
        if tools.p7zip:
            formats.append(ArchiveFormat.SEVEN_ZIP)
        return formats

    def can_extract(self, filename: str) -> bool:
        archive_format = get_archive_type(os.path.basename(filename))
        if archive_format is None:
            return False

        tools = self.detect()
        if archive_format.is_tar:
            return tools.tar
        return {
            ArchiveFormat.ZIP: tools.unzip,
            ArchiveFormat.SEVEN_ZIP: tools.p7zip,
            ArchiveFormat.RAR: tools.unrar,
        }[archive_format]


def _entry_names(paths):
    names = [os.path.basename(p.rstrip('/')) for p in paths]
    return [n for n in names if n]


def compress_command(payload) -> List[str]:
    archive_format = ArchiveFormat(payload.archive_format)
    names = _entry_names(payload.paths)
    if not names:
        raise UnsupportedFormatError("Nothing to compress")

    if archive_format in TAR_COMPRESS_FLAGS:
        return ['tar', TAR_COMPRESS_FLAGS[archive_format], payload.output_path,
                '-C', payload.working_dir] + names
    if archive_format is ArchiveFormat.ZIP:
        # zip has no -C; store entries relative to the working directory
        quoted = ' '.join(shlex.quote(n) for n in names)
        return ['bash', '-c', f"cd {shlex.quote(payload.working_dir)} && "
                              f"zip -rv {shlex.quote(payload.output_path)} {quoted}"]
    if archive_format is ArchiveFormat.SEVEN_ZIP:
        return ['7z', 'a', payload.output_path] + list(payload.paths)
    raise UnsupportedFormatError(f"Unsupported format: {archive_format.value}")


def compress_count_command(payload) -> List[str]:
    quoted = ' '.join(shlex.quote(n) for n in _entry_names(payload.paths))
    return ['bash', '-c', f"cd {shlex.quote(payload.working_dir)} && "
                          f"find {quoted} -type f 2>/dev/null | wc -l"]


def extract_command(payload, archive_format) -> List[str]:
    archive_path, dest_dir = payload.archive_path, payload.dest_dir
    if archive_format.is_tar:
        return ['tar', 'xvf', archive_path, '-C', dest_dir]
    if archive_format is ArchiveFormat.ZIP:
        return ['unzip', '-o', archive_path, '-d', dest_dir]
    if archive_format is ArchiveFormat.SEVEN_ZIP:
        return ['7z', 'x', archive_path, f'-o{dest_dir}', '-y']
    if archive_format is ArchiveFormat.RAR:
        return ['unrar', 'x', '-o+', archive_path, dest_dir.rstrip('/') + '/']
    raise UnsupportedFormatError(f"Unsupported format: {archive_format.value}")


def extract_count_command(payload, archive_format) -> List[str]:
    archive = shlex.quote(payload.archive_path)
    if archive_format.is_tar:
        script = f"tar tf {archive} | wc -l"
    elif archive_format is ArchiveFormat.ZIP:
        script = f"unzip -l {archive} | tail -1 | awk '{{print $2}}'"
    elif archive_format is ArchiveFormat.SEVEN_ZIP:
        script = f"7z l {archive} | grep -c '^[0-9]' || echo 1"
    else:
        script = f"unrar l {archive} | grep -c '^[. ]' || echo 1"
    return ['bash', '-c', script]


def running_progress(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(RUNNING_PROGRESS_CEILING, processed * 100 // total)


class ArchiveRunner:
    """Compress and extract engines sharing one channel and one tool probe"""

    def __init__(self, channel, tools=None):
        self.channel = channel
        self.tools = tools or ArchiveTools(channel)

    def compress(self, payload, context):
        argv = compress_command(payload)
        self._estimate(compress_count_command(payload), context)
        logger.info(f"Compressing {len(payload.paths)} path(s) into {payload.output_path}")
        return self._run_with_progress(argv, context)

    def extract(self, payload, context):
        archive_format = get_archive_type(os.path.basename(payload.archive_path))
        if archive_format is None:
            raise UnsupportedFormatError(f"Unknown archive format: {payload.archive_path}")

        argv = extract_command(payload, archive_format)
        self._estimate(extract_count_command(payload, archive_format), context)
        logger.info(f"Extracting {payload.archive_path} into {payload.dest_dir}")
        return self._run_with_progress(argv, context)

    def count_items(self, argv) -> int:
        try:
            output = self.channel.run(argv)
            count = int(output.split()[0])
        except (TransportFailure, ValueError, IndexError) as e:
            raise EstimationFailure(f"Could not count items: {e}") from e
        return count if count > 0 else 1

    def _estimate(self, argv, context):
        try:
            total = self.count_items(argv)
        except EstimationFailure as e:
            # Coarse 0% -> 100% display instead of failing the operation
            logger.debug(f"{e}; falling back to a single unit")
            total = 1
        context.set_total_units(total)

    def _terminate(self, process):
        try:
            process.terminate()
        except Exception as e:
            logger.warning(f"Failed to terminate {process.argv[0]}: {e}")
            return
        try:
            process.wait()
        except TransportFailure:
            # a terminated archiver exits non-zero
            pass

    def _run_with_progress(self, argv, context):
        if context.cancelled:
            return Outcome.CANCELLED

        process = self.channel.spawn(argv)
        total = context.total_units
        processed = 0

        for line in process.lines():
            if context.cancelled:
                self._terminate(process)
                logger.info(f"{argv[0]} cancelled after {processed} item(s)")
                return Outcome.CANCELLED
            if not line.strip():
                continue
            processed += 1
            context.update(processed, progress=running_progress(processed, total))

        try:
            process.wait()
        except TransportFailure:
            if context.cancelled:
                return Outcome.CANCELLED
            raise

        context.update(max(processed, total), progress=running_progress(processed, total))
        return Outcome.SUCCESS
