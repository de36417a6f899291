"""
Remote Transfer Queue command line entry point
Features:
- Serial upload / compress / extract queue over a local or SSH channel
- Directory uploads with remote tree reconstruction
- Saved SSH credentials (keyring, encrypted settings fallback)
"""

import argparse
import getpass
import logging
import os
import posixpath
import sys
from pathlib import Path

from PyQt5.QtCore import QCoreApplication

from transfer_queue import __version__
from transfer_queue.channels import LocalChannel, SSHChannel
from transfer_queue.errors import TransferError
from transfer_queue.formats import ArchiveFormat, default_archive_name, get_format_extension
from transfer_queue.operations import OperationStatus
from transfer_queue.qt_bridge import QueueSignals
from transfer_queue.scheduler import TransferScheduler
from transfer_queue.security import CredentialStore
from transfer_queue.settings import load_settings

logger = logging.getLogger(__name__)


def setup_logging(log_dir="logs", verbose=False):
    """Logging configuration: persistent log, per-run debug log, console"""
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=log_format,
        handlers=[
            logging.FileHandler(logs_dir / "transfer_queue.log"),
            logging.FileHandler(logs_dir / "transfer_queue_debug.log", mode='w'),  # Fresh debug log each run
            console
        ]
    )

    logging.getLogger("paramiko").setLevel(logging.WARNING)

    logger.info("=" * 50)
    logger.info(f"Remote Transfer Queue {__version__} starting...")
    logger.info("=" * 50)


def check_dependencies():
    """Check for required dependencies and suggest installation"""
    required = {
        'PyQt5': 'PyQt5>=5.15.0',
        'paramiko': 'paramiko>=2.7.0',
        'cryptography': 'cryptography>=3.4.0',
        'keyring': 'keyring>=23.0.0',
    }

    missing_deps = []
    for module, requirement in required.items():
        try:
            __import__(module)
        except ImportError:
            missing_deps.append(requirement)

    if missing_deps:
        print("❌ Missing required dependencies:")
        for dep in missing_deps:
            print(f"   - {dep}")
        print("\nPlease install with: pip install " + " ".join(missing_deps))
        return False
    return True


def format_bytes(size_bytes):
    if size_bytes == 0:
        return "0 B"
    units = ['B', 'KB', 'MB', 'GB']
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{size_bytes} B" if index == 0 else f"{value:.1f} {units[index]}"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="transfer-queue",
        description="Queue uploads and archive operations against a local or SSH host")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--host', help="SSH host (default: run on this machine)")
    parser.add_argument('--port', type=int, help="SSH port")
    parser.add_argument('--user', help="SSH user name")
    parser.add_argument('--save-credentials', action='store_true',
                        help="remember the SSH password for this host")
    parser.add_argument('--no-sudo', action='store_true', help="never elevate privileges")
    parser.add_argument('--chunk-size', type=int, help="upload chunk size in bytes")
    parser.add_argument('--log-dir', help="directory for log files")
    parser.add_argument('-v', '--verbose', action='store_true')

    commands = parser.add_subparsers(dest='command', required=True)

    upload = commands.add_parser('upload', help="upload files and directories")
    upload.add_argument('paths', nargs='+')
    upload.add_argument('--dest', required=True, help="remote target directory")

    compress = commands.add_parser('compress', help="create an archive on the host")
    compress.add_argument('paths', nargs='+')
    compress.add_argument('--format', default=ArchiveFormat.TAR_GZ.value,
                          choices=[f.value for f in ArchiveFormat if f is not ArchiveFormat.RAR])
    compress.add_argument('--output', help="archive path (default: next to the sources)")
    compress.add_argument('--cwd', help="directory the paths are relative to")

    extract = commands.add_parser('extract', help="extract archives on the host")
    extract.add_argument('archives', nargs='+')
    extract.add_argument('--dest', required=True)

    commands.add_parser('formats', help="list archive formats supported by the host")
    return parser


def open_channel(args, settings, credential_store=None):
    """Return (channel, message); channel is None when the connection failed"""
    superuser = None if args.no_sudo else settings.superuser
    if not args.host:
        return LocalChannel(superuser=superuser), "Using local host"

    store = credential_store or CredentialStore()
    username, password = args.user, None
    saved_user, saved_password = store.get_credentials(args.host)
    if saved_user and (not username or username == saved_user):
        username, password = saved_user, saved_password
    username = username or getpass.getuser()
    if not password:
        password = getpass.getpass(f"Password for {username}@{args.host}: ")

    channel = SSHChannel(args.host, args.port or settings.ssh_port, username, password,
                         superuser=superuser)
    success, message = channel.connect()
    if not success:
        return None, message

    if args.save_credentials:
        backend = store.save_credentials(args.host, username, password)
        logger.info(f"Saved credentials for {args.host} in {backend}")
    return channel, message


def enqueue_command(args, scheduler):
    """Queue the work for the selected sub-command; returns the new operation ids"""
    if args.command == 'upload':
        missing = [p for p in args.paths if not os.path.exists(p)]
        if missing:
            raise TransferError(f"No such file or directory: {', '.join(missing)}")
        return scheduler.upload_tree(args.paths, args.dest)

    tools = scheduler.archiver.tools

    if args.command == 'compress':
        archive_format = ArchiveFormat(args.format)
        if archive_format not in tools.compress_formats():
            raise TransferError(f"No tool available on this host to create {archive_format.value} archives")
        working_dir = args.cwd or posixpath.dirname(args.paths[0].rstrip('/')) or '.'
        output = args.output or posixpath.join(
            working_dir, default_archive_name(args.paths) + get_format_extension(archive_format))
        return [scheduler.enqueue_compress(args.paths, archive_format, output, working_dir)]

    ids = []
    for archive in args.archives:
        if not tools.can_extract(archive):
            print(f"⚠️  Cannot extract {archive}: unknown format or missing tool")
            continue
        ids.append(scheduler.enqueue_extract(archive, args.dest))
    if not ids:
        raise TransferError("Nothing to extract")
    return ids


def report_operation(snapshot):
    if snapshot.status is OperationStatus.DONE:
        print(f"  ✅ {snapshot.display_name}")
    elif snapshot.status is OperationStatus.ERROR:
        print(f"  ❌ {snapshot.display_name}: {snapshot.error}")
    else:
        print(f"  ⏹  {snapshot.display_name} cancelled")


def print_summary(state):
    line = f"{state.done_count}/{state.total_count} operations completed"
    if state.total_bytes:
        line += f" ({format_bytes(state.uploaded_bytes)} / {format_bytes(state.total_bytes)})"
    print(line)
    if state.error_count:
        print(f"❌ {state.error_count} failed")
    if state.cancelled_count:
        print(f"⏹  {state.cancelled_count} cancelled")


def main(argv=None):
    args = build_parser().parse_args(argv)

    if not check_dependencies():
        print("\n❌ Please install missing dependencies and try again.")
        return 1

    settings = load_settings()
    if args.chunk_size:
        settings.chunk_size = args.chunk_size
    setup_logging(args.log_dir or settings.log_dir, args.verbose)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])

    channel, message = open_channel(args, settings)
    if channel is None:
        print(f"❌ {message}")
        return 1
    logger.info(message)

    try:
        scheduler = TransferScheduler.for_channel(
            channel, chunk_size=settings.chunk_size, batch_size=settings.batch_size)

        if args.command == 'formats':
            formats = scheduler.archiver.tools.compress_formats()
            print("Compress formats: " + (", ".join(f.value for f in formats) or "none"))
            return 0

        signals = QueueSignals(scheduler).attach()
        signals.operation_done.connect(report_operation)
        signals.drain_complete.connect(app.quit)

        try:
            enqueue_command(args, scheduler)
        except (TransferError, OSError) as e:
            print(f"❌ {e}")
            return 2

        if scheduler.get_state().is_active:
            app.exec_()
        scheduler.wait_idle()
        app.processEvents()
        signals.detach()

        state = scheduler.get_state()
        print_summary(state)
        return 0 if state.all_success else 1

    finally:
        channel.close()


def run():
    sys.exit(main())


if __name__ == "__main__":
    import signal
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    try:
        run()
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
