import shutil
import socket

import pytest

from transfer_queue.channels import LocalChannel, SSHChannel
from transfer_queue.channels.base import BaseChannel, failure_message
from transfer_queue.errors import TransportFailure

from conftest import FakeChannel

needs_sh = pytest.mark.skipif(shutil.which('sh') is None, reason="requires a POSIX shell")


class TestFailureMessage:

    def test_prefers_stderr(self):
        assert failure_message(['tar'], 2, b'tar: cannot open\n') == 'tar: cannot open'

    def test_falls_back_to_status(self):
        assert failure_message(['ls', '/nope'], 2, b'') == 'ls exited with status 2'


class TestElevation:

    def make(self, mode, sudo_works=True, privileged=False):
        channel = FakeChannel()
        channel.superuser = mode
        if not sudo_works:
            channel.on_run('sudo -n true', status=1)
        if privileged:
            channel.is_privileged = lambda: True
        return channel

    def test_try_uses_sudo_when_available(self):
        channel = self.make('try')

        channel.run(['ls', '/root'])
        channel.run(['ls', '/etc'])

        assert channel.commands == [
            ['sudo', '-n', 'true'],
            ['sudo', '-n', 'ls', '/root'],
            ['sudo', '-n', 'ls', '/etc'],
        ]

    def test_try_falls_back_to_plain_command(self):
        channel = self.make('try', sudo_works=False)

        channel.run(['ls'])

        assert channel.commands[-1] == ['ls']
        assert not channel.elevation_available()

    def test_require_always_prefixes(self):
        channel = self.make('require', sudo_works=False)

        channel.spawn(['tar', 'xvf', 'a.tar'])

        assert channel.commands == [['sudo', '-n', 'tar', 'xvf', 'a.tar']]

    def test_per_call_override(self):
        channel = self.make('require')

        channel.run(['whoami'], superuser=None)

        assert channel.commands == [['whoami']]

    def test_privileged_channel_never_prefixes(self):
        channel = self.make('require', privileged=True)

        channel.run(['id'])

        assert channel.commands == [['id']]

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            BaseChannel(superuser='always')


class TestBaseChannel:

    def test_run_returns_stdout_and_encodes_text_input(self, channel):
        channel.on_run('cat', stdout='hello\n')

        assert channel.run(['cat'], input_data='aGVsbG8=') == 'hello\n'
        assert channel.inputs == [b'aGVsbG8=']

    def test_run_failure(self, channel):
        channel.on_run('ls', status=2, stderr='ls: /nope: No such file or directory')

        with pytest.raises(TransportFailure) as exc_info:
            channel.run(['ls', '/nope'])

        assert exc_info.value.exit_status == 2
        assert exc_info.value.argv == ['ls', '/nope']
        assert 'No such file' in str(exc_info.value)

    def test_which(self, channel):
        channel.on_run('which unrar', status=1)

        assert channel.which('tar')
        assert not channel.which('unrar')

    def test_make_directories(self, channel):
        channel.make_directories('/srv/a b')

        assert channel.commands == [['mkdir', '-p', '/srv/a b']]


@needs_sh
class TestLocalChannel:

    @pytest.fixture
    def local(self):
        return LocalChannel(superuser=None)

    def test_run(self, local):
        assert local.run(['sh', '-c', 'cat'], input_data=b'piped') == 'piped'

    def test_run_failure_carries_stderr(self, local):
        with pytest.raises(TransportFailure, match='went wrong') as exc_info:
            local.run(['sh', '-c', 'echo went wrong >&2; exit 3'])

        assert exc_info.value.exit_status == 3

    def test_missing_executable(self, local):
        with pytest.raises(TransportFailure, match='Failed to run'):
            local.run(['definitely-not-a-real-tool-xyz'])

    def test_spawn_streams_lines(self, local):
        process = local.spawn(['sh', '-c', 'printf "one\\ntwo\\r\\nthree\\n"'])

        assert list(process.lines()) == ['one', 'two', 'three']
        process.wait()

    def test_spawn_failure_raised_on_wait(self, local):
        process = local.spawn(['sh', '-c', 'echo partial; echo broken archive >&2; exit 2'])

        assert list(process.lines()) == ['partial']
        with pytest.raises(TransportFailure, match='broken archive'):
            process.wait()

    def test_terminate(self, local):
        process = local.spawn(['sh', '-c', 'echo started; exec sleep 30'])
        lines = process.lines()

        assert next(lines) == 'started'
        process.terminate()
        with pytest.raises(TransportFailure):
            process.wait()

    def test_which(self, local):
        assert local.which('sh')
        assert not local.which('definitely-not-a-real-tool-xyz')


class TestSSHChannel:

    @pytest.fixture
    def transport(self, mocker):
        transport_cls = mocker.patch('transfer_queue.channels.ssh.paramiko.Transport')
        return transport_cls.return_value

    @pytest.fixture
    def ssh(self, transport):
        channel = SSHChannel('example.org', 22, 'deploy', 'secret', superuser=None)
        assert channel.connect() == (True, "Connected successfully")
        return channel

    def session(self, transport, mocker, stdout=b'', stderr=b'', status=0, stdout_after_stderr=False):
        """Scripted exec session; stdout and stderr may be given as lists of chunks"""
        out = list(stdout) if isinstance(stdout, list) else [stdout] if stdout else []
        err = list(stderr) if isinstance(stderr, list) else [stderr] if stderr else []
        chan = mocker.MagicMock()
        chan.recv_ready.side_effect = lambda: bool(out) and not (stdout_after_stderr and err)
        chan.recv.side_effect = lambda size: out.pop(0)
        chan.recv_stderr_ready.side_effect = lambda: bool(err)
        chan.recv_stderr.side_effect = lambda size: err.pop(0)
        chan.exit_status_ready.side_effect = lambda: not out and not err
        chan.makefile_stderr.return_value.read.return_value = b''.join(err)
        chan.recv_exit_status.return_value = status
        transport.open_session.return_value = chan
        return chan

    def test_connect_failure(self, mocker):
        mocker.patch('transfer_queue.channels.ssh.paramiko.Transport',
                     side_effect=socket.error("Connection refused"))
        channel = SSHChannel('example.org', 22, 'deploy', 'secret')

        ok, message = channel.connect()

        assert not ok
        assert 'Connection refused' in message
        assert not channel.is_connected

    def test_run_quotes_arguments_and_sends_input(self, ssh, transport, mocker):
        chan = self.session(transport, mocker, stdout=b'done\n')

        output = ssh.run(['bash', '-c', 'base64 -d > /tmp/f'], input_data=b'QUJD')

        assert output == 'done\n'
        chan.exec_command.assert_called_once_with("bash -c 'base64 -d > /tmp/f'")
        chan.sendall.assert_called_once_with(b'QUJD')
        chan.shutdown_write.assert_called_once()
        chan.close.assert_called()

    def test_run_failure(self, ssh, transport, mocker):
        self.session(transport, mocker, stderr=b'mkdir: Permission denied', status=1)

        with pytest.raises(TransportFailure, match='Permission denied'):
            ssh.run(['mkdir', '-p', '/root/x'])

    def test_run_drains_stderr_while_stdout_is_pending(self, ssh, transport, mocker):
        chan = self.session(transport, mocker, stdout=[b'3\n', b'4\n'],
                            stderr=[b'warn 1\n', b'warn 2\n'], stdout_after_stderr=True)

        assert ssh.run(['tar', 'tf', 'x.tar']) == '3\n4\n'
        assert chan.recv_stderr.call_count == 2
        chan.makefile.assert_not_called()

    def test_spawn_streams_remote_output(self, ssh, transport, mocker):
        chan = self.session(transport, mocker)
        chan.makefile.return_value = [b'a.txt\n', b'b.txt\r\n']

        process = ssh.spawn(['tar', 'xvf', 'x.tar'])

        assert list(process.lines()) == ['a.txt', 'b.txt']
        process.wait()
        chan.close.assert_called()

    def test_spawn_failure_reads_stderr_before_exit_status(self, ssh, transport, mocker):
        chan = self.session(transport, mocker, stderr=b'tar: Error is not recoverable', status=2)
        chan.makefile.return_value = []

        process = ssh.spawn(['tar', 'xvf', 'x.tar'])
        list(process.lines())
        with pytest.raises(TransportFailure, match='not recoverable'):
            process.wait()

        names = [call[0] for call in chan.mock_calls]
        assert names.index('makefile_stderr') < names.index('recv_exit_status')

    def test_not_connected(self):
        channel = SSHChannel('example.org', 22, 'deploy', 'secret', superuser=None)

        with pytest.raises(TransportFailure, match='Not connected'):
            channel.run(['ls'])

    def test_root_is_privileged(self, transport):
        assert SSHChannel('h', 22, 'root', 'pw').is_privileged()
        assert not SSHChannel('h', 22, 'deploy', 'pw').is_privileged()

    def test_close(self, ssh, transport):
        ssh.close()

        transport.close.assert_called_once()
        assert not ssh.is_connected
