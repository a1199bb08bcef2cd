import socket
import unittest

import paramiko

from stepdeploy.channel import (
    CancelToken,
    ChannelRejectionError,
    CommandCancelledError,
    ExecuteOptions,
    SSHChannel,
    SSHConnectionError,
    SSHCredentials,
    StreamEventType,
)
from stepdeploy.pipeline import RollbackController


class FakeChannel:
    def __init__(
        self,
        stdout_chunks=(),
        stderr_chunks=(),
        status: int = 0,
        finished: bool = True,
        drop_on_exit: bool = False,
    ) -> None:
        self._stdout = list(stdout_chunks)
        self._stderr = list(stderr_chunks)
        self._status = status
        self._finished = finished
        self._drop_on_exit = drop_on_exit
        self.closed = False
        self.timeout = None

    def setblocking(self, flag) -> None:
        self.blocking = flag

    def settimeout(self, timeout) -> None:
        self.timeout = timeout

    def recv_ready(self) -> bool:
        return bool(self._stdout)

    def recv(self, size: int) -> bytes:
        return self._stdout.pop(0)

    def recv_stderr_ready(self) -> bool:
        return bool(self._stderr)

    def recv_stderr(self, size: int) -> bytes:
        return self._stderr.pop(0)

    def exit_status_ready(self) -> bool:
        return self._finished

    def recv_exit_status(self) -> int:
        if self._drop_on_exit:
            raise ConnectionResetError("connection reset by peer")
        return self._status

    def close(self) -> None:
        self.closed = True


class FakeStream:
    def __init__(self, data: str, channel: FakeChannel) -> None:
        self._data = data.encode("utf-8")
        self.channel = channel

    def read(self) -> bytes:
        return self._data


class FakeSSHClient:
    def __init__(self) -> None:
        self.connected = False
        self.closed = False
        self.commands: list[str] = []
        self.next_channel = FakeChannel()
        self.stdout = "ok"
        self.stderr = ""
        self.fail_exec = False

    def set_missing_host_key_policy(self, policy) -> None:  # pragma: no cover - noop
        self.policy = policy

    def connect(self, **kwargs) -> None:
        self.connected = True
        self.kwargs = kwargs

    def exec_command(self, command: str, timeout=None):
        if self.fail_exec:
            raise paramiko.SSHException("channel closed")
        self.commands.append(command)
        self.timeout = timeout
        channel = self.next_channel
        return (None, FakeStream(self.stdout, channel), FakeStream(self.stderr, channel))

    def close(self) -> None:
        self.closed = True


class RefusingSSHClient(FakeSSHClient):
    def connect(self, **kwargs) -> None:
        raise socket.error("connection refused")


def _credentials(**overrides) -> SSHCredentials:
    values = {"host": "example.com", "username": "root", "password": "secret"}
    values.update(overrides)
    return SSHCredentials(**values)


class SSHCredentialsTests(unittest.TestCase):
    def test_password_required(self) -> None:
        with self.assertRaises(ValueError):
            SSHCredentials(host="h", username="u", auth_method="password").validate()

    def test_key_path_required(self) -> None:
        with self.assertRaises(ValueError):
            SSHCredentials(host="h", username="u", auth_method="key").validate()


class SSHChannelTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = FakeSSHClient()
        self.channel = SSHChannel(_credentials(), client_factory=lambda: self.client, poll_interval=0)

    def test_supports_streaming(self) -> None:
        self.assertTrue(self.channel.supports_streaming)

    def test_connect_with_password(self) -> None:
        with self.channel:
            self.assertTrue(self.client.connected)
            self.assertEqual(self.client.kwargs["password"], "secret")
            self.assertFalse(self.client.kwargs["look_for_keys"])
        self.assertTrue(self.client.closed)
        self.assertFalse(self.channel.connected)

    def test_connect_with_key(self) -> None:
        channel = SSHChannel(
            _credentials(auth_method="key", password=None, key_path="/keys/id_rsa"),
            client_factory=lambda: self.client,
        )
        channel.connect()
        self.assertEqual(self.client.kwargs["key_filename"], "/keys/id_rsa")
        self.assertNotIn("password", self.client.kwargs)

    def test_connect_failure_is_rejection(self) -> None:
        channel = SSHChannel(_credentials(), client_factory=RefusingSSHClient)
        with self.assertRaises(SSHConnectionError):
            channel.connect()
        self.assertFalse(channel.connected)

    def test_execute_blocking(self) -> None:
        with self.channel:
            result = self.channel.execute("echo test", ExecuteOptions(timeout=9))
        self.assertTrue(result.ok)
        self.assertEqual(result.stdout, "ok")
        self.assertEqual(self.client.commands, ["echo test"])
        self.assertEqual(self.client.timeout, 9)
        self.assertEqual(self.client.next_channel.timeout, 9.0)

    def test_execute_rejection(self) -> None:
        self.client.fail_exec = True
        with self.channel:
            with self.assertRaises(ChannelRejectionError):
                self.channel.execute("echo test")

    def test_stream_splits_lines(self) -> None:
        self.client.next_channel = FakeChannel(
            stdout_chunks=[b"hello\nwor", b"ld\n"],
            stderr_chunks=[b"warn"],
            status=0,
        )
        with self.channel:
            events = list(self.channel.execute_stream("deploy"))

        self.assertEqual(
            [(e.type, e.data) for e in events[:-1]],
            [
                (StreamEventType.STDOUT, "hello"),
                (StreamEventType.STDOUT, "world"),
                (StreamEventType.STDERR, "warn"),
            ],
        )
        done = events[-1]
        self.assertEqual(done.type, StreamEventType.DONE)
        self.assertTrue(done.result.ok)
        self.assertEqual(done.result.stdout, "hello\nworld")
        self.assertEqual(done.result.stderr, "warn")
        self.assertTrue(self.client.next_channel.closed)

    def test_stream_exit_status(self) -> None:
        self.client.next_channel = FakeChannel(stderr_chunks=[b"denied\n"], status=13)
        with self.channel:
            events = list(self.channel.execute_stream("deploy"))
        self.assertEqual(events[-1].result.exit_status, 13)

    def test_stream_rejection_is_eager(self) -> None:
        self.client.fail_exec = True
        with self.channel:
            with self.assertRaises(ChannelRejectionError):
                self.channel.execute_stream("deploy")

    def test_stream_cancellation(self) -> None:
        self.client.next_channel = FakeChannel(finished=False)
        cancel = CancelToken()
        cancel.cancel()
        with self.channel:
            events = list(self.channel.execute_stream("sleep 100", ExecuteOptions(cancel=cancel)))

        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].type, StreamEventType.ERROR)
        self.assertIsInstance(events[0].error, CommandCancelledError)
        self.assertTrue(self.client.next_channel.closed)

    def test_stream_decodes_characters_split_across_chunks(self) -> None:
        self.client.next_channel = FakeChannel(stdout_chunks=[b"caf\xc3", b"\xa9\n"])
        with self.channel:
            events = list(self.channel.execute_stream("deploy"))
        self.assertEqual(events[0].data, "caf\u00e9")
        self.assertEqual(events[-1].result.stdout, "caf\u00e9")


class SSHConnectionLossTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = FakeSSHClient()
        self.client.next_channel = FakeChannel(drop_on_exit=True)
        self.channel = SSHChannel(_credentials(), client_factory=lambda: self.client, poll_interval=0)

    def test_execute_returns_failed_result(self) -> None:
        with self.channel:
            result = self.channel.execute("echo test")
        self.assertEqual(result.exit_status, -1)
        self.assertIn("CONNECTION_ERROR", result.stderr)
        self.assertTrue(self.client.next_channel.closed)

    def test_stream_ends_with_error_event(self) -> None:
        with self.channel:
            events = list(self.channel.execute_stream("deploy"))
        self.assertEqual(events[-1].type, StreamEventType.ERROR)
        self.assertIsInstance(events[-1].error, ConnectionResetError)
        self.assertTrue(self.client.next_channel.closed)

    def test_rollback_runs_every_action(self) -> None:
        with self.channel:
            report = RollbackController(self.channel).rollback("webapp", "/opt/apps")
        self.assertEqual(len(self.client.commands), 3)
        self.assertEqual(len(report.failed_actions), 3)


if __name__ == "__main__":
    unittest.main()
