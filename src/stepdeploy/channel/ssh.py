"""SSH execution channel built on Paramiko."""

from __future__ import annotations

import codecs
import logging
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional

import paramiko

from .base import (
    ChannelRejectionError,
    CommandCancelledError,
    CommandResult,
    CommandTimeoutError,
    ExecuteOptions,
    StreamEvent,
    StreamingExecutionChannel,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600

# 命令已启动后连接中断时可能抛出的异常
_TRANSPORT_ERRORS = (paramiko.SSHException, EOFError, OSError)


class SSHConnectionError(ChannelRejectionError):
    """Raised when an SSH connection cannot be established."""

    pass


@dataclass
class SSHCredentials:
    """Normalized credential payload from CLI/config."""

    host: str
    username: str
    port: int = 22
    auth_method: str = "password"
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: int = 20

    def validate(self) -> None:
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")


class _LineBuffer:
    """Splits arbitrary byte chunks into complete text lines."""

    def __init__(self) -> None:
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.chunks: List[str] = []

    def feed(self, data: bytes) -> List[str]:
        # 多字节字符可能跨 recv 分块
        text = self._decoder.decode(data)
        self.chunks.append(text)
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        tail = self._decoder.decode(b"", final=True)
        self.chunks.append(tail)
        rest, self._pending = self._pending + tail, ""
        return [rest.rstrip("\r")] if rest else []

    @property
    def text(self) -> str:
        return "".join(self.chunks).strip()


class SSHChannel(StreamingExecutionChannel):
    """High-level wrapper around paramiko.SSHClient."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None
        self.poll_interval = poll_interval

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
            else:
                connect_kwargs["key_filename"] = self.credentials.key_path
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except Exception as exc:  # pragma: no cover - network errors hard to simulate
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def _open(self, command: str, timeout: int):
        if not self._client:
            self.connect()
        assert self._client is not None
        try:
            return self._client.exec_command(command, timeout=timeout)
        except (paramiko.SSHException, socket.error) as exc:
            raise ChannelRejectionError(f"failed to start remote command: {exc}") from exc

    def execute(self, command: str, options: Optional[ExecuteOptions] = None) -> CommandResult:
        options = options or ExecuteOptions()
        timeout = options.timeout or DEFAULT_TIMEOUT
        started = datetime.now()
        _stdin, stdout, stderr = self._open(command, timeout)

        stdout.channel.settimeout(float(timeout))
        try:
            exit_status = stdout.channel.recv_exit_status()
            stdout_text = stdout.read().decode("utf-8", errors="replace")
            stderr_text = stderr.read().decode("utf-8", errors="replace")
        except socket.timeout:
            stdout.channel.close()
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                exit_status=-1,
                start_time=started,
            )
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Connection lost while running %s: %s", command, exc)
            stdout.channel.close()
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"CONNECTION_ERROR: {exc}",
                exit_status=-1,
                start_time=started,
            )

        return CommandResult(
            command=command,
            stdout=stdout_text.strip(),
            stderr=stderr_text.strip(),
            exit_status=exit_status,
            start_time=started,
        )

    def execute_stream(
        self, command: str, options: Optional[ExecuteOptions] = None
    ) -> Iterator[StreamEvent]:
        options = options or ExecuteOptions()
        timeout = options.timeout or DEFAULT_TIMEOUT
        _stdin, stdout, _stderr = self._open(command, timeout)
        return self._iter_events(command, stdout.channel, timeout, options)

    def _iter_events(self, command, channel, timeout: int, options: ExecuteOptions) -> Iterator[StreamEvent]:
        cancel = options.cancel
        started = datetime.now()
        start_time = time.time()
        out = _LineBuffer()
        err = _LineBuffer()

        try:
            channel.setblocking(0)
            while True:
                # 读取 stdout
                while channel.recv_ready():
                    for line in out.feed(channel.recv(1024)):
                        yield StreamEvent.stdout(line)

                # 读取 stderr
                while channel.recv_stderr_ready():
                    for line in err.feed(channel.recv_stderr(1024)):
                        yield StreamEvent.stderr(line)

                if channel.exit_status_ready() and not channel.recv_ready() and not channel.recv_stderr_ready():
                    break

                if cancel is not None and cancel.cancelled:
                    yield StreamEvent.failure(CommandCancelledError(f"command cancelled: {command}"))
                    return

                if time.time() - start_time > timeout:
                    yield StreamEvent.failure(
                        CommandTimeoutError(
                            f"TOTAL_TIMEOUT: Command exceeded {timeout} seconds total execution time."
                        )
                    )
                    return

                # 短暂休眠避免 CPU 占用过高
                time.sleep(self.poll_interval)

            for line in out.flush():
                yield StreamEvent.stdout(line)
            for line in err.flush():
                yield StreamEvent.stderr(line)

            yield StreamEvent.done(
                CommandResult(
                    command=command,
                    stdout=out.text,
                    stderr=err.text,
                    exit_status=channel.recv_exit_status(),
                    start_time=started,
                )
            )
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Connection lost while streaming %s: %s", command, exc)
            yield StreamEvent.failure(exc)
        finally:
            channel.close()
