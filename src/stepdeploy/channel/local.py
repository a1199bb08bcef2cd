"""Local command execution channel."""

from __future__ import annotations

import logging
import os
import platform
import queue
import subprocess
import threading
import time
from datetime import datetime
from typing import IO, Iterator, List, Optional, Tuple

from .base import (
    ChannelRejectionError,
    CommandCancelledError,
    CommandTimeoutError,
    CommandResult,
    ExecuteOptions,
    StreamEvent,
    StreamingExecutionChannel,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600  # 默认10分钟总超时


class LocalChannel(StreamingExecutionChannel):
    """
    Local command execution channel.

    Runs commands with bash on Unix and PowerShell on Windows, in
    ``working_dir``. Streaming reads stdout and stderr on two reader threads
    so timeouts and cancellation can be checked while the command runs.
    """

    def __init__(self, working_dir: Optional[str] = None) -> None:
        self.working_dir = working_dir or os.path.expanduser("~")
        self.is_windows = platform.system() == "Windows"
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def _check_connected(self) -> None:
        if not self._connected:
            raise ChannelRejectionError("local channel is not connected")

    def _argv(self, command: str) -> Tuple[object, dict]:
        if self.is_windows:
            return ["powershell", "-Command", command], {}
        return command, {"shell": True, "executable": "/bin/bash"}

    def execute(self, command: str, options: Optional[ExecuteOptions] = None) -> CommandResult:
        self._check_connected()
        options = options or ExecuteOptions()
        timeout = options.timeout or DEFAULT_TIMEOUT
        args, extra = self._argv(command)
        started = datetime.now()
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                cwd=self.working_dir,
                **extra,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                exit_status=-1,
                start_time=started,
            )
        except OSError as exc:
            raise ChannelRejectionError(f"failed to start command: {exc}") from exc

        return CommandResult(
            command=command,
            stdout=proc.stdout.strip(),
            stderr=proc.stderr.strip(),
            exit_status=proc.returncode,
            start_time=started,
        )

    def execute_stream(
        self, command: str, options: Optional[ExecuteOptions] = None
    ) -> Iterator[StreamEvent]:
        self._check_connected()
        options = options or ExecuteOptions()
        args, extra = self._argv(command)
        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                cwd=self.working_dir,
                **extra,
            )
        except OSError as exc:
            raise ChannelRejectionError(f"failed to start command: {exc}") from exc
        return self._iter_events(command, process, options)

    def _iter_events(
        self,
        command: str,
        process: subprocess.Popen,
        options: ExecuteOptions,
    ) -> Iterator[StreamEvent]:
        timeout = options.timeout or DEFAULT_TIMEOUT
        cancel = options.cancel
        started = datetime.now()
        start_time = time.time()

        lines: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []

        def pump(name: str, stream: IO[str]) -> None:
            try:
                for line in stream:
                    lines.put((name, line))
            finally:
                lines.put((name, None))

        readers = [
            threading.Thread(target=pump, args=("stdout", process.stdout), daemon=True),
            threading.Thread(target=pump, args=("stderr", process.stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            open_streams = len(readers)
            while open_streams:
                if cancel is not None and cancel.cancelled:
                    self._kill(process)
                    yield StreamEvent.failure(CommandCancelledError(f"command cancelled: {command}"))
                    return

                if time.time() - start_time > timeout:
                    self._kill(process)
                    yield StreamEvent.failure(
                        CommandTimeoutError(
                            f"TOTAL_TIMEOUT: Command exceeded {timeout} seconds total execution time."
                        )
                    )
                    return

                try:
                    name, line = lines.get(timeout=0.1)
                except queue.Empty:
                    continue

                if line is None:
                    open_streams -= 1
                    continue

                text = line.rstrip("\r\n")
                if name == "stdout":
                    stdout_chunks.append(line)
                    yield StreamEvent.stdout(text)
                else:
                    stderr_chunks.append(line)
                    yield StreamEvent.stderr(text)

            exit_status = process.wait()
            for reader in readers:
                reader.join(timeout=1)

            yield StreamEvent.done(
                CommandResult(
                    command=command,
                    stdout="".join(stdout_chunks).strip(),
                    stderr="".join(stderr_chunks).strip(),
                    exit_status=exit_status,
                    start_time=started,
                )
            )
        finally:
            # 消费方提前关闭生成器时确保进程被终止
            if process.poll() is None:
                self._kill(process)

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            process.kill()
            process.wait(timeout=5)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("Failed to kill process %s: %s", process.pid, exc)
