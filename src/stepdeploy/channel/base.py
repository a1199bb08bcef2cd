"""Execution channel abstraction.

A channel runs commands against one target host. Every channel offers the
blocking ``execute``; channels deriving from ``StreamingExecutionChannel``
additionally offer ``execute_stream``, which yields live sub-events for a
single command. Callers query ``supports_streaming`` once and dispatch.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator, Optional

if TYPE_CHECKING:
    from ..pipeline.models import ProgressInfo, Step


class ChannelRejectionError(RuntimeError):
    """Raised when the channel could not start a command at all."""

    pass


class CommandTimeoutError(RuntimeError):
    """Carried by an ERROR event when a command exceeds its timeout."""

    pass


class CommandCancelledError(RuntimeError):
    """Carried by an ERROR event when a command is cancelled mid-flight."""

    pass


class CancelToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class ExecuteOptions:
    """Per-command execution options."""

    timeout: Optional[int] = None     # 总超时（秒），None 表示使用通道默认值
    stream_output: bool = False
    cancel: Optional[CancelToken] = None


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def duration(self):
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_status,
            "success": self.ok,
        }


class StreamEventType(str, Enum):
    """Kinds of events travelling through a stream."""
    STDOUT = "stdout"           # 标准输出行
    STDERR = "stderr"           # 标准错误行
    DONE = "done"               # 命令结束（携带 CommandResult）
    ERROR = "error"             # 执行出错（携带异常）
    STEP_START = "step_start"   # 步骤开始（流水线生命周期）
    STEP_END = "step_end"       # 步骤结束（流水线生命周期）


@dataclass
class StreamEvent:
    """One timestamped event: a raw execution sub-event or a lifecycle signal."""

    type: StreamEventType
    data: str = ""
    result: Optional[CommandResult] = None
    error: Optional[BaseException] = None
    step: Optional["Step"] = None
    progress: Optional["ProgressInfo"] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_lifecycle(self) -> bool:
        return self.type in (StreamEventType.STEP_START, StreamEventType.STEP_END)

    @classmethod
    def stdout(cls, line: str) -> "StreamEvent":
        return cls(type=StreamEventType.STDOUT, data=line)

    @classmethod
    def stderr(cls, line: str) -> "StreamEvent":
        return cls(type=StreamEventType.STDERR, data=line)

    @classmethod
    def done(cls, result: CommandResult) -> "StreamEvent":
        return cls(type=StreamEventType.DONE, result=result)

    @classmethod
    def failure(cls, error: BaseException) -> "StreamEvent":
        return cls(type=StreamEventType.ERROR, data=str(error), error=error)


class ExecutionChannel(ABC):
    """Blocking command execution against a single target."""

    supports_streaming = False

    def connect(self) -> None:
        """Open the underlying transport (no-op by default)."""

    def close(self) -> None:
        """Release the underlying transport (no-op by default)."""

    def __enter__(self) -> "ExecutionChannel":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abstractmethod
    def execute(self, command: str, options: Optional[ExecuteOptions] = None) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Raises:
            ChannelRejectionError: the command could not be started
        """
        pass


class StreamingExecutionChannel(ExecutionChannel):
    """A channel that can also stream sub-events for a single command."""

    supports_streaming = True

    @abstractmethod
    def execute_stream(
        self, command: str, options: Optional[ExecuteOptions] = None
    ) -> Iterator[StreamEvent]:
        """
        Start a command and return an iterator of its sub-events.

        The iterator yields STDOUT/STDERR lines and ends with exactly one
        DONE or ERROR event. Rejection is raised eagerly, before any event.

        Raises:
            ChannelRejectionError: the command could not be started
        """
        pass


def describe(value: Any) -> str:
    """Short human-readable description of an exception or value."""
    if isinstance(value, BaseException):
        text = str(value)
        return text or value.__class__.__name__
    return str(value)
