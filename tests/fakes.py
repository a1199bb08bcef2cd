"""Scripted channels and observers shared by the pipeline tests."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from stepdeploy.channel import (
    ChannelRejectionError,
    CommandResult,
    ExecuteOptions,
    ExecutionChannel,
    StreamEvent,
    StreamingExecutionChannel,
)
from stepdeploy.pipeline import ProgressObserver

# 每个步骤命令中唯一出现的片段
STEP_MARKERS = {
    "validate": "test -w",
    "backup": ".backup.$(date",
    "download": "Downloading",
    "extract": "Extracting to",
    "configure": "Configuring",
    "permissions": "chmod -R",
    "start": "Starting",
    "health_check": "Health check for",
}


def step_of(command: str) -> str:
    for step_id, marker in STEP_MARKERS.items():
        if marker in command:
            return step_id
    return "unknown"


class ScriptedChannel(StreamingExecutionChannel):
    """Streaming channel whose per-step outcome is decided up front."""

    def __init__(
        self,
        fail_steps: Iterable[str] = (),
        reject_steps: Iterable[str] = (),
        silent_steps: Iterable[str] = (),
        error_steps: Iterable[str] = (),
        broken_steps: Iterable[str] = (),
        fail_actions: Iterable[str] = (),
        reject_actions: Iterable[str] = (),
        crash_actions: Iterable[str] = (),
        on_step: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.fail_steps = set(fail_steps)
        self.reject_steps = set(reject_steps)
        self.silent_steps = set(silent_steps)
        self.error_steps = set(error_steps)
        self.broken_steps = set(broken_steps)
        self.fail_actions = list(fail_actions)
        self.reject_actions = list(reject_actions)
        self.crash_actions = list(crash_actions)
        self.on_step = on_step
        self.streamed: List[str] = []
        self.stream_options: List[ExecuteOptions] = []
        self.executed: List[str] = []
        self.execute_options: List[ExecuteOptions] = []
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def execute_stream(self, command, options=None):
        step_id = step_of(command)
        self.streamed.append(step_id)
        self.stream_options.append(options)
        if step_id in self.reject_steps:
            raise ChannelRejectionError(f"cannot start {step_id}")
        if self.on_step is not None:
            self.on_step(step_id)
        return self._events(command, step_id)

    def _events(self, command, step_id):
        yield StreamEvent.stdout(f"running {step_id}")
        if step_id in self.silent_steps:
            return
        if step_id in self.error_steps:
            yield StreamEvent.failure(OSError("transport broke"))
            return
        if step_id in self.broken_steps:
            raise OSError("pipe broke")
        if step_id in self.fail_steps:
            yield StreamEvent.stderr("boom")
            yield StreamEvent.done(CommandResult(command, f"running {step_id}", "boom", 1))
        else:
            yield StreamEvent.done(CommandResult(command, f"running {step_id}", "", 0))

    def execute(self, command, options=None):
        self.executed.append(command)
        self.execute_options.append(options)
        if any(marker in command for marker in self.reject_actions):
            raise ChannelRejectionError("rollback command rejected")
        if any(marker in command for marker in self.crash_actions):
            raise RuntimeError("connection reset")
        if any(marker in command for marker in self.fail_actions):
            return CommandResult(command, "", "rollback boom", 1)
        return CommandResult(command, "ok", "", 0)


class BlockingChannel(ExecutionChannel):
    """Channel without streaming support."""

    def __init__(self, exit_status: int = 0, reject: bool = False) -> None:
        self.exit_status = exit_status
        self.reject = reject
        self.executed: List[str] = []
        self.options: List[ExecuteOptions] = []

    def execute(self, command, options=None):
        self.executed.append(command)
        self.options.append(options)
        if self.reject:
            raise ChannelRejectionError("connection refused")
        return CommandResult(command, "Deployment completed", "", self.exit_status)


class RecordingObserver(ProgressObserver):
    def __init__(self) -> None:
        self.events: List[StreamEvent] = []
        self.started = 0
        self.ended: List[tuple] = []

    def on_run_start(self, catalog, params) -> None:
        self.started += 1

    def on_event(self, event: StreamEvent) -> None:
        self.events.append(event)

    def on_run_end(self, status, result=None, error=None) -> None:
        self.ended.append((status, result, error))

    def of_type(self, event_type) -> List[StreamEvent]:
        return [event for event in self.events if event.type == event_type]


class ExplodingObserver(ProgressObserver):
    def on_run_start(self, catalog, params) -> None:
        raise RuntimeError("observer exploded")

    def on_event(self, event: StreamEvent) -> None:
        raise RuntimeError("observer exploded")

    def on_run_end(self, status, result=None, error=None) -> None:
        raise RuntimeError("observer exploded")
