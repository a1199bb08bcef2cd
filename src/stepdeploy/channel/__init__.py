"""Execution channels for stepdeploy."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    CancelToken,
    ChannelRejectionError,
    CommandCancelledError,
    CommandResult,
    CommandTimeoutError,
    ExecuteOptions,
    ExecutionChannel,
    StreamEvent,
    StreamEventType,
    StreamingExecutionChannel,
)
from .local import LocalChannel
from .ssh import SSHChannel, SSHConnectionError, SSHCredentials

if TYPE_CHECKING:
    from ..config import ConnectionConfig

__all__ = [
    "CancelToken",
    "ChannelRejectionError",
    "CommandCancelledError",
    "CommandResult",
    "CommandTimeoutError",
    "ExecuteOptions",
    "ExecutionChannel",
    "StreamEvent",
    "StreamEventType",
    "StreamingExecutionChannel",
    "LocalChannel",
    "SSHChannel",
    "SSHConnectionError",
    "SSHCredentials",
    "create_channel",
]


def create_channel(config: "ConnectionConfig") -> ExecutionChannel:
    """
    Factory function to create the execution channel described by config.

    Raises:
        ValueError: unknown mode or incomplete SSH credentials
    """
    mode = (config.mode or "local").lower()

    if mode == "local":
        return LocalChannel(working_dir=config.working_dir)
    elif mode == "ssh":
        if not config.host or not config.username:
            raise ValueError("SSH mode requires both host and username")
        credentials = SSHCredentials(
            host=config.host,
            username=config.username,
            port=config.port,
            auth_method=config.auth_method or "password",
            password=config.password,
            key_path=config.key_path,
            timeout=config.timeout,
        )
        credentials.validate()
        return SSHChannel(credentials)
    else:
        raise ValueError(
            f"Unsupported connection mode: {mode}. Supported modes: local, ssh"
        )
