"""Configuration loading utilities for stepdeploy."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")


@dataclass
class DeploymentConfig:
    """Default deployment parameters (CLI flags take precedence)."""

    deploy_path: str = "/opt/apps"
    version: str = "latest"
    health_check: bool = True
    rollback_on_failure: bool = True


@dataclass
class ExecutionConfig:
    """Timeouts (seconds) used when talking to the execution channel."""

    step_timeout: int = 30        # 每个步骤的超时
    rollback_timeout: int = 10    # 每个回滚动作的超时
    standard_timeout: int = 60    # 非流式降级模式的超时


@dataclass
class ConnectionConfig:
    """How to reach the target host."""

    mode: str = "local"  # "local" | "ssh"
    working_dir: Optional[str] = None
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    auth_method: Optional[str] = None
    password: Optional[str] = None
    key_path: Optional[str] = None
    timeout: int = 20


@dataclass
class LoggingConfig:
    """Logging and run-log persistence."""

    level: str = "INFO"
    log_dir: Optional[str] = None   # 默认 .stepdeploy/logs
    save_run_logs: bool = True


@dataclass
class AppConfig:
    """Top-level configuration."""

    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str) -> Dict[str, Any]:
            # 过滤掉以下划线开头的注释字段
            raw = payload.get(name, {}) or {}
            return {k: v for k, v in raw.items() if not k.startswith("_")}

        return cls(
            deployment=DeploymentConfig(
                **{**DeploymentConfig().__dict__, **section("deployment")}
            ),
            execution=ExecutionConfig(
                **{**ExecutionConfig().__dict__, **section("execution")}
            ),
            connection=ConnectionConfig(
                **{**ConnectionConfig().__dict__, **section("connection")}
            ),
            logging=LoggingConfig(
                **{**LoggingConfig().__dict__, **section("logging")}
            ),
        )


def _apply_env_overrides(config: AppConfig) -> None:
    env_deploy_path = os.getenv("STEPDEPLOY_DEPLOY_PATH")
    if env_deploy_path:
        config.deployment.deploy_path = env_deploy_path

    env_host = os.getenv("STEPDEPLOY_SSH_HOST")
    if env_host:
        config.connection.host = env_host
        config.connection.mode = "ssh"

    env_port = os.getenv("STEPDEPLOY_SSH_PORT")
    if env_port:
        config.connection.port = int(env_port)

    env_username = os.getenv("STEPDEPLOY_SSH_USERNAME")
    if env_username:
        config.connection.username = env_username

    env_password = os.getenv("STEPDEPLOY_SSH_PASSWORD")
    if env_password:
        config.connection.password = env_password
        config.connection.auth_method = "password"

    env_key_path = os.getenv("STEPDEPLOY_SSH_KEY_PATH")
    if env_key_path:
        config.connection.key_path = env_key_path
        config.connection.auth_method = "key"

    env_log_dir = os.getenv("STEPDEPLOY_LOG_DIR")
    if env_log_dir:
        config.logging.log_dir = env_log_dir


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - STEPDEPLOY_DEPLOY_PATH: Default base deployment path
    - STEPDEPLOY_SSH_HOST: SSH host (switches connection mode to ssh)
    - STEPDEPLOY_SSH_PORT: SSH port
    - STEPDEPLOY_SSH_USERNAME: SSH username
    - STEPDEPLOY_SSH_PASSWORD: SSH password
    - STEPDEPLOY_SSH_KEY_PATH: Path to SSH private key
    - STEPDEPLOY_LOG_DIR: Directory for JSON run logs
    """

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = AppConfig.from_dict(data)
            _apply_env_overrides(config)
            return config

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
