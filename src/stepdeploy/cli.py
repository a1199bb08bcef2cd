"""Command-line interface for stepdeploy."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .channel import ChannelRejectionError
from .config import AppConfig, load_config
from .paths import get_logs_dir
from .pipeline import CriticalStepFailure, DeploymentError
from .utils.logging import get_logger
from .workflow import DeploymentRequest, DeploymentWorkflow


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepdeploy",
        description="Deploy an application to a host with step tracking and rollback.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    deploy_parser = subparsers.add_parser("deploy", help="Run the deployment pipeline")
    deploy_parser.add_argument("--app", required=True, dest="app_name", help="Application name")
    deploy_parser.add_argument("--version", dest="app_version", default=None, help="Application version")
    deploy_parser.add_argument(
        "--deploy-path", type=str, default=None,
        help="Absolute base directory for deployments (default from config: /opt/apps)"
    )
    deploy_parser.add_argument(
        "--no-health-check", action="store_true",
        help="Skip the final health check step"
    )
    deploy_parser.add_argument(
        "--no-rollback", action="store_true",
        help="Do not roll back after a critical step failure"
    )
    deploy_parser.add_argument(
        "--json", action="store_true", dest="as_json",
        help="Print the final result as JSON"
    )

    # 本地部署模式
    deploy_parser.add_argument(
        "--local", "-L", action="store_true",
        help="Deploy on this machine (no SSH needed)"
    )

    # SSH 远程部署选项
    deploy_parser.add_argument("--host", help="Target server host (for remote deployment)")
    deploy_parser.add_argument("--port", type=int, default=None, help="SSH port")
    deploy_parser.add_argument("--user", help="SSH username")
    deploy_parser.add_argument(
        "--auth-method",
        choices=["password", "key"],
        help="SSH authentication method",
    )
    deploy_parser.add_argument("--password", help="SSH password", default=None)
    deploy_parser.add_argument(
        "--key-path", help="Path to SSH private key", default=None
    )

    # logs 子命令 - 查看运行日志
    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if args.verbose:
        config.logging.level = "DEBUG"
    get_logger(__name__, level=config.logging.level)
    return CLIContext(config=config)


def _apply_connection_args(args: argparse.Namespace, config: AppConfig) -> None:
    connection = config.connection
    if args.local:
        connection.mode = "local"
        return
    if args.host:
        connection.mode = "ssh"
        connection.host = args.host
    if args.port:
        connection.port = args.port
    if args.user:
        connection.username = args.user
    if args.auth_method:
        connection.auth_method = args.auth_method
    if args.password is not None:
        connection.password = args.password
    if args.key_path is not None:
        connection.key_path = args.key_path

    if connection.mode == "ssh":
        missing = []
        if not connection.host:
            missing.append("host")
        if not connection.username:
            missing.append("user")
        if connection.auth_method == "password" and not connection.password:
            missing.append("password")
        if connection.auth_method == "key" and not connection.key_path:
            missing.append("key-path")
        if missing:
            raise ValueError("Missing SSH connection values: " + ", ".join(missing))


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    logger = get_logger(__name__)
    try:
        _apply_connection_args(args, context.config)
    except ValueError as exc:
        logger.error("❌ %s", exc)
        return 1

    request = DeploymentRequest(
        app_name=args.app_name,
        version=args.app_version,
        deploy_path=args.deploy_path,
        health_check=False if args.no_health_check else None,
        rollback_on_failure=False if args.no_rollback else None,
    )
    workflow = DeploymentWorkflow(config=context.config)

    try:
        result = workflow.run(request)
    except CriticalStepFailure as exc:
        logger.error("💥 %s", exc)
        if exc.rollback_report is not None and not exc.rollback_report.succeeded:
            for action in exc.rollback_report.failed_actions:
                logger.error("   ↩️  %s", action.error)
        return 1
    except (DeploymentError, ChannelRejectionError, ValueError) as exc:
        logger.error("❌ %s", exc)
        return 1

    if args.as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    elif result.degraded:
        logger.warning("⚠️  Ran in standard mode: no step tracking, no rollback")
    return 0 if result.success else 1


def handle_logs_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the logs subcommand."""
    log_dir = get_logs_dir(context.config.logging.log_dir)

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)

    if not log_files:
        print("📁 No deployment logs found. Run a deployment first.")
        return 0

    # 列出所有日志
    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Application':<30} {'Time':<20} {'File'}")
        print("-" * 100)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError):
                print(f"{i:<4} ❓ {'error':<10} {'?':<30} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            app = data.get("params", {}).get("app_name", "?")
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            status_emoji = {"success": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")
            print(f"{i:<4} {status_emoji} {status:<10} {app:<30} {start_time:<20} {log_file.name}")
        return 0

    # 选择要显示的日志文件
    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            # 尝试在 log_dir 中查找
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return 1
    else:
        # 默认显示最新的
        target_file = log_files[0]

    show_log_file(target_file)
    return 0


def show_log_file(log_file: Path) -> None:
    """Display a deployment run log."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    status_emoji = {"success": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")
    params = data.get("params", {})

    print(f"\n{'='*60}")
    print(f"📄 Deployment Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"📦 Application: {params.get('app_name', 'N/A')}:{params.get('version', 'N/A')}")
    print(f"📁 Deploy Path: {params.get('deploy_path', 'N/A')}")
    print(f"⏰ Started:     {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:       {data.get('end_time', 'N/A')}")
    print(f"{status_emoji} Status:      {status}")
    print(f"{'='*60}\n")

    icons = {"completed": "✅", "failed": "❌", "skipped": "⏭️", "running": "🔄"}
    for i, step in enumerate(data.get("steps", []), 1):
        icon = icons.get(step.get("status"), "•")
        duration = step.get("duration_seconds")
        timing = f" ({duration:.2f}s)" if isinstance(duration, (int, float)) else ""
        print(f"[{i}] {icon} {step.get('name', '?')}{timing}")
        if step.get("error"):
            print(f"    ⚠️ {step['error']}")
        for line in (step.get("stdout") or [])[:10]:
            print(f"    │ {line[:100]}")

    if data.get("error"):
        print(f"\n💥 {data['error']}")
    rollback = data.get("rollback")
    if rollback:
        print("\n↩️  Rollback:")
        for action in rollback.get("actions", []):
            mark = "✓" if action.get("success") else "✗"
            print(f"    {mark} {action.get('name')}")

    print(f"\n{'='*60}")
    print(f"📄 Full log: {log_file}")
    print(f"{'='*60}\n")


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "logs":
        return handle_logs_command(args, context)

    if args.command == "deploy":
        return handle_deploy_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
