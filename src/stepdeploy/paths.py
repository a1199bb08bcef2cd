"""Unified path constants for stepdeploy.

All data is stored under the .stepdeploy directory:
- .stepdeploy/logs/   # JSON run logs written by RunLogObserver
"""

from pathlib import Path
from typing import Optional

# 基础目录（在当前工作目录下）
BASE_DIR = Path(".stepdeploy")

LOGS_DIR = BASE_DIR / "logs"    # 部署运行日志


def get_logs_dir(override: Optional[str] = None) -> Path:
    """获取运行日志目录路径（不存在时创建）."""
    logs_dir = Path(override) if override else LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
