"""Compensating rollback run after a critical step failure."""

from __future__ import annotations

import logging
import shlex
from typing import List, Tuple

from ..channel.base import ChannelRejectionError, ExecuteOptions, ExecutionChannel, describe
from .catalog import app_dir
from .errors import RollbackActionError
from .models import RollbackActionOutcome, RollbackReport

logger = logging.getLogger(__name__)


def rollback_actions(app_name: str, deploy_path: str) -> List[Tuple[str, str]]:
    """The fixed compensating sequence: stop, restore newest backup, restart."""
    target = shlex.quote(app_dir(deploy_path, app_name))
    name = shlex.quote(app_name)
    # 没有备份时 latest 为空，恢复动作退化为 no-op
    restore = (
        f"latest=$(ls -1d {target}.backup.* 2>/dev/null | sort | tail -n 1); "
        f"if [ -n \"$latest\" ]; then rm -rf {target} && cp -r \"$latest\" {target} "
        f"&& echo \"Restored $latest\"; else echo 'No backup found'; fi"
    )
    return [
        ("Stop service", f"echo Stopping {name} service"),
        ("Restore backup", restore),
        ("Restart service", f"echo Restarting {name} service"),
    ]


class RollbackController:
    """
    Runs the compensating actions best-effort.

    Every action is attempted even if an earlier one failed. Failures are
    logged as RollbackActionError and recorded in the report; ``rollback``
    itself never raises, so the step failure stays the reported cause.
    """

    def __init__(self, channel: ExecutionChannel, action_timeout: int = 10) -> None:
        self.channel = channel
        self.action_timeout = action_timeout

    def rollback(self, app_name: str, deploy_path: str) -> RollbackReport:
        logger.warning("🔄 Rolling back deployment of %s...", app_name)
        report = RollbackReport()

        for name, command in rollback_actions(app_name, deploy_path):
            logger.info("   📤 %s", name)
            outcome = self._run_action(name, command)
            report.actions.append(outcome)
            if outcome.success:
                logger.info("   ✅ %s completed", name)

        if report.succeeded:
            logger.info("↩️  Rollback finished")
        else:
            logger.error(
                "↩️  Rollback finished with %d failed action(s)", len(report.failed_actions)
            )
        return report

    def _run_action(self, name: str, command: str) -> RollbackActionOutcome:
        try:
            result = self.channel.execute(command, ExecuteOptions(timeout=self.action_timeout))
        except ChannelRejectionError as exc:
            error = RollbackActionError(name, describe(exc))
        except Exception as exc:
            # 回滚尽力而为：任何异常都只记录，不中断后续动作
            error = RollbackActionError(name, f"{type(exc).__name__}: {describe(exc)}")
        else:
            if result.ok:
                return RollbackActionOutcome(name=name, command=command, success=True)
            error = RollbackActionError(
                name, f"exit status {result.exit_status}: {result.stderr or result.stdout}"
            )

        logger.error("   ❌ %s", error)
        return RollbackActionOutcome(name=name, command=command, success=False, error=str(error))
