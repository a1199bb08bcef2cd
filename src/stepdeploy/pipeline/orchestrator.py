"""Step orchestrator: runs the catalog sequentially against a streaming channel."""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterator, List, Optional, Sequence

from ..channel.base import (
    CancelToken,
    ChannelRejectionError,
    CommandCancelledError,
    ExecuteOptions,
    StreamEvent,
    StreamEventType,
    StreamingExecutionChannel,
    describe,
)
from .aggregator import aggregate
from .errors import (
    ROLLBACK_ATTEMPTED,
    ROLLBACK_SKIPPED,
    CriticalStepFailure,
    StepExecutionError,
)
from .models import DeploymentParams, DeploymentResult, ProgressInfo, RollbackReport, Step, StepStatus
from .observers import ProgressObserver
from .rollback import RollbackController

logger = logging.getLogger(__name__)


class StepOrchestrator:
    """
    部署步骤编排器

    Executes steps strictly in catalog order; step n+1 never starts before
    step n reached a terminal status. A failed non-critical step is
    downgraded to SKIPPED and the run continues. A failed critical step
    aborts the run, triggers the rollback controller when enabled and
    raises CriticalStepFailure.
    """

    def __init__(
        self,
        channel: StreamingExecutionChannel,
        observer: Optional[ProgressObserver] = None,
        step_timeout: int = 30,
        rollback_controller: Optional[RollbackController] = None,
    ) -> None:
        self.channel = channel
        self.observer = observer
        self.step_timeout = step_timeout
        self.rollback_controller = rollback_controller or RollbackController(channel)

    def run(
        self,
        catalog: Sequence[Step],
        params: DeploymentParams,
        *,
        rollback_enabled: Optional[bool] = None,
        cancel: Optional[CancelToken] = None,
    ) -> DeploymentResult:
        """
        执行部署步骤

        Args:
            catalog: Ordered steps built by build_catalog
            params: Deployment parameters (app name and path feed the rollback)
            rollback_enabled: Overrides params.rollback_on_failure
            cancel: Token aborting the in-flight step when cancelled

        Returns:
            DeploymentResult of a run that reached the end of the catalog

        Raises:
            CriticalStepFailure: a critical step failed; no later step ran
        """
        if rollback_enabled is None:
            rollback_enabled = params.rollback_on_failure

        total = len(catalog)
        completed: List[Step] = []
        self._notify("on_run_start", catalog, params)

        for index, step in enumerate(catalog):
            step_number = index + 1
            step.mark_running()
            self._emit(
                StreamEvent(
                    type=StreamEventType.STEP_START,
                    step=step.snapshot(),
                    progress=ProgressInfo(
                        percentage=ProgressInfo.percent(len(completed), total),
                        message=f"Starting step {step_number}/{total}: {step.name}",
                        step_number=step_number,
                        total_steps=total,
                        current_step=step.snapshot(),
                        completed_steps=tuple(s.snapshot() for s in completed),
                    ),
                )
            )
            logger.debug("Step %s command: %s", step.id, step.command)

            cause = self._execute_step(step, cancel)

            if cause is None:
                step.finish(StepStatus.COMPLETED)
            else:
                step.finish(StepStatus.FAILED)
                step.error = describe(cause)
                if step.critical:
                    self._abort(step, cause, completed, step_number, total, params, rollback_enabled)
                # 非关键步骤失败：记录后降级为 SKIPPED，继续执行
                step.status = StepStatus.SKIPPED

            completed.append(step)
            self._emit(
                StreamEvent(
                    type=StreamEventType.STEP_END,
                    step=step.snapshot(),
                    progress=ProgressInfo(
                        percentage=ProgressInfo.percent(len(completed), total),
                        message=f"Completed step {step_number}/{total}: {step.name}",
                        step_number=step_number,
                        total_steps=total,
                        completed_steps=tuple(s.snapshot() for s in completed),
                    ),
                )
            )

        result = aggregate(catalog, completed, params=params)
        self._notify("on_run_end", "success", result=result)
        return result

    def _execute_step(self, step: Step, cancel: Optional[CancelToken]) -> Optional[BaseException]:
        """Run one step; returns None on success or the failure cause."""
        if cancel is not None and cancel.cancelled:
            return CommandCancelledError("run cancelled before the step started")

        options = ExecuteOptions(timeout=self.step_timeout, stream_output=True, cancel=cancel)
        try:
            events = self.channel.execute_stream(step.command, options)
        except ChannelRejectionError as exc:
            return exc

        try:
            for event in events:
                self._emit(dataclasses.replace(event, step=step.snapshot()))

                if event.type == StreamEventType.DONE:
                    if event.result is not None and event.result.ok:
                        return None
                    if event.result is None:
                        return StepExecutionError(step.id, "command finished without a result")
                    return StepExecutionError.from_result(step.id, event.result)

                if event.type == StreamEventType.ERROR:
                    error = StepExecutionError(step.id, event.data or describe(event.error))
                    error.__cause__ = event.error
                    return error

                if cancel is not None and cancel.cancelled:
                    return StepExecutionError(step.id, "command cancelled")
        except Exception as exc:
            error = StepExecutionError(step.id, f"event stream failed: {describe(exc)}")
            error.__cause__ = exc
            return error
        finally:
            self._close(events)

        return StepExecutionError(step.id, "event stream ended without completion")

    def _abort(
        self,
        step: Step,
        cause: BaseException,
        completed: List[Step],
        step_number: int,
        total: int,
        params: DeploymentParams,
        rollback_enabled: bool,
    ) -> None:
        # 失败步骤不计入完成数，进度保持不变
        self._emit(
            StreamEvent(
                type=StreamEventType.STEP_END,
                step=step.snapshot(),
                progress=ProgressInfo(
                    percentage=ProgressInfo.percent(len(completed), total),
                    message=f"Failed step {step_number}/{total}: {step.name}",
                    step_number=step_number,
                    total_steps=total,
                    completed_steps=tuple(s.snapshot() for s in completed),
                ),
            )
        )
        logger.error("💥 Critical step '%s' failed: %s", step.name, describe(cause))

        report: Optional[RollbackReport] = None
        if rollback_enabled:
            report = self.rollback_controller.rollback(params.app_name, params.deploy_path)
            outcome = ROLLBACK_ATTEMPTED
        else:
            logger.warning("Rollback disabled, leaving target as is")
            outcome = ROLLBACK_SKIPPED

        error = CriticalStepFailure(
            step,
            cause,
            rollback=outcome,
            rollback_report=report,
            completed_steps=completed,
        )
        self._notify("on_run_end", "failed", error=error)
        raise error from cause

    def _emit(self, event: StreamEvent) -> None:
        self._notify("on_event", event)

    def _notify(self, method: str, *args, **kwargs) -> None:
        if self.observer is None:
            return
        try:
            getattr(self.observer, method)(*args, **kwargs)
        except Exception as exc:
            logger.warning("Progress observer failed in %s: %s", method, exc)

    @staticmethod
    def _close(events: Iterator[StreamEvent]) -> None:
        close = getattr(events, "close", None)
        if callable(close):
            close()
