"""Progress observers: consumers of the pipeline's lifecycle and output events.

Observers are advisory. The orchestrator never lets an observer error change
the outcome of a run.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..channel.base import StreamEvent, StreamEventType
from .models import DeploymentParams, DeploymentResult, Step, StepStatus

logger = logging.getLogger(__name__)


class ProgressObserver(ABC):
    """Abstract base class for pipeline event consumers."""

    def on_run_start(self, catalog: Sequence[Step], params: Optional[DeploymentParams]) -> None:
        """Called once before the first step starts."""

    @abstractmethod
    def on_event(self, event: StreamEvent) -> None:
        """
        Receive one event.

        Args:
            event: STEP_START/STEP_END lifecycle events, or STDOUT/STDERR/
                DONE/ERROR sub-events passed through from the channel
        """
        pass

    def on_run_end(
        self,
        status: str,
        result: Optional[DeploymentResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Called once when the run finished ("success") or aborted ("failed")."""


class CallbackObserver(ProgressObserver):
    """Adapts a plain callable to the observer interface."""

    def __init__(self, callback: Callable[[StreamEvent], Any]) -> None:
        self.callback = callback

    def on_event(self, event: StreamEvent) -> None:
        self.callback(event)


class CompositeObserver(ProgressObserver):
    """Fans events out to several observers; one failing observer does not starve the rest."""

    def __init__(self, observers: Iterable[ProgressObserver] = ()) -> None:
        self.observers: List[ProgressObserver] = list(observers)

    def add(self, observer: ProgressObserver) -> None:
        self.observers.append(observer)

    def _each(self, method: str, *args, **kwargs) -> None:
        for observer in self.observers:
            try:
                getattr(observer, method)(*args, **kwargs)
            except Exception as exc:
                logger.warning("Observer %s.%s failed: %s", type(observer).__name__, method, exc)

    def on_run_start(self, catalog, params) -> None:
        self._each("on_run_start", catalog, params)

    def on_event(self, event: StreamEvent) -> None:
        self._each("on_event", event)

    def on_run_end(self, status, result=None, error=None) -> None:
        self._each("on_run_end", status, result=result, error=error)


class LoggingProgressObserver(ProgressObserver):
    """Renders progress through the logging module."""

    def __init__(self, log: Optional[logging.Logger] = None, show_output: bool = True) -> None:
        self.log = log or logger
        self.show_output = show_output

    def on_run_start(self, catalog, params) -> None:
        self.log.info("")
        self.log.info("=" * 60)
        self.log.info("🚀 DEPLOYMENT PIPELINE")
        self.log.info("=" * 60)
        if params is not None:
            self.log.info(f"Application: {params.app_name}:{params.version}")
            self.log.info(f"Deploy Path: {params.deploy_path}")
        self.log.info(f"Total Steps: {len(catalog)}")
        for i, step in enumerate(catalog, 1):
            marker = "" if step.critical else " (non-critical)"
            self.log.info(f"  {i}. {step.name}{marker}")
        self.log.info("=" * 60)

    def on_event(self, event: StreamEvent) -> None:
        if event.type == StreamEventType.STEP_START and event.progress:
            progress = event.progress
            self.log.info(
                f"🔄 Step {progress.step_number}/{progress.total_steps}: "
                f"{event.step.name if event.step else '?'} [{progress.percentage:.0f}%]"
            )
            if event.step and event.step.description:
                self.log.info(f"   📝 {event.step.description}")
        elif event.type == StreamEventType.STEP_END and event.step:
            step = event.step
            seconds = step.duration.total_seconds() if step.duration is not None else 0.0
            if step.status == StepStatus.COMPLETED:
                self.log.info(f"   ✅ {step.name} completed in {seconds:.2f}s")
            elif step.status == StepStatus.SKIPPED:
                self.log.warning(f"   ⚠️  {step.name} failed (non-critical), skipped: {step.error}")
            else:
                self.log.error(f"   ❌ {step.name} failed: {step.error}")
        elif not self.show_output:
            return
        elif event.type == StreamEventType.STDOUT:
            self.log.info(f"   📤 {event.data}")
        elif event.type == StreamEventType.STDERR:
            self.log.warning(f"   ❗ {event.data}")

    def on_run_end(self, status, result=None, error=None) -> None:
        if status == "success" and result is not None:
            self.log.info("=" * 60)
            self.log.info("🎉 Deployment completed successfully!")
            self.log.info(
                f"   📊 {result.data.get('completed_steps')}/{result.data.get('total_steps')} steps completed"
            )
            self.log.info(f"   ⏱️  Total time: {result.duration.total_seconds():.2f}s")
            self.log.info("=" * 60)
        elif error is not None:
            self.log.error("=" * 60)
            self.log.error(f"💥 {error}")
            self.log.error("=" * 60)


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", value) or "app"


class RunLogObserver(ProgressObserver):
    """
    Persists a JSON run log, rewritten at every lifecycle boundary.

    File name: ``deploy_<app>_<YYYYmmdd_HHMMSS>.json`` inside ``log_dir``.
    """

    version = "1.0"

    def __init__(self, log_dir: Path, max_output_lines: int = 200) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.max_output_lines = max_output_lines
        self.current_log_file: Optional[Path] = None
        self.run_log: Dict[str, Any] = {}
        self._step_index: Dict[str, int] = {}

    def on_run_start(self, catalog, params) -> None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        app_name = params.app_name if params is not None else "app"
        self.current_log_file = self.log_dir / f"deploy_{_safe_name(app_name)}_{timestamp}.json"
        self.run_log = {
            "version": self.version,
            "params": params.to_dict() if params is not None else {},
            "start_time": datetime.now().isoformat(),
            "end_time": None,
            "status": "running",
            "plan": [
                {"id": s.id, "name": s.name, "critical": s.critical, "command": s.command}
                for s in catalog
            ],
            "steps": [],
        }
        self._step_index = {}
        self._save_log()
        logger.debug(f"📝 Logging to: {self.current_log_file}")

    def on_event(self, event: StreamEvent) -> None:
        if not self.run_log:
            return
        if event.type == StreamEventType.STEP_START and event.step:
            self._step_index[event.step.id] = len(self.run_log["steps"])
            self.run_log["steps"].append({**event.step.to_dict(), "stdout": [], "stderr": []})
            self._save_log()
        elif event.type == StreamEventType.STEP_END and event.step:
            entry = self._entry(event.step.id)
            if entry is not None:
                entry.update(event.step.to_dict())
                if event.progress:
                    entry["progress"] = event.progress.to_dict()
            self._save_log()
        elif event.type in (StreamEventType.STDOUT, StreamEventType.STDERR) and event.step:
            entry = self._entry(event.step.id)
            if entry is not None:
                lines = entry[event.type.value]
                if len(lines) < self.max_output_lines:
                    lines.append(event.data)

    def on_run_end(self, status, result=None, error=None) -> None:
        if not self.run_log:
            return
        self.run_log["end_time"] = datetime.now().isoformat()
        self.run_log["status"] = status
        if result is not None:
            summary = {k: v for k, v in result.to_dict()["data"].items() if k != "steps"}
            summary["duration_seconds"] = result.duration.total_seconds()
            self.run_log["summary"] = summary
        if error is not None:
            self.run_log["error"] = str(error)
            report = getattr(error, "rollback_report", None)
            if report is not None:
                self.run_log["rollback"] = report.to_dict()
        self._save_log()
        logger.info(f"📄 Log saved to: {self.current_log_file}")

    def _entry(self, step_id: str) -> Optional[Dict[str, Any]]:
        index = self._step_index.get(step_id)
        if index is None:
            return None
        return self.run_log["steps"][index]

    def _save_log(self) -> None:
        """保存日志到文件"""
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.run_log, f, indent=2, ensure_ascii=False)
