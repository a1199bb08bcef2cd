import json
import unittest
import tempfile
from pathlib import Path

from fakes import BlockingChannel, RecordingObserver, ScriptedChannel

from stepdeploy.config import AppConfig
from stepdeploy.pipeline import CriticalStepFailure, ValidationError
from stepdeploy.workflow import DeploymentRequest, DeploymentWorkflow


class WorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.config = AppConfig()
        self.config.logging.log_dir = str(Path(self._tmp.name) / "logs")
        self.channels = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _factory(self, channel):
        def factory(connection):
            self.channels.append((connection, channel))
            return channel
        return factory

    def test_request_to_args(self) -> None:
        request = DeploymentRequest(app_name="webapp", health_check=False)
        self.assertEqual(request.to_args(), {"app_name": "webapp", "health_check": False})

    def test_runs_and_closes_channel(self) -> None:
        channel = ScriptedChannel()
        recorder = RecordingObserver()
        workflow = DeploymentWorkflow(
            self.config, channel_factory=self._factory(channel), observers=[recorder]
        )

        result = workflow.run(DeploymentRequest(app_name="webapp"))

        self.assertTrue(result.success)
        self.assertTrue(channel.connected)
        self.assertTrue(channel.closed)
        self.assertIs(self.channels[0][0], self.config.connection)
        self.assertEqual(recorder.started, 1)
        log = json.loads(workflow.run_log.current_log_file.read_text(encoding="utf-8"))
        self.assertEqual(log["status"], "success")

    def test_config_defaults_flow_into_run(self) -> None:
        self.config.deployment.deploy_path = "/srv/apps"
        self.config.deployment.health_check = False
        self.config.execution.step_timeout = 4
        channel = ScriptedChannel()
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(channel))

        result = workflow.run(DeploymentRequest(app_name="webapp"))

        self.assertEqual(result.data["deploy_path"], "/srv/apps")
        self.assertEqual(result.data["total_steps"], 7)
        self.assertEqual(channel.stream_options[0].timeout, 4)

    def test_request_overrides_config(self) -> None:
        self.config.deployment.health_check = False
        channel = ScriptedChannel()
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(channel))

        result = workflow.run(DeploymentRequest(app_name="webapp", health_check=True, version="2.0"))

        self.assertEqual(result.data["total_steps"], 8)
        self.assertEqual(result.data["app_version"], "2.0")

    def test_validation_happens_before_connecting(self) -> None:
        channel = ScriptedChannel()
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(channel))
        with self.assertRaises(ValidationError):
            workflow.run(DeploymentRequest(app_name=""))
        self.assertEqual(self.channels, [])

    def test_channel_closed_after_failure(self) -> None:
        channel = ScriptedChannel(fail_steps={"start"})
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(channel))
        with self.assertRaises(CriticalStepFailure):
            workflow.run(DeploymentRequest(app_name="webapp"))
        self.assertTrue(channel.closed)

    def test_run_logs_disabled(self) -> None:
        self.config.logging.save_run_logs = False
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(ScriptedChannel()))
        workflow.run(DeploymentRequest(app_name="webapp"))
        self.assertIsNone(workflow.run_log)

    def test_blocking_channel_falls_back(self) -> None:
        workflow = DeploymentWorkflow(self.config, channel_factory=self._factory(BlockingChannel()))
        result = workflow.run(DeploymentRequest(app_name="webapp"))
        self.assertTrue(result.degraded)


if __name__ == "__main__":
    unittest.main()
