import sys

import pytest

from stepdeploy.channel import (
    CancelToken,
    ChannelRejectionError,
    CommandCancelledError,
    CommandTimeoutError,
    ExecuteOptions,
    LocalChannel,
    StreamEventType,
)
from stepdeploy.pipeline import DeploymentModule, StepStatus

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="bash commands")


@pytest.fixture
def channel(tmp_path):
    local = LocalChannel(working_dir=str(tmp_path))
    with local:
        yield local


class TestLocalChannel:
    def test_rejects_when_not_connected(self, tmp_path) -> None:
        local = LocalChannel(working_dir=str(tmp_path))
        with pytest.raises(ChannelRejectionError):
            local.execute_stream("echo hi")
        with pytest.raises(ChannelRejectionError):
            local.execute("echo hi")

    def test_execute(self, channel) -> None:
        result = channel.execute("echo hi && pwd")
        assert result.ok
        assert result.stdout.splitlines()[0] == "hi"

    def test_execute_exit_status(self, channel) -> None:
        result = channel.execute("echo nope >&2; exit 4")
        assert result.exit_status == 4
        assert result.stderr == "nope"

    def test_execute_invalid_utf8(self, channel) -> None:
        result = channel.execute("printf 'bad \\xff byte'")
        assert result.ok
        assert result.stdout == "bad \ufffd byte"

    def test_stream_invalid_utf8_keeps_reading(self, channel) -> None:
        command = "printf 'ok\\n\\xff\\n'; head -c 300000 /dev/zero | tr '\\0' a; echo; echo after"
        events = list(channel.execute_stream(command, ExecuteOptions(timeout=10)))

        stdout = [e.data for e in events if e.type == StreamEventType.STDOUT]
        assert stdout[0] == "ok"
        assert stdout[1] == "\ufffd"
        assert stdout[-1] == "after"
        assert events[-1].type == StreamEventType.DONE
        assert events[-1].result.exit_status == 0

    def test_stream_output(self, channel) -> None:
        events = list(channel.execute_stream("echo one; echo two >&2; echo three"))

        stdout = [e.data for e in events if e.type == StreamEventType.STDOUT]
        stderr = [e.data for e in events if e.type == StreamEventType.STDERR]
        assert stdout == ["one", "three"]
        assert stderr == ["two"]
        assert events[-1].type == StreamEventType.DONE
        assert events[-1].result.ok
        assert events[-1].result.stdout == "one\nthree"

    def test_stream_failure_exit_status(self, channel) -> None:
        events = list(channel.execute_stream("exit 3"))
        assert events[-1].type == StreamEventType.DONE
        assert events[-1].result.exit_status == 3

    def test_stream_timeout(self, channel) -> None:
        events = list(channel.execute_stream("sleep 5", ExecuteOptions(timeout=1)))
        assert events[-1].type == StreamEventType.ERROR
        assert isinstance(events[-1].error, CommandTimeoutError)

    def test_stream_cancel(self, channel) -> None:
        cancel = CancelToken()
        cancel.cancel()
        events = list(channel.execute_stream("sleep 5", ExecuteOptions(cancel=cancel)))
        assert len(events) == 1
        assert isinstance(events[0].error, CommandCancelledError)

    def test_closing_stream_early_kills_process(self, channel) -> None:
        events = channel.execute_stream("echo started; sleep 30")
        first = next(events)
        assert first.data == "started"
        events.close()


class TestLocalDeployment:
    def test_deploys_into_directory(self, channel, tmp_path) -> None:
        apps = tmp_path / "apps"
        apps.mkdir()

        result = DeploymentModule().run(
            channel, {"app_name": "webapp", "version": "1.0", "deploy_path": str(apps)}
        )

        assert result.success is True
        assert all(step.status == StepStatus.COMPLETED for step in result.steps)
        assert (apps / "webapp" / "config.yml").is_file()

    def test_backup_of_previous_version(self, channel, tmp_path) -> None:
        apps = tmp_path / "apps"
        (apps / "webapp").mkdir(parents=True)
        (apps / "webapp" / "old.txt").write_text("v1")

        DeploymentModule().run(channel, {"app_name": "webapp", "deploy_path": str(apps)})

        backups = list(apps.glob("webapp.backup.*"))
        assert len(backups) == 1
        assert (backups[0] / "old.txt").read_text() == "v1"
