"""
Unit tests for executor.py
"""
import pytest

from headmesh import constants as const
from headmesh.executor import COMPLETED, FAILED, SKIPPED, StageExecutor
from headmesh.runner import Command
from headmesh.stages import Stage, get_stage


@pytest.fixture
def make_executor(workspace, sink, fake_runner_cls):
    def _make(request, fail=None):
        runner = fake_runner_cls(sink, fail=fail)
        return StageExecutor(request, workspace, runner, sink), runner
    return _make


def _toy_stage(workspace, **kwargs):
    marker = workspace.m2m_dir / "toy.txt"
    defaults = dict(
        name="toy",
        description="toy stage",
        artifacts=lambda r, ws: [marker],
        build=lambda r, ws: [Command(["make-toy"], outputs=(marker,)), Command(["polish-toy"])],
        verify=lambda r, ws: [Command(["inspect-toy"], policy=const.SOFT)],
    )
    defaults.update(kwargs)
    return Stage(**defaults), marker


def test_banner_and_commands(make_request, workspace, sink, make_executor):
    stage, marker = _toy_stage(workspace)
    executor, runner = make_executor(make_request())
    outcome = executor.execute(stage)
    assert outcome.status == COMPLETED
    assert runner.programs == ["make-toy", "polish-toy", "inspect-toy"]
    assert sink.text.index("toy: toy stage") < sink.text.index("$ make-toy")
    assert marker.exists()


def test_skip_predicate_skips_build_only(make_request, workspace, sink, make_executor):
    stage, marker = _toy_stage(workspace)
    marker.write_text("edited by hand")
    executor, runner = make_executor(make_request(keep_masks=True))
    outcome = executor.execute(stage)
    assert outcome.status == SKIPPED
    assert runner.programs == ["inspect-toy"]
    assert marker.read_text() == "edited by hand"


def test_setup_not_called_when_skipping(make_request, workspace, sink, make_executor):
    calls = []
    stage, marker = _toy_stage(workspace, setup=lambda r, ws: calls.append(ws))
    marker.write_text("x")
    executor, _ = make_executor(make_request(keep_masks=True))
    executor.execute(stage)
    assert calls == []
    executor, _ = make_executor(make_request())
    executor.execute(stage)
    assert len(calls) == 1


def test_hard_failure_stops_stage(make_request, workspace, sink, make_executor):
    stage, _ = _toy_stage(workspace)
    executor, runner = make_executor(make_request(), fail={"make-toy": 1})
    outcome = executor.execute(stage)
    assert outcome.status == FAILED
    assert outcome.fatal
    assert runner.programs == ["make-toy"]
    assert outcome.failed_command.argv == ("make-toy",)
    assert "make-toy exited with code 1" in outcome.message


def test_soft_failure_continues(make_request, workspace, sink, make_executor):
    stage, _ = _toy_stage(workspace)
    executor, runner = make_executor(make_request(), fail={"inspect-toy": 4})
    outcome = executor.execute(stage)
    assert outcome.status == COMPLETED
    assert outcome.results[-1].failed


def test_missing_inputs_fail_before_any_command(make_request, workspace, sink, make_executor):
    executor, runner = make_executor(make_request(volumemesh=True))
    outcome = executor.execute(get_stage("volumemesh"))
    assert outcome.status == FAILED
    assert runner.calls == []
    assert "missing inputs" in outcome.message
    assert not (workspace.tmp_dir / "P01.geo").exists()


def test_report_is_written(make_request, workspace, sink, make_executor):
    stage, _ = _toy_stage(workspace, report=lambda r, ws: "all good\n")
    executor, _ = make_executor(make_request())
    executor.execute(stage)
    assert sink.text.endswith("all good\n")


def test_outcome_as_dict(make_request, workspace, sink, make_executor):
    stage, _ = _toy_stage(workspace)
    executor, _ = make_executor(make_request())
    data = executor.execute(stage).as_dict()
    assert data["stage"] == "toy"
    assert [c["argv"][0] for c in data["commands"]] == ["make-toy", "polish-toy", "inspect-toy"]
