"""
pytest configuration and common fixtures.
"""
import io
from pathlib import Path

import pytest

from headmesh.config_utils import RunRequest
from headmesh.runner import CommandRunner
from headmesh.workspace import Workspace


class ListSink:
    """Collects everything written to it."""

    def __init__(self):
        self.chunks = []

    def write(self, text):
        self.chunks.append(text)

    @property
    def text(self):
        return "".join(self.chunks)


class FakeRunner(CommandRunner):
    """
    CommandRunner that never starts a process. Successful commands create
    their declared outputs, as the real tools would.
    """

    def __init__(self, sink, fail=None, use_cache=False):
        super().__init__(sink, exit_on_error=True, use_cache=use_cache)
        self.fail = dict(fail or {})
        self.calls = []

    @property
    def programs(self):
        return [c.program for c in self.calls]

    def _simulate(self, command):
        self.calls.append(command)
        code = self.fail.get(command.program, 0)
        if code == 0:
            for path in command.outputs:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(f"{command.program}\n")
            if command.stdout_path:
                command.stdout_path.write_text("")
        return code

    def _run_captured(self, command):
        code = self._simulate(command)
        out = f"{command.program}: ok\n" if code == 0 else f"{command.program}: error\n"
        self.sink.write(out)
        return code, out

    def _run_exit_code_only(self, command):
        return self._simulate(command)


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def operator_stream():
    return io.StringIO()


@pytest.fixture
def images(tmp_path):
    """Four fake (unparseable) input images: T1, T1fs, T2, T2fs."""
    img_dir = tmp_path / "input"
    img_dir.mkdir()
    paths = []
    for name in ("T1", "T1fs", "T2", "T2fs"):
        p = img_dir / f"{name}.nii.gz"
        p.write_text("not really an image")
        paths.append(p)
    return paths


@pytest.fixture
def base_dir(tmp_path):
    d = tmp_path / "subjects"
    d.mkdir()
    return d


@pytest.fixture
def workspace(base_dir):
    return Workspace.for_subject("P01", base_dir).create()


@pytest.fixture
def make_request(images):
    """Build a RunRequest for subject P01 with the first *n_images* fake images."""
    def _make(n_images=2, **flags):
        roles = ("T1", "T1fs", "T2", "T2fs")[:n_images]
        return RunRequest(subject="P01", images=tuple(zip(roles, images[:n_images])), **flags)
    return _make


@pytest.fixture
def fake_runner_factory():
    """Factory for run_pipeline that keeps a handle on the created runner."""
    created = []

    def _factory(fail=None, use_cache=False):
        def build(sink):
            runner = FakeRunner(sink, fail=fail, use_cache=use_cache)
            created.append(runner)
            return runner
        return build

    _factory.created = created
    return _factory


@pytest.fixture
def fake_runner_cls():
    return FakeRunner
