"""
Unit tests for config_utils.py
"""
import dataclasses
from pathlib import Path

import pytest

from headmesh.cli import _build_parser
from headmesh.config_utils import RunRequest, UsageError, assign_image_roles


@pytest.mark.parametrize("count, roles", [
    (0, ()),
    (1, ("T1",)),
    (2, ("T1", "T1fs")),
    (4, ("T1", "T1fs", "T2", "T2fs")),
])
def test_assign_image_roles_by_count(count, roles):
    paths = [f"img{i}.nii.gz" for i in range(count)]
    assigned = assign_image_roles(paths)
    assert tuple(r for r, _ in assigned) == roles
    assert all(isinstance(p, Path) for _, p in assigned)


@pytest.mark.parametrize("count", [3, 5])
def test_assign_image_roles_invalid_count(count):
    with pytest.raises(UsageError, match="input images"):
        assign_image_roles([f"img{i}.nii.gz" for i in range(count)])


def test_from_args_all_expands_without_check():
    args = _build_parser().parse_args(["--all", "P01", "t1.nii.gz", "t1fs.nii.gz"])
    request = RunRequest.from_args(args)
    assert request.brain and request.subcort and request.head and request.volumemesh and request.mni
    assert not request.check
    assert not request.brainf
    assert request.numvertices == 60000
    assert request.image("T1fs") == Path("t1fs.nii.gz")


def test_from_args_numvertices():
    args = _build_parser().parse_args(["--head", "--numvertices=120000", "P01"])
    assert RunRequest.from_args(args).numvertices == 120000


@pytest.mark.parametrize("value", ["0", "-5", "many"])
def test_parser_rejects_bad_numvertices(value):
    with pytest.raises(SystemExit):
        _build_parser().parse_args([f"--numvertices={value}", "P01"])


def test_request_rejects_non_positive_vertices():
    with pytest.raises(UsageError):
        RunRequest(subject="P01", numvertices=0)


def test_request_rejects_path_like_subject():
    with pytest.raises(UsageError):
        RunRequest(subject="../P01")


def test_request_is_immutable():
    request = RunRequest(subject="P01", brain=True)
    with pytest.raises(dataclasses.FrozenInstanceError):
        request.brain = False


def test_stage_selection():
    request = RunRequest(subject="P01", brainf=True, qc=True)
    assert request.stage_selected("brain")
    assert request.stage_selected("check")
    assert not request.stage_selected("head")
    assert request.any_stage
    assert not RunRequest(subject="P01", keep_masks=True, nocleanup=True).any_stage


def test_missing_image_role_raises():
    request = RunRequest(subject="P01", images=(("T1", Path("t1.nii.gz")),))
    assert request.has_image("T1")
    with pytest.raises(KeyError):
        request.image("T2")
