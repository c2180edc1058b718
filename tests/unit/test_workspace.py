"""
Unit tests for workspace.py
"""
from headmesh.workspace import Workspace


def test_layout(base_dir):
    ws = Workspace.for_subject("P01", base_dir)
    assert ws.m2m_dir == base_dir.resolve() / "m2m_P01"
    assert ws.fs_dir == base_dir.resolve() / "fs_P01"
    assert ws.tmp_dir == ws.m2m_dir / "tmp"
    assert ws.ledger_path.name == "mri2mesh_log.html"
    assert ws.mesh_path.name == "P01.msh"
    assert ws.surface("skin").name == "skin.stl"
    assert not ws.exists


def test_create_makes_fixed_subdirs(base_dir):
    ws = Workspace.for_subject("P01", base_dir).create()
    for sub in ("tmp", "mask_prep", "eeg_positions"):
        assert (ws.m2m_dir / sub).is_dir()
    assert ws.exists
    # fs_<subject> is created by FreeSurfer, not by us
    assert not ws.fs_dir.exists()
    ws.create()


def test_artifacts_present(workspace):
    a = workspace.mask("MASK_SKIN.nii.gz")
    b = workspace.mask("MASK_SKULL.nii.gz")
    assert not workspace.artifacts_present([])
    a.touch()
    assert not workspace.artifacts_present([a, b])
    assert workspace.missing([a, b]) == [b]
    b.touch()
    assert workspace.artifacts_present([a, b])


def test_clean_scratch(workspace):
    (workspace.tmp_dir / "bet_outskin_mask.nii.gz").write_text("x")
    nested = workspace.tmp_dir / "first" / "deeper"
    nested.mkdir(parents=True)
    (nested / "file.txt").write_text("y")
    keep = workspace.mask("MASK_SKIN.nii.gz")
    keep.write_text("z")

    removed = workspace.clean_scratch()
    assert len(removed) == 2
    assert list(workspace.tmp_dir.iterdir()) == []
    assert workspace.tmp_dir.is_dir()
    assert keep.exists()


def test_clean_empty_scratch(workspace):
    assert workspace.clean_scratch() == []
