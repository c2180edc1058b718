"""
Unit tests for the run ledger and sinks in log_utils.py
"""
import io
import json
import os

import pytest

from headmesh.log_utils import (
    LEDGER_CLOSE_MARKER,
    LEDGER_OPEN_MARKER,
    LedgerSink,
    OperatorSink,
    RunLedger,
    TeeSink,
    is_well_formed,
    write_log,
)


def test_open_creates_parent_dirs_and_envelope(tmp_path):
    path = tmp_path / "m2m_P01" / "mri2mesh_log.html"
    ledger = RunLedger(path, "P01").open()
    ledger.append("recon-all -s fs_P01\n")
    ledger.close()
    text = path.read_text()
    assert text.index(LEDGER_OPEN_MARKER) < text.index("recon-all") < text.rindex(LEDGER_CLOSE_MARKER)
    assert "total duration" in text
    assert is_well_formed(path)


def test_unclosed_ledger_is_not_well_formed(tmp_path):
    path = tmp_path / "log.html"
    ledger = RunLedger(path).open()
    ledger.append("half way\n")
    assert not is_well_formed(path)
    ledger.close()
    assert is_well_formed(path)


def test_close_is_idempotent(tmp_path):
    path = tmp_path / "log.html"
    ledger = RunLedger(path).open()
    ledger.close("aborted")
    ledger.close("finished")
    assert path.read_text().count(LEDGER_CLOSE_MARKER) == 1
    assert ledger.status == "aborted"


def test_append_escapes_markup(tmp_path):
    path = tmp_path / "log.html"
    with RunLedger(path) as ledger:
        ledger.append("tool printed </html> and <b>bold</b>\n")
    text = path.read_text()
    assert "&lt;/html&gt;" in text
    assert text.count(LEDGER_CLOSE_MARKER) == 1
    assert is_well_formed(path)


def test_append_requires_open_ledger(tmp_path):
    ledger = RunLedger(tmp_path / "log.html")
    with pytest.raises(RuntimeError):
        ledger.append("too early")


def test_context_manager_closes_as_aborted_on_error(tmp_path):
    path = tmp_path / "log.html"
    with pytest.raises(ZeroDivisionError):
        with RunLedger(path) as ledger:
            ledger.append("working\n")
            1 / 0
    assert is_well_formed(path)
    assert "mri2mesh aborted" in path.read_text()


def test_previous_ledger_is_rotated(tmp_path):
    path = tmp_path / "mri2mesh_log.html"
    with RunLedger(path) as ledger:
        ledger.append("first run\n")
    with RunLedger(path) as ledger:
        ledger.append("second run\n")
    rotated = [p for p in tmp_path.glob("mri2mesh_log_*.html")]
    assert len(rotated) == 1
    assert "first run" in rotated[0].read_text()
    assert "second run" in path.read_text()
    assert "first run" not in path.read_text()


def test_rotation_never_overwrites_older_ledgers(tmp_path):
    path = tmp_path / "mri2mesh_log.html"
    for n in range(3):
        if path.exists():
            os.utime(path, (1_700_000_000, 1_700_000_000))
        with RunLedger(path) as ledger:
            ledger.append(f"run {n}\n")
    rotated = sorted(tmp_path.glob("mri2mesh_log_*.html"))
    assert len(rotated) == 2
    kept = " ".join(p.read_text() for p in rotated)
    assert "run 0" in kept and "run 1" in kept
    assert "run 2" in path.read_text()


def test_tee_sink_fans_out(tmp_path):
    stream = io.StringIO()
    path = tmp_path / "log.html"
    with RunLedger(path) as ledger:
        TeeSink([OperatorSink(stream), LedgerSink(ledger)]).write("banner\n")
    assert stream.getvalue() == "banner\n"
    assert "banner" in path.read_text()


def test_write_log_json(tmp_path):
    out = write_log({"tool": "mri2mesh", "stages": []}, tmp_path, base_name="mri2mesh_run")
    assert out is not None and out.exists()
    data = json.loads(out.read_text())
    assert data["tool"] == "mri2mesh"
    assert "system_info" in data and "timestamp" in data
