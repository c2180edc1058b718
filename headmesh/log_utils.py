# headmesh/log_utils.py

"""
Logging helpers, the HTML run ledger with its output sinks, and the JSON
run-record writer.
"""

from __future__ import annotations
import datetime
import html
import json
import logging
import os
import platform
import subprocess
import sys
import time
from pathlib import Path
from typing import IO, Iterable, Optional

L = logging.getLogger(__name__)

# --------------------------------------------------------------------- #
# Real-time logger
# --------------------------------------------------------------------- #

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def get_logger(
    name: str = "headmesh",
    level: int = logging.INFO,
    log_path: str | None = None,
) -> logging.Logger:
    """
    Configure (or fetch) a module-level logger.

    If *log_path* is given, messages go to that file; otherwise to stderr.
    Re-using the same *name* returns the same configured instance.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        logger.setLevel(level)
        return logger                      # already initialised

    logger.setLevel(level)
    handler = logging.FileHandler(log_path) if log_path else logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    return logger


# --------------------------------------------------------------------- #
# HTML run ledger
# --------------------------------------------------------------------- #

LEDGER_OPEN_MARKER = "<html>"
LEDGER_CLOSE_MARKER = "</html>"

_LEDGER_HEADER = (
    "<!DOCTYPE html>\n"
    f"{LEDGER_OPEN_MARKER}\n"
    "<head><meta charset=\"utf-8\"><title>mri2mesh report: {subject}</title></head>\n"
    "<body>\n<pre>\n"
)
_LEDGER_FOOTER = f"</pre>\n</body>\n{LEDGER_CLOSE_MARKER}\n"


class RunLedger:
    """
    Append-only audit log of one run.

    The file is a well-formed HTML document only once ``close`` has run, so
    every exit path of the driver must reach it. Single writer only.
    """

    def __init__(self, path: str | os.PathLike, subject: str = ""):
        self.path = Path(path)
        self.subject = subject
        self._fh: Optional[IO[str]] = None
        self._t0: Optional[float] = None
        self.status: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    def open(self) -> "RunLedger":
        if self._fh is not None:
            raise RuntimeError(f"Ledger already open: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            stamp = datetime.datetime.fromtimestamp(self.path.stat().st_mtime).strftime("%Y%m%d_%H%M%S")
            rotated = self.path.with_name(f"{self.path.stem}_{stamp}{self.path.suffix}")
            n = 1
            while rotated.exists():
                rotated = self.path.with_name(f"{self.path.stem}_{stamp}_{n}{self.path.suffix}")
                n += 1
            self.path.replace(rotated)
            L.info(f"Previous ledger kept as {rotated.name}")
        self._fh = open(self.path, "w", encoding="utf-8")
        self._t0 = time.monotonic()
        self._fh.write(_LEDGER_HEADER.format(subject=html.escape(self.subject)))
        self.append(f"mri2mesh run started {datetime.datetime.now().isoformat(timespec='seconds')}\n")
        L.debug(f"Ledger opened: {self.path}")
        return self

    def append(self, text: str) -> None:
        if self._fh is None:
            raise RuntimeError(f"Ledger is not open: {self.path}")
        self._fh.write(html.escape(text, quote=False))
        self._fh.flush()

    @property
    def elapsed(self) -> float:
        return 0.0 if self._t0 is None else time.monotonic() - self._t0

    def close(self, status: str = "finished") -> None:
        if self._fh is None:
            return
        minutes, seconds = divmod(int(round(self.elapsed)), 60)
        hours, minutes = divmod(minutes, 60)
        self.append(
            f"\nmri2mesh {status} {datetime.datetime.now().isoformat(timespec='seconds')}"
            f" (total duration {hours:d}:{minutes:02d}:{seconds:02d})\n"
        )
        self._fh.write(_LEDGER_FOOTER)
        self._fh.close()
        self._fh = None
        self.status = status
        L.debug(f"Ledger closed ({status}): {self.path}")

    def __enter__(self) -> "RunLedger":
        return self if self.is_open else self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close("finished" if exc_type is None else "aborted")
        return False


def is_well_formed(path: str | os.PathLike) -> bool:
    """True if the ledger holds an opening marker followed by a closing marker."""
    text = Path(path).read_text(encoding="utf-8")
    start = text.find(LEDGER_OPEN_MARKER)
    end = text.rfind(LEDGER_CLOSE_MARKER)
    return start != -1 and end > start


# --------------------------------------------------------------------- #
# Output sinks
# --------------------------------------------------------------------- #

class OperatorSink:
    """Writes text to the operator's terminal."""

    def __init__(self, stream: Optional[IO[str]] = None):
        self.stream = stream

    def write(self, text: str) -> None:
        stream = self.stream or sys.stdout
        stream.write(text)
        stream.flush()


class LedgerSink:
    def __init__(self, ledger: RunLedger):
        self.ledger = ledger

    def write(self, text: str) -> None:
        self.ledger.append(text)


class TeeSink:
    """Fans every write out to several sinks."""

    def __init__(self, sinks: Iterable):
        self.sinks = list(sinks)

    def write(self, text: str) -> None:
        for sink in self.sinks:
            sink.write(text)


def banner(title: str) -> str:
    rule = "=" * 72
    return f"\n{rule}\n{title}\n{rule}\n"


# --------------------------------------------------------------------- #
# JSON run record (kept separate from the real-time logger)
# --------------------------------------------------------------------- #

def write_log(log_dict: dict, output_dir: str | os.PathLike, base_name="run_log") -> Optional[Path]:
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dict["timestamp"] = timestamp
    log_dict["system_info"] = _get_system_info()
    log_dict["git_commit"] = _get_git_commit_hash()

    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    log_path = output_dir / f"{base_name}_{timestamp}.json"
    try:
        with open(log_path, "w") as f:
            json.dump(log_dict, f, indent=2, default=str)
        L.info(f"JSON log written => {log_path}")
        return log_path
    except OSError as e:
        L.error(f"Failed to write JSON log to {log_path}: {e}")
        return None


def _get_system_info() -> dict:
    return {
        "platform": platform.system(),
        "platform_release": platform.release(),
        "python_version": platform.python_version(),
        "machine": platform.machine(),
        "processor": platform.processor(),
    }


def _get_git_commit_hash() -> str | None:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=False, # Don't raise error if not a git repo or no HEAD
            cwd=Path(__file__).parent
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except FileNotFoundError:
        L.debug("Git command not found, cannot get commit hash.")
        return None

    L.debug("Could not determine git commit hash.")
    return None
