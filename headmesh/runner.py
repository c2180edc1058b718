# headmesh/runner.py

"""
External-process execution: one command at a time, output teed to the
operator and the run ledger, exit status mapped onto a failure policy.
"""

from __future__ import annotations
import logging
import shlex
import subprocess
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from . import constants as const

L = logging.getLogger(__name__)

# Exit code reported when the executable is not on PATH (as a shell would)
CMD_NOT_FOUND = 127


@dataclass(frozen=True)
class Command:
    """
    One external program invocation.

    ``capture=False`` selects the exit-code-only variant. It is forced for
    commands that redirect stdin/stdout to files or run in another directory.
    """
    argv: Tuple[str, ...]
    policy: str = const.HARD
    capture: bool = True
    cwd: Optional[Path] = None
    stdin_path: Optional[Path] = None
    stdout_path: Optional[Path] = None
    outputs: Tuple[Path, ...] = ()

    def __post_init__(self):
        if not self.argv:
            raise ValueError("Command needs at least a program name")
        if self.policy not in (const.HARD, const.SOFT):
            raise ValueError(f"Unknown failure policy: {self.policy}")
        object.__setattr__(self, "argv", tuple(str(a) for a in self.argv))
        object.__setattr__(self, "outputs", tuple(Path(p) for p in self.outputs))
        if self.capture and (self.cwd or self.stdin_path or self.stdout_path):
            object.__setattr__(self, "capture", False)

    @property
    def program(self) -> str:
        return self.argv[0]

    def line(self) -> str:
        text = shlex.join(self.argv)
        if self.stdin_path: text += f" < {shlex.quote(str(self.stdin_path))}"
        if self.stdout_path: text += f" > {shlex.quote(str(self.stdout_path))}"
        if self.cwd: text = f"(cd {shlex.quote(str(self.cwd))} && {text})"
        return text


@dataclass
class CommandResult:
    argv: Tuple[str, ...]
    returncode: int
    policy: str = const.HARD
    output: str = ""
    skipped: bool = False
    exit_on_error: bool = field(default=True, repr=False)

    @property
    def failed(self) -> bool:
        return self.returncode != 0

    @property
    def fatal(self) -> bool:
        return self.failed and self.policy == const.HARD and self.exit_on_error


class CommandRunner:
    """
    Runs commands sequentially and reports each one to *sink*.

    *sink* is anything with a ``write(text)`` method, normally a TeeSink over
    the operator terminal and the run ledger.
    """

    def __init__(self, sink, exit_on_error: bool = True, use_cache: bool = False):
        self.sink = sink
        self.exit_on_error = exit_on_error
        self.use_cache = use_cache

    def run(self, command: Command) -> CommandResult:
        if self.use_cache and command.outputs and all(p.exists() for p in command.outputs):
            self.sink.write(f"[cached] {command.line()}\n")
            L.debug(f"Outputs present, not rerunning: {command.program}")
            return self._result(command, 0, skipped=True)

        self.sink.write(f"$ {command.line()}\n")
        L.debug(f"Running: {command.line()}")
        try:
            if command.capture:
                returncode, output = self._run_captured(command)
            else:
                returncode, output = self._run_exit_code_only(command), ""
        except FileNotFoundError as exc:
            # Either the executable or a redirection target is missing
            missing = exc.filename or command.program
            L.error(f"Cmd not found: '{missing}'.")
            self.sink.write(f"ERROR: not found: {missing}\n")
            return self._result(command, CMD_NOT_FOUND)

        result = self._result(command, returncode, output=output)
        if result.failed:
            if result.policy == const.SOFT:
                L.warning(f"Cmd failed (Code {returncode}), continuing: {command.program}")
                self.sink.write(f"WARNING: {command.program} exited with code {returncode} (ignored)\n")
            else:
                L.error(f"Cmd failed (Code {returncode}): {command.line()}")
                self.sink.write(f"ERROR: {command.program} exited with code {returncode}\n")
        return result

    def _result(self, command: Command, returncode: int, output: str = "", skipped: bool = False) -> CommandResult:
        return CommandResult(
            argv=command.argv,
            returncode=returncode,
            policy=command.policy,
            output=output,
            skipped=skipped,
            exit_on_error=self.exit_on_error,
        )

    def _run_captured(self, command: Command) -> Tuple[int, str]:
        lines = []
        with subprocess.Popen(
            command.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        ) as proc:
            for line in proc.stdout:
                lines.append(line)
                self.sink.write(line)
            returncode = proc.wait()
        if lines and not lines[-1].endswith("\n"):
            self.sink.write("\n")
        return returncode, "".join(lines)

    def _run_exit_code_only(self, command: Command) -> int:
        with ExitStack() as stack:
            stdin = stack.enter_context(open(command.stdin_path, "r")) if command.stdin_path else None
            stdout = stack.enter_context(open(command.stdout_path, "w")) if command.stdout_path else None
            returncode = subprocess.run(
                command.argv,
                stdin=stdin,
                stdout=stdout,
                cwd=command.cwd,
                check=False,
            ).returncode
        self.sink.write(f"exit code: {returncode}\n")
        return returncode
