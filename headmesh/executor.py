# headmesh/executor.py

"""
Runs one planned stage: banner, precondition check, skip predicate, then the
stage's commands through the CommandRunner.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config_utils import RunRequest
from .log_utils import banner
from .runner import CommandResult, CommandRunner
from .stages import Stage
from .workspace import Workspace

L = logging.getLogger(__name__)

COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class StageOutcome:
    stage: str
    status: str
    results: List[CommandResult] = field(default_factory=list)
    message: str = ""

    @property
    def fatal(self) -> bool:
        return self.status == FAILED

    @property
    def failed_command(self) -> Optional[CommandResult]:
        return next((r for r in self.results if r.fatal), None)

    def as_dict(self) -> dict:
        return {
            "stage": self.stage,
            "status": self.status,
            "message": self.message,
            "commands": [
                {"argv": list(r.argv), "returncode": r.returncode, "skipped": r.skipped}
                for r in self.results
            ],
        }


class StageExecutor:
    def __init__(self, request: RunRequest, workspace: Workspace, runner: CommandRunner, sink):
        self.request = request
        self.workspace = workspace
        self.runner = runner
        self.sink = sink

    def execute(self, stage: Stage) -> StageOutcome:
        self.sink.write(banner(f"{stage.name}: {stage.description}"))
        L.info(f"Stage '{stage.name}' started")

        missing = stage.missing_inputs(self.request, self.workspace)
        if missing:
            message = f"missing inputs for stage '{stage.name}': " + ", ".join(str(p) for p in missing)
            L.error(message)
            self.sink.write(f"ERROR: {message}\n")
            return StageOutcome(stage.name, FAILED, message=message)

        outcome = StageOutcome(stage.name, COMPLETED)
        if stage.should_skip(self.request, self.workspace):
            outcome.status = SKIPPED
            outcome.message = "existing outputs kept"
            L.info(f"Stage '{stage.name}': outputs exist, skipping recomputation")
            self.sink.write(f"Outputs of '{stage.name}' already exist and are kept; skipping recomputation.\n")
        else:
            if stage.setup is not None:
                stage.setup(self.request, self.workspace)
            if not self._run_all(stage.build(self.request, self.workspace), outcome):
                return outcome

        for builder in (stage.finalize, stage.verify):
            if not self._run_all(builder(self.request, self.workspace), outcome):
                return outcome

        if stage.report is not None:
            self.sink.write(stage.report(self.request, self.workspace))
        L.info(f"Stage '{stage.name}' {outcome.status}")
        return outcome

    def _run_all(self, commands, outcome: StageOutcome) -> bool:
        """Run commands in order; False once a fatal failure ended the stage."""
        for command in commands:
            result = self.runner.run(command)
            outcome.results.append(result)
            if result.fatal:
                outcome.status = FAILED
                outcome.message = f"{command.program} exited with code {result.returncode}"
                return False
        return True
