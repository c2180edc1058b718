# headmesh/pipeline.py

"""
Top-level driver: plan, open the workspace and ledger, execute each stage in
order, clean up scratch files and close the ledger on every exit path.

    Start -> Plan -> [ExecuteStage]* -> Cleanup? -> Finish
    any state -> AbortedFinish   (fatal stage outcome)
"""

from __future__ import annotations
import datetime
import logging
from pathlib import Path
from typing import IO, Callable, Optional, Union

from . import constants as const
from .config_utils import RunRequest
from .executor import StageExecutor
from .io_utils import find_missing_tools
from .log_utils import LedgerSink, OperatorSink, RunLedger, TeeSink, banner, write_log
from .planner import plan_stages, validate_request
from .qc_utils import describe_image
from .runner import CommandRunner
from .workspace import Workspace

L = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

RunnerFactory = Callable[[object], CommandRunner]


def run_cleanup(workspace: Workspace, sink) -> None:
    """Empty the scratch directory. An empty tmp/ is only worth a note."""
    sink.write(banner("cleanup"))
    removed = workspace.clean_scratch()
    if removed:
        L.info(f"Removed {len(removed)} entries from {workspace.tmp_dir}")
        sink.write(f"Removed {len(removed)} entries from {workspace.tmp_dir}\n")
    else:
        L.info(f"Nothing to clean up in {workspace.tmp_dir}")
        sink.write(f"Nothing to clean up in {workspace.tmp_dir}\n")


def _describe_request(request: RunRequest, plan_names) -> str:
    lines = [
        f"subject:      {request.subject}",
        f"stages:       {' '.join(plan_names) or '(none)'}",
        f"numvertices:  {request.numvertices}",
    ]
    options = [f for f in ("cache", "keep_masks", "t2pial", "t2mask", "mnimaskskull", "nocleanup", "qc")
               if getattr(request, f)]
    if options:
        lines.append(f"options:      {' '.join(options)}")
    for role, path in request.images:
        summary = describe_image(path)
        lines.append(f"{role + ':':<13} {path}" + (f"  [{summary}]" if summary else ""))
    return "\n".join(lines) + "\n"


def run_pipeline(
    request: RunRequest,
    base_dir: Union[str, Path, None] = None,
    runner_factory: Optional[RunnerFactory] = None,
    operator_stream: Optional[IO[str]] = None,
) -> int:
    """
    Run every planned stage for one subject and return the process exit code.

    Usage errors and unreadable inputs raise (UsageError, FileNotFoundError)
    before any directory is created. Command failures never raise; they end
    the run with EXIT_FAILURE after the ledger has been closed.
    """
    plan = plan_stages(request)
    validate_request(request, plan)

    workspace = Workspace.for_subject(request.subject, base_dir).create()
    ledger = RunLedger(workspace.ledger_path, request.subject).open()
    sink = TeeSink([OperatorSink(operator_stream), LedgerSink(ledger)])
    if runner_factory is None:
        runner = CommandRunner(sink, exit_on_error=True, use_cache=request.cache)
    else:
        runner = runner_factory(sink)
    executor = StageExecutor(request, workspace, runner, sink)

    runlog = {
        "tool": "mri2mesh",
        "version": const.__version__,
        "subject": request.subject,
        "workspace": str(workspace.m2m_dir),
        "ledger": str(workspace.ledger_path),
        "request": {k: v for k, v in vars(request).items() if k != "images"},
        "images": {role: str(path) for role, path in request.images},
        "planned_stages": list(plan.names),
        "stages": [],
        "warnings": [],
    }
    status = "finished"
    exit_code = EXIT_OK
    try:
        sink.write(_describe_request(request, plan.names))
        tools = [t for name in plan.names for t in const.STAGE_TOOLS.get(name, [])]
        missing_tools = find_missing_tools(tools, logger=L)
        if missing_tools:
            msg = f"Not found on PATH: {', '.join(missing_tools)}"
            L.warning(msg)
            sink.write(f"WARNING: {msg}\n")
            runlog["warnings"].append(msg)

        for warning in plan.warnings:
            L.warning(warning)
            sink.write(f"WARNING: {warning}\n")
            runlog["warnings"].append(warning)

        for stage in plan.stages:
            outcome = executor.execute(stage)
            runlog["stages"].append(outcome.as_dict())
            if outcome.fatal:
                L.error(f"Stage '{stage.name}' failed: {outcome.message}")
                sink.write(f"\nERROR in stage '{stage.name}': {outcome.message}\nexiting\n")
                status, exit_code = "aborted", EXIT_FAILURE
                break
        else:
            if plan.cleanup:
                run_cleanup(workspace, sink)
            elif plan.stages:
                L.info(f"Temporary folder retained => {workspace.tmp_dir}")
    except KeyboardInterrupt:
        L.info("\nRun interrupted by user")
        sink.write("\nInterrupted by user, exiting\n")
        runlog["warnings"].append("Run interrupted by user (KeyboardInterrupt).")
        status = "interrupted"
    except Exception as e:
        sink.write(f"\nUnexpected error: {e}\nexiting\n")
        runlog["warnings"].append(f"An unexpected error occurred: {e}")
        status, exit_code = "aborted", EXIT_FAILURE
        raise
    finally:
        ledger.close(status)
        runlog["status"] = status
        runlog["exit_code"] = exit_code
        runlog["duration_s"] = round(ledger.elapsed, 1)
        runlog["finished"] = datetime.datetime.now().isoformat(timespec="seconds")
        write_log(runlog, workspace.m2m_dir, base_name=const.RUN_RECORD_BASE)

    if status == "finished":
        L.info(f"mri2mesh finished for {request.subject}; ledger => {workspace.ledger_path}")
    return exit_code
