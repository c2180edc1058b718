# headmesh/planner.py

"""
Turns a RunRequest into the ordered list of stages to execute.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Tuple

from . import constants as const
from .config_utils import RunRequest, UsageError
from .io_utils import check_readable
from .stages import Stage, get_stage

L = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    stages: Tuple[Stage, ...]
    warnings: Tuple[str, ...] = ()
    cleanup: bool = True

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.stages)

    @property
    def empty(self) -> bool:
        return not self.stages


def plan_stages(request: RunRequest) -> Plan:
    """
    Select stages in the fixed dependency order, whatever the flag order was.
    An empty selection is not an error, only a warning.
    """
    stages = tuple(get_stage(name) for name in const.STAGE_ORDER if request.stage_selected(name))
    warnings = []
    if not stages:
        warnings.append("No processing stage selected; nothing to do. Use --all or pick stages, see --help.")
    if request.brain and request.brainf:
        L.debug("--brain and --brainf both given; --brainf wins")
    cleanup = not (request.check or request.qc or request.nocleanup)
    return Plan(stages=stages, warnings=tuple(warnings), cleanup=cleanup)


def validate_request(request: RunRequest, plan: Plan | None = None) -> None:
    """
    Fail fast before anything is written.

    Raises:
        UsageError: a selected stage needs an image that was not given.
        FileNotFoundError: a given image cannot be read.
    """
    plan = plan or plan_stages(request)
    for stage in plan.stages:
        missing = [role for role in stage.required_images(request) if not request.has_image(role)]
        if missing:
            raise UsageError(
                f"Stage '{stage.name}' needs the {', '.join(missing)} image(s); "
                f"got {len(request.images)} image(s) ({', '.join(request.image_roles) or 'none'})."
            )
    check_readable([path for _, path in request.images], logger=L)
