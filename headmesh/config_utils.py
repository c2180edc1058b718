# headmesh/config_utils.py

"""
Run configuration: the immutable request built once from the parsed CLI flags.
"""

from __future__ import annotations
import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from . import constants as const

L = logging.getLogger(__name__)


class UsageError(ValueError):
    """Raised for invalid invocations, before anything is written to disk."""


# --- Presets Definition ---
# Shorthand flags that expand to a set of stage flags.
STAGE_PRESETS: Dict[str, List[str]] = {
    "all": ["brain", "subcort", "head", "volumemesh", "mni"],
}


@dataclass(frozen=True)
class RunRequest:
    subject: str
    images: Tuple[Tuple[str, Path], ...] = ()
    brain: bool = False
    brainf: bool = False
    subcort: bool = False
    head: bool = False
    volumemesh: bool = False
    mni: bool = False
    check: bool = False
    qc: bool = False
    cache: bool = False
    keep_masks: bool = False
    t2pial: bool = False
    t2mask: bool = False
    mnimaskskull: bool = False
    nocleanup: bool = False
    numvertices: int = const.DEFAULT_NUM_VERTICES
    verbose: bool = field(default=False, compare=False)

    def __post_init__(self):
        if not self.subject:
            raise UsageError("A subject ID is required.")
        if "/" in self.subject or self.subject in (".", ".."):
            raise UsageError(f"Invalid subject ID: '{self.subject}'")
        if self.numvertices <= 0:
            raise UsageError(f"--numvertices must be a positive integer, got {self.numvertices}")

    # --- Images ---
    @property
    def image_roles(self) -> Tuple[str, ...]:
        return tuple(role for role, _ in self.images)

    def has_image(self, role: str) -> bool:
        return role in self.image_roles

    def image(self, role: str) -> Path:
        for r, path in self.images:
            if r == role:
                return path
        raise KeyError(f"No {role} image was given for subject {self.subject}")

    # --- Stage selection ---
    def stage_selected(self, stage_name: str) -> bool:
        return any(getattr(self, flag) for flag, name in const.STAGE_FLAGS.items() if name == stage_name)

    @property
    def any_stage(self) -> bool:
        return any(self.stage_selected(name) for name in const.STAGE_ORDER)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunRequest":
        """Build the request from parsed flags, expanding presets and image roles."""
        images = assign_image_roles(args.images)
        flags = {
            name: bool(getattr(args, name, False))
            for name in ("brain", "brainf", "subcort", "head", "volumemesh", "mni", "check",
                         "qc", "cache", "keep_masks", "t2pial", "t2mask", "mnimaskskull", "nocleanup")
        }
        for preset, preset_flags in STAGE_PRESETS.items():
            if getattr(args, preset, False):
                L.debug(f"--{preset} expands to: {', '.join(preset_flags)}")
                for flag in preset_flags:
                    flags[flag] = True
        return cls(
            subject=args.subject,
            images=images,
            numvertices=args.numvertices,
            verbose=bool(getattr(args, "verbose", False)),
            **flags,
        )


def assign_image_roles(paths: Optional[Sequence[str]]) -> Tuple[Tuple[str, Path], ...]:
    """
    Map positional image paths onto contrast roles by their count.

    Raises:
        UsageError: if the number of images is not 0, 1, 2 or 4.
    """
    paths = list(paths or [])
    roles = const.IMAGE_ROLES_BY_COUNT.get(len(paths))
    if roles is None:
        allowed = ", ".join(str(n) for n in sorted(const.IMAGE_ROLES_BY_COUNT))
        raise UsageError(f"Expected {allowed} input images after the subject ID, got {len(paths)}.")
    return tuple((role, Path(p)) for role, p in zip(roles, paths))
