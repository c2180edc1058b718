#!/usr/bin/env python
# headmesh/cli.py
#
# Command line entry point: mri2mesh [options] subjID [T1 T1fs [T2 T2fs]]

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

from . import constants as const
from .config_utils import RunRequest, UsageError
from .log_utils import get_logger
from .pipeline import EXIT_FAILURE, run_pipeline

_DESCRIPTION = """\
Create a tetrahedral head mesh from MR images by running FreeSurfer, FSL,
meshfix and gmsh stages in a fixed order:

    brain -> subcort -> head -> volumemesh -> mni -> check

Images are given after the subject ID: none (reuse existing results), T1,
T1 T1fs, or T1 T1fs T2 T2fs. All results go to m2m_<subjID>/ and
fs_<subjID>/ in the current directory; the full run ledger is written to
m2m_<subjID>/mri2mesh_log.html.
"""


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid positive integer: '{value}'")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


# --------------------------------------------------------------------------- #
# CLI Argument Parser Setup
# --------------------------------------------------------------------------- #
def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mri2mesh", description=_DESCRIPTION, formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("subject", metavar="subjID", help="Subject ID.")
    parser.add_argument("images", nargs="*", metavar="IMAGE", help="Input images: T1 [T1fs [T2 T2fs]].")

    stages = parser.add_argument_group("Stages")
    stages.add_argument("--all", action="store_true", help="Run brain, subcort, head, volumemesh and mni.")
    stages.add_argument("--brain", action="store_true", help="Cortical reconstruction (FreeSurfer); reuses finished results.")
    stages.add_argument("--brainf", action="store_true", help="Same as --brain, but always recomputes.")
    stages.add_argument("--subcort", action="store_true", help="Subcortical segmentation (FSL FIRST).")
    stages.add_argument("--head", action="store_true", help="Head tissue masks and surfaces (FSL bet).")
    stages.add_argument("--volumemesh", action="store_true", help="Create the volume mesh (gmsh).")
    stages.add_argument("--mni", action="store_true", help="Nonlinear registration to MNI space.")
    stages.add_argument("-c", "--check", action="store_true", help="Show results for visual control.")
    stages.add_argument("--qc", action="store_true", help="Write QC screenshots instead of opening the viewer.")

    options = parser.add_argument_group("Options")
    options.add_argument("--cache", action="store_true", help="Do not rerun commands whose outputs already exist.")
    options.add_argument("--keep_masks", action="store_true",
                         help="Keep existing masks (e.g. after manual edits) and only rebuild what derives from them.")
    options.add_argument("--t2pial", action="store_true", help="Use the T2 image to refine the pial surface.")
    options.add_argument("--t2mask", action="store_true", help="Use the T2 image for the skull and skin masks.")
    options.add_argument("--mnimaskskull", action="store_true", help="Use the skull mask during MNI registration.")
    options.add_argument("--nocleanup", action="store_true", help="Keep the tmp/ folder.")
    options.add_argument("--numvertices", type=positive_int, default=const.DEFAULT_NUM_VERTICES,
                         help=f"Vertices per surface (default: {const.DEFAULT_NUM_VERTICES}).")
    options.add_argument("-v", "--verbose", action="store_true", help="Enable detailed logging.")
    options.add_argument("--version", action="version", version=f"%(prog)s {const.__version__}")
    return parser


# --------------------------------------------------------------------------- #
# Main Execution Logic
# --------------------------------------------------------------------------- #
def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    L = get_logger("headmesh", level=log_level)

    try:
        request = RunRequest.from_args(args)
        return run_pipeline(request)
    except UsageError as e:
        L.error(f"Usage error: {e} Exiting.")
        return EXIT_FAILURE
    except FileNotFoundError as e:
        L.error(f"{e}. Exiting.")
        return EXIT_FAILURE
    except Exception as e:
        L.error(f"An unexpected error occurred: {str(e)}", exc_info=args.verbose)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
