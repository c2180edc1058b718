# headmesh/io_utils.py

"""
I/O and shell-utility helpers used throughout the package.
"""

from __future__ import annotations
import os
import shutil
from pathlib import Path
from typing import Iterable, List, Union

import logging

from .constants import DEFAULT_FSLDIR, FSLDIR_ENV

L = logging.getLogger(__name__)


def check_readable(paths: Iterable[Union[str, Path]], logger=L) -> None:
    """
    Verify that every path is an existing, readable file.

    Raises:
        FileNotFoundError: naming all offending paths at once.
    """
    unreadable = []
    for path in paths:
        p = Path(path)
        if not p.is_file() or not os.access(p, os.R_OK):
            unreadable.append(str(p))
    if unreadable:
        for p in unreadable:
            logger.error(f"Input image not found or unreadable: {p}")
        raise FileNotFoundError(f"Unreadable input image(s): {', '.join(unreadable)}")


def find_missing_tools(cmds: Iterable[str], logger=L) -> List[str]:
    missing = []
    for c in dict.fromkeys(cmds):
        path = shutil.which(c)
        if path: logger.debug(f"Cmd '{c}' found: {path}")
        else: missing.append(c)
    return missing


def fsl_standard(name: str) -> Path:
    """Path of an image in FSL's standard-space data directory."""
    return Path(os.environ.get(FSLDIR_ENV, DEFAULT_FSLDIR)) / "data" / "standard" / name
