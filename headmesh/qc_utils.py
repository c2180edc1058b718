# headmesh/qc_utils.py

"""
Quick, read-only summaries of input images and generated surfaces for the
run ledger.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import nibabel as nib
import numpy as np
import trimesh
from nibabel.filebasedimages import ImageFileError

from . import constants as const

L = logging.getLogger(__name__)


def describe_image(path: Union[str, Path]) -> Optional[str]:
    """One-line header summary of a NIfTI/MGH image, or None if unreadable."""
    try:
        img = nib.load(str(path))
    except (ImageFileError, OSError, ValueError, EOFError) as e:
        L.warning(f"Could not read image header of {path}: {e}")
        return None
    shape = "x".join(str(n) for n in img.shape)
    zooms = "x".join(f"{z:.2f}" for z in img.header.get_zooms()[:3])
    return f"{Path(path).name}: {shape} voxels, {zooms} mm"


def summarize_surface(path: Union[str, Path]) -> Dict[str, object]:
    mesh = trimesh.load(str(path), force="mesh")
    return {
        "vertices": int(len(mesh.vertices)),
        "faces": int(len(mesh.faces)),
        "watertight": bool(mesh.is_watertight),
        "extents_mm": np.round(mesh.extents, 1).tolist() if len(mesh.vertices) else [0.0, 0.0, 0.0],
    }


def surface_report(workspace) -> str:
    lines = ["Surface summary:"]
    found = False
    for name in const.MESH_SURFACES:
        path = workspace.surface(name)
        if not path.exists():
            continue
        found = True
        try:
            s = summarize_surface(path)
        except Exception as e:
            L.warning(f"Could not load surface {path}: {e}")
            lines.append(f"  {name:<11} unreadable")
            continue
        flag = "" if s["watertight"] else "  NOT WATERTIGHT"
        lines.append(f"  {name:<11} {s['vertices']:>8} vertices {s['faces']:>8} faces{flag}")
    if not found:
        lines.append("  no surfaces found")
    return "\n".join(lines) + "\n"
