#!/usr/bin/env python3

"""
Build a tetrahedral head mesh from MR images.

This script drives the external FreeSurfer, FSL, meshfix and gmsh tools in a
fixed stage order and records everything they print in
m2m_<subjID>/mri2mesh_log.html.

Usage example:
    mri2mesh.py --all ernie T1.nii.gz T1fs.nii.gz
    mri2mesh.py --head --keep_masks ernie T1.nii.gz T1fs.nii.gz
    mri2mesh.py -c ernie
"""

import sys

from headmesh.cli import main

if __name__ == "__main__":
    sys.exit(main())
