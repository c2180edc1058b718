"""
Constant values shared across the headmesh codebase.
"""
from typing import Dict, List, Tuple

__version__ = "0.3.0"

# --- Stage names, in the only order they are ever executed ---
STAGE_ORDER: Tuple[str, ...] = ("brain", "subcort", "head", "volumemesh", "mni", "check")

# Flags that select a stage (flag -> stage name)
STAGE_FLAGS: Dict[str, str] = {
    "brain": "brain",
    "brainf": "brain",
    "subcort": "subcort",
    "head": "head",
    "volumemesh": "volumemesh",
    "mni": "mni",
    "check": "check",
    "qc": "check",
}

# --- Input images ---
# The number of positional images decides which contrasts are present.
IMAGE_ROLES_BY_COUNT: Dict[int, Tuple[str, ...]] = {
    0: (),
    1: ("T1",),
    2: ("T1", "T1fs"),
    4: ("T1", "T1fs", "T2", "T2fs"),
}

DEFAULT_NUM_VERTICES = 60000

# --- Command failure policies ---
HARD = "hard"
SOFT = "soft"

# --- Workspace layout ---
M2M_PREFIX = "m2m_"
FS_PREFIX = "fs_"
WORKSPACE_SUBDIRS: List[str] = ["tmp", "mask_prep", "eeg_positions"]
LEDGER_NAME = "mri2mesh_log.html"
RUN_RECORD_BASE = "mri2mesh_run"

# Tissue masks written to mask_prep/ and the surfaces built from them
HEAD_MASKS: Dict[str, str] = {
    "skin": "MASK_SKIN.nii.gz",
    "skull": "MASK_SKULL.nii.gz",
    "csf": "MASK_CSF.nii.gz",
}
SUBCORT_MASKS: Dict[str, str] = {
    "ventricles": "MASK_VENTRICLES.nii.gz",
    "cerebellum": "MASK_CEREBELLUM.nii.gz",
}
# aseg labels of cerebellar cortex and white matter
CEREBELLUM_LABELS: List[int] = [7, 8, 46, 47]

# Surfaces merged into the volume mesh, innermost first
MESH_SURFACES: List[str] = ["wm", "gm", "cerebellum", "ventricles", "csf", "skull", "skin"]
# Surfaces the volume mesh cannot be built without
REQUIRED_MESH_SURFACES: List[str] = ["wm", "gm", "csf", "skull", "skin"]

# --- Environment ---
FSLDIR_ENV = "FSLDIR"
DEFAULT_FSLDIR = "/usr/local/fsl"
EEG_TEMPLATE_ENV = "MRI2MESH_EEG_TEMPLATE"

# Tools every stage may call, checked at run start (stage -> executables)
STAGE_TOOLS: Dict[str, List[str]] = {
    "brain": ["recon-all", "mri_convert", "mris_convert", "meshfix"],
    "subcort": ["mri_binarize", "run_first_all", "mri_tessellate", "mris_convert", "meshfix"],
    "head": ["bet", "fslmaths", "mri_tessellate", "mris_convert", "meshfix"],
    "volumemesh": ["gmsh"],
    "mni": ["flirt", "fnirt", "invwarp", "std2imgcoord"],
    "check": ["freeview"],
}
