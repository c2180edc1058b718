# headmesh/stages.py
#
# Catalogue of pipeline stages. A stage only *describes* its work: which
# images and earlier outputs it needs, which artifacts it caches, and the
# external commands that produce them. Execution lives in executor.py.

from __future__ import annotations
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import constants as const
from .config_utils import RunRequest
from .io_utils import fsl_standard
from .qc_utils import surface_report
from .runner import Command
from .workspace import Workspace

L = logging.getLogger(__name__)

Builder = Callable[[RunRequest, Workspace], List[Command]]
PathsFn = Callable[[RunRequest, Workspace], List[Path]]


def _no_images(request: RunRequest) -> Tuple[str, ...]:
    return ()


def _no_paths(request: RunRequest, ws: Workspace) -> List[Path]:
    return []


def _no_commands(request: RunRequest, ws: Workspace) -> List[Command]:
    return []


def _keep_masks(request: RunRequest) -> bool:
    return request.keep_masks


@dataclass(frozen=True)
class Stage:
    """
    A named unit of work.

    ``build`` commands create the stage's cached ``artifacts`` and are the only
    ones skipped when the caller asked to preserve existing outputs.
    ``finalize`` commands derive files from those artifacts and always run;
    ``verify`` commands are read-only checks and always run.
    """
    name: str
    description: str
    images: Callable[[RunRequest], Tuple[str, ...]] = _no_images
    inputs: PathsFn = _no_paths
    artifacts: PathsFn = _no_paths
    preserve: Callable[[RunRequest], bool] = _keep_masks
    build: Builder = _no_commands
    finalize: Builder = _no_commands
    verify: Builder = _no_commands
    setup: Optional[Callable[[RunRequest, Workspace], None]] = None
    report: Optional[Callable[[RunRequest, Workspace], str]] = None

    def required_images(self, request: RunRequest) -> Tuple[str, ...]:
        return self.images(request)

    def missing_inputs(self, request: RunRequest, ws: Workspace) -> List[Path]:
        return ws.missing(self.inputs(request, ws))

    def should_skip(self, request: RunRequest, ws: Workspace) -> bool:
        """Pure predicate over the workspace: outputs exist and may be kept."""
        return self.preserve(request) and ws.artifacts_present(self.artifacts(request, ws))


# --------------------------------------------------------------------------- #
# Shared command fragments
# --------------------------------------------------------------------------- #
def _conform(ws: Workspace, name: str) -> Path:
    return ws.m2m_dir / f"{name}_conform.nii.gz"


def _meshfix(inputs: List[Path], out: Path, numvertices: int) -> Command:
    return Command(
        ["meshfix", *inputs, "-a", "2.0", "-u", "5", "-q", "--vertices", str(numvertices), "-o", out],
        outputs=(out,),
    )


def mask_to_surface(ws: Workspace, mask: Path, name: str, numvertices: int) -> List[Command]:
    """Tessellate a binary mask and turn it into a repaired, resampled STL."""
    fsmesh = ws.tmp_dir / f"{name}.fsmesh"
    raw = ws.tmp_dir / f"{name}_raw.stl"
    return [
        Command(["mri_tessellate", mask, "1", fsmesh], outputs=(fsmesh,)),
        Command(["mris_convert", fsmesh, raw], outputs=(raw,)),
        _meshfix([raw], ws.surface(name), numvertices),
    ]


# --------------------------------------------------------------------------- #
# brain: FreeSurfer reconstruction and cortical surfaces
# --------------------------------------------------------------------------- #
_CORTICAL = (("pial", "gm"), ("white", "wm"))


def _brain_images(request: RunRequest) -> Tuple[str, ...]:
    return ("T1", "T1fs", "T2") if request.t2pial else ("T1", "T1fs")


def _brain_artifacts(request: RunRequest, ws: Workspace) -> List[Path]:
    surfs = [ws.fs_file("surf", f"{hemi}.{surf}") for surf, _ in _CORTICAL for hemi in ("lh", "rh")]
    return surfs + _brain_derived(ws)


def _brain_derived(ws: Workspace) -> List[Path]:
    return [_conform(ws, "T1"), _conform(ws, "T1fs"), ws.surface("gm"), ws.surface("wm")]


def _brain_preserve(request: RunRequest) -> bool:
    # --brain reuses a finished FreeSurfer run, --brainf always recomputes
    return not request.brainf


def _brain_setup(request: RunRequest, ws: Workspace) -> None:
    if not request.brainf:
        return
    if ws.fs_dir.exists():
        L.info(f"--brainf: removing previous FreeSurfer results in {ws.fs_dir}")
        shutil.rmtree(ws.fs_dir)
    # outputs derived from the removed reconstruction
    for p in _brain_derived(ws):
        if p.exists():
            L.debug(f"--brainf: removing {p}")
            p.unlink()


def _recon_outputs(ws: Workspace) -> List[Path]:
    surfs = [ws.fs_file("surf", f"{hemi}.{surf}") for surf, _ in _CORTICAL for hemi in ("lh", "rh")]
    return surfs + [ws.fs_file("mri", "T1.mgz"), ws.fs_file("mri", "aseg.mgz")]


def _brain_build(request: RunRequest, ws: Workspace) -> List[Command]:
    recon = ["recon-all", "-s", ws.fs_dir.name, "-sd", ws.base_dir]
    if not ws.fs_file("mri", "orig", "001.mgz").exists():
        recon += ["-i", request.image("T1")]
    recon.append("-all")
    if request.t2pial:
        recon += ["-T2", request.image("T2"), "-T2pial"]

    fs_t1 = ws.fs_file("mri", "T1.mgz")
    cmds = [
        Command(recon, outputs=tuple(_recon_outputs(ws))),
        Command(["mri_convert", fs_t1, _conform(ws, "T1")], outputs=(_conform(ws, "T1"),)),
        Command(["mri_convert", "-rl", fs_t1, request.image("T1fs"), _conform(ws, "T1fs")],
                outputs=(_conform(ws, "T1fs"),)),
    ]
    for surf, tissue in _CORTICAL:
        hemis = []
        for hemi in ("lh", "rh"):
            stl = ws.tmp_dir / f"{hemi}.{surf}.stl"
            cmds.append(Command(["mris_convert", ws.fs_file("surf", f"{hemi}.{surf}"), stl], outputs=(stl,)))
            hemis.append(stl)
        cmds.append(_meshfix(hemis, ws.surface(tissue), request.numvertices))
    return cmds


def _brain_verify(request: RunRequest, ws: Workspace) -> List[Command]:
    return [
        Command(["mris_euler_number", ws.fs_file("surf", f"{hemi}.white")], policy=const.SOFT)
        for hemi in ("lh", "rh")
    ]


BRAIN = Stage(
    name="brain",
    description="cortical surface reconstruction (FreeSurfer)",
    images=_brain_images,
    artifacts=_brain_artifacts,
    preserve=_brain_preserve,
    setup=_brain_setup,
    build=_brain_build,
    verify=_brain_verify,
)


# --------------------------------------------------------------------------- #
# subcort: ventricles, cerebellum and FIRST segmentation
# --------------------------------------------------------------------------- #
def _subcort_inputs(request: RunRequest, ws: Workspace) -> List[Path]:
    return [ws.fs_file("mri", "aseg.mgz"), _conform(ws, "T1")]


def _subcort_artifacts(request: RunRequest, ws: Workspace) -> List[Path]:
    masks = [ws.mask(f) for f in const.SUBCORT_MASKS.values()]
    return masks + [ws.mask("first_all_fast_firstseg.nii.gz")]


def _subcort_build(request: RunRequest, ws: Workspace) -> List[Command]:
    aseg = ws.fs_file("mri", "aseg.mgz")
    ventricles = ws.mask(const.SUBCORT_MASKS["ventricles"])
    cerebellum = ws.mask(const.SUBCORT_MASKS["cerebellum"])
    match = [str(label) for label in const.CEREBELLUM_LABELS]
    return [
        Command(["mri_binarize", "--i", aseg, "--ventricles", "--o", ventricles], outputs=(ventricles,)),
        Command(["mri_binarize", "--i", aseg, "--match", *match, "--o", cerebellum], outputs=(cerebellum,)),
        Command(["run_first_all", "-i", _conform(ws, "T1"), "-o", ws.mask("first")],
                outputs=(ws.mask("first_all_fast_firstseg.nii.gz"),)),
    ]


def _subcort_finalize(request: RunRequest, ws: Workspace) -> List[Command]:
    cmds = []
    for name, filename in const.SUBCORT_MASKS.items():
        cmds += mask_to_surface(ws, ws.mask(filename), name, request.numvertices)
    return cmds


SUBCORT = Stage(
    name="subcort",
    description="subcortical segmentation (FreeSurfer aseg, FSL FIRST)",
    inputs=_subcort_inputs,
    artifacts=_subcort_artifacts,
    build=_subcort_build,
    finalize=_subcort_finalize,
)


# --------------------------------------------------------------------------- #
# head: skin, skull and CSF masks (FSL bet) and their surfaces
# --------------------------------------------------------------------------- #
def _head_images(request: RunRequest) -> Tuple[str, ...]:
    return ("T1", "T1fs", "T2") if request.t2mask else ("T1", "T1fs")


def _head_inputs(request: RunRequest, ws: Workspace) -> List[Path]:
    return [_conform(ws, "T1fs"), ws.fs_file("mri", "T1.mgz")]


def _head_artifacts(request: RunRequest, ws: Workspace) -> List[Path]:
    return [ws.mask(f) for f in const.HEAD_MASKS.values()]


_BET_OUTPUTS = {"skin": "outskin_mask", "skull": "outskull_mask", "csf": "inskull_mask"}


def _head_build(request: RunRequest, ws: Workspace) -> List[Command]:
    bet_base = ws.tmp_dir / "bet"
    cmds = []
    bet = ["bet", _conform(ws, "T1fs"), bet_base]
    if request.t2mask:
        t2 = ws.tmp_dir / "T2_conform.nii.gz"
        cmds.append(Command(["mri_convert", "-rl", ws.fs_file("mri", "T1.mgz"), request.image("T2"), t2],
                            outputs=(t2,)))
        bet += ["-A2", t2]
    else:
        bet.append("-A")
    cmds.append(Command(bet, outputs=tuple(ws.tmp_dir / f"bet_{o}.nii.gz" for o in _BET_OUTPUTS.values())))
    for tissue, filename in const.HEAD_MASKS.items():
        bet_mask = ws.tmp_dir / f"bet_{_BET_OUTPUTS[tissue]}.nii.gz"
        cmds.append(Command(["fslmaths", bet_mask, "-bin", ws.mask(filename)], outputs=(ws.mask(filename),)))
    return cmds


def _head_finalize(request: RunRequest, ws: Workspace) -> List[Command]:
    cmds = []
    for tissue, filename in const.HEAD_MASKS.items():
        cmds += mask_to_surface(ws, ws.mask(filename), tissue, request.numvertices)
    return cmds


def _head_verify(request: RunRequest, ws: Workspace) -> List[Command]:
    return [Command(["fslstats", ws.mask(f), "-V"], policy=const.SOFT) for f in const.HEAD_MASKS.values()]


HEAD = Stage(
    name="head",
    description="head tissue segmentation (FSL bet) and surface creation",
    images=_head_images,
    inputs=_head_inputs,
    artifacts=_head_artifacts,
    build=_head_build,
    finalize=_head_finalize,
    verify=_head_verify,
)


# --------------------------------------------------------------------------- #
# volumemesh: tetrahedral mesh from the nested surfaces (gmsh)
# --------------------------------------------------------------------------- #
# gmsh physical tags of the tissues
TISSUE_TAGS: Dict[str, int] = {
    "wm": 1, "gm": 2, "csf": 3, "skull": 4, "skin": 5,
    "ventricles": 3, "cerebellum": 2,
}
_NESTED = ["wm", "gm", "csf", "skull", "skin"]


def _geo_path(ws: Workspace) -> Path:
    return ws.tmp_dir / f"{ws.subject}.geo"


def _volumemesh_inputs(request: RunRequest, ws: Workspace) -> List[Path]:
    return [ws.surface(name) for name in const.REQUIRED_MESH_SURFACES]


def _volumemesh_artifacts(request: RunRequest, ws: Workspace) -> List[Path]:
    return [ws.mesh_path]


def render_geo(ws: Workspace) -> str:
    """
    gmsh script merging the surfaces. Each nested tissue is the volume between
    its surface and the next inner one; optional inner structures (ventricles,
    cerebellum) become holes in the CSF compartment and volumes of their own.
    """
    present = [name for name in const.MESH_SURFACES if ws.surface(name).exists()]
    index = {name: i + 1 for i, name in enumerate(present)}
    lines = [f"// {ws.subject}: generated by mri2mesh", "Mesh.Algorithm3D = 4;", "Mesh.Optimize = 1;", ""]
    for name in present:
        lines.append(f'Merge "{ws.surface(name)}"; // {index[name]}: {name}')
    lines.append("")
    for name in present:
        lines.append(f"Surface Loop({index[name]}) = {{{index[name]}}};")
    lines.append("")

    extras = [n for n in present if n not in _NESTED]
    inner = None
    for name in [n for n in _NESTED if n in index]:
        holes = [index[inner]] if inner else []
        if name == "csf":
            holes += [index[n] for n in extras]
        loops = ", ".join(str(i) for i in [index[name]] + holes)
        lines.append(f"Volume({index[name]}) = {{{loops}}}; // {name}")
        inner = name
    for name in extras:
        lines.append(f"Volume({index[name]}) = {{{index[name]}}}; // {name}")
    lines.append("")
    for name in present:
        lines.append(f"Physical Volume({TISSUE_TAGS[name]}) += {{{index[name]}}};")
    return "\n".join(lines) + "\n"


def _volumemesh_setup(request: RunRequest, ws: Workspace) -> None:
    geo = _geo_path(ws)
    geo.parent.mkdir(parents=True, exist_ok=True)
    geo.write_text(render_geo(ws))
    L.info(f"gmsh script written => {geo}")


def _volumemesh_build(request: RunRequest, ws: Workspace) -> List[Command]:
    return [Command(["gmsh", "-3", "-bin", "-format", "msh2", "-o", ws.mesh_path, _geo_path(ws)],
                    outputs=(ws.mesh_path,))]


def _volumemesh_verify(request: RunRequest, ws: Workspace) -> List[Command]:
    return [Command(["gmsh", "-check", ws.mesh_path], policy=const.SOFT)]


VOLUMEMESH = Stage(
    name="volumemesh",
    description="volume meshing (gmsh)",
    inputs=_volumemesh_inputs,
    artifacts=_volumemesh_artifacts,
    setup=_volumemesh_setup,
    build=_volumemesh_build,
    verify=_volumemesh_verify,
)


# --------------------------------------------------------------------------- #
# mni: nonlinear registration to MNI space and EEG positions
# --------------------------------------------------------------------------- #
def _mni_coeff(ws: Workspace) -> Path:
    return ws.m2m_dir / "conform2MNI_nonl_coeff.nii.gz"


def _mni_inverse(ws: Workspace) -> Path:
    return ws.m2m_dir / "MNI2conform_nonl.nii.gz"


def _mni_inputs(request: RunRequest, ws: Workspace) -> List[Path]:
    inputs = [_conform(ws, "T1")]
    if request.mnimaskskull:
        inputs.append(ws.mask(const.HEAD_MASKS["skull"]))
    return inputs


def _mni_artifacts(request: RunRequest, ws: Workspace) -> List[Path]:
    return [_mni_coeff(ws), _mni_inverse(ws)]


def eeg_template() -> Optional[Path]:
    value = os.environ.get(const.EEG_TEMPLATE_ENV)
    return Path(value) if value else None


def _mni_build(request: RunRequest, ws: Workspace) -> List[Command]:
    t1 = _conform(ws, "T1")
    affine = ws.tmp_dir / "conform2MNI_affine.mat"
    fnirt = [
        "fnirt", f"--in={t1}", f"--ref={fsl_standard('MNI152_T1_2mm.nii.gz')}",
        f"--aff={affine}", "--config=T1_2_MNI152_2mm", f"--cout={_mni_coeff(ws)}",
        f"--refmask={fsl_standard('MNI152_T1_2mm_brain_mask_dil.nii.gz')}",
    ]
    if request.mnimaskskull:
        fnirt.append(f"--inmask={ws.mask(const.HEAD_MASKS['skull'])}")
    return [
        Command(["flirt", "-in", t1, "-ref", fsl_standard("MNI152_T1_1mm.nii.gz"),
                 "-omat", affine, "-dof", "12"], outputs=(affine,)),
        Command(fnirt, outputs=(_mni_coeff(ws),)),
        Command(["invwarp", f"--ref={t1}", f"--warp={_mni_coeff(ws)}", f"--out={_mni_inverse(ws)}"],
                outputs=(_mni_inverse(ws),)),
    ]


def _mni_finalize(request: RunRequest, ws: Workspace) -> List[Command]:
    template = eeg_template()
    if template is None:
        L.info(f"{const.EEG_TEMPLATE_ENV} not set, no EEG positions transformed.")
        return []
    if not template.is_file():
        L.warning(f"EEG position template not found: {template}")
        return []
    out = ws.eeg_dir / f"{template.stem}.csv"
    return [Command(
        ["std2imgcoord", "-img", _conform(ws, "T1"), "-std", fsl_standard("MNI152_T1_1mm.nii.gz"),
         "-warp", _mni_coeff(ws), "-"],
        stdin_path=template,
        stdout_path=out,
    )]


MNI = Stage(
    name="mni",
    description="registration to MNI space (FSL flirt/fnirt)",
    inputs=_mni_inputs,
    artifacts=_mni_artifacts,
    build=_mni_build,
    finalize=_mni_finalize,
)


# --------------------------------------------------------------------------- #
# check: visual QC
# --------------------------------------------------------------------------- #
_QC_VIEWS = ("sagittal", "coronal", "axial")


def _viewer_args(ws: Workspace) -> List[str]:
    args = []
    for volume in (_conform(ws, "T1fs"), _conform(ws, "T1")):
        if volume.exists():
            args += ["-v", str(volume)]
            break
    for filename in list(const.HEAD_MASKS.values()) + list(const.SUBCORT_MASKS.values()):
        if ws.mask(filename).exists():
            args += ["-v", f"{ws.mask(filename)}:colormap=heat:opacity=0.3"]
    for surf in ("lh.pial", "rh.pial", "lh.white", "rh.white"):
        if ws.fs_file("surf", surf).exists():
            args += ["-f", f"{ws.fs_file('surf', surf)}:edgecolor={'red' if 'pial' in surf else 'yellow'}"]
    return args


def _check_verify(request: RunRequest, ws: Workspace) -> List[Command]:
    args = _viewer_args(ws)
    if not args:
        L.warning("Nothing to display yet; run the other stages first.")
        return []
    if request.qc:
        return [
            Command(["freeview", *args, "-viewport", view, "-ss", ws.m2m_dir / f"qc_{view}.png", "-quit"],
                    policy=const.SOFT)
            for view in _QC_VIEWS
        ]
    # interactive; output is not captured
    return [Command(["freeview", *args], policy=const.SOFT, capture=False)]


def _check_report(request: RunRequest, ws: Workspace) -> str:
    return surface_report(ws) + f"\nRun ledger: {ws.ledger_path}\n"


CHECK = Stage(
    name="check",
    description="visual quality control",
    verify=_check_verify,
    report=_check_report,
)


STAGE_REGISTRY: Dict[str, Stage] = {s.name: s for s in (BRAIN, SUBCORT, HEAD, VOLUMEMESH, MNI, CHECK)}


def get_stage(name: str) -> Stage:
    if name not in STAGE_REGISTRY:
        raise ValueError(f"Stage '{name}' not found.")
    return STAGE_REGISTRY[name]
