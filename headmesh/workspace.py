# headmesh/workspace.py

"""
Per-subject directory layout shared by all stages.

    <base>/m2m_<subject>/            final surfaces, volume mesh, ledger
    <base>/m2m_<subject>/tmp/        scratch, emptied by the cleanup step
    <base>/m2m_<subject>/mask_prep/  tissue masks (kept with --keep_masks)
    <base>/m2m_<subject>/eeg_positions/
    <base>/fs_<subject>/             FreeSurfer subject directory
"""

from __future__ import annotations
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union

from . import constants as const

L = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    base_dir: Path
    subject: str

    @classmethod
    def for_subject(cls, subject: str, base_dir: Union[str, Path, None] = None) -> "Workspace":
        return cls(Path(base_dir or Path.cwd()).resolve(), subject)

    # --- Layout ---
    @property
    def m2m_dir(self) -> Path:
        return self.base_dir / f"{const.M2M_PREFIX}{self.subject}"

    @property
    def fs_dir(self) -> Path:
        return self.base_dir / f"{const.FS_PREFIX}{self.subject}"

    @property
    def tmp_dir(self) -> Path:
        return self.m2m_dir / "tmp"

    @property
    def mask_dir(self) -> Path:
        return self.m2m_dir / "mask_prep"

    @property
    def eeg_dir(self) -> Path:
        return self.m2m_dir / "eeg_positions"

    @property
    def ledger_path(self) -> Path:
        return self.m2m_dir / const.LEDGER_NAME

    @property
    def mesh_path(self) -> Path:
        return self.m2m_dir / f"{self.subject}.msh"

    def surface(self, name: str) -> Path:
        return self.m2m_dir / f"{name}.stl"

    def mask(self, filename: str) -> Path:
        return self.mask_dir / filename

    def fs_file(self, *parts: str) -> Path:
        return self.fs_dir.joinpath(*parts)

    @property
    def exists(self) -> bool:
        return self.m2m_dir.is_dir()

    def create(self) -> "Workspace":
        for sub in const.WORKSPACE_SUBDIRS:
            (self.m2m_dir / sub).mkdir(parents=True, exist_ok=True)
        L.debug(f"Workspace ready: {self.m2m_dir}")
        return self

    # --- Artifact presence ---
    @staticmethod
    def missing(paths: Iterable[Path]) -> List[Path]:
        return [p for p in paths if not p.exists()]

    def artifacts_present(self, paths: Iterable[Path]) -> bool:
        paths = list(paths)
        return bool(paths) and not self.missing(paths)

    # --- Scratch ---
    def clean_scratch(self) -> List[Path]:
        """Remove everything below tmp/. Returns the removed top-level entries."""
        if not self.tmp_dir.is_dir():
            return []
        removed = []
        for entry in sorted(self.tmp_dir.iterdir()):
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed.append(entry)
        return removed
