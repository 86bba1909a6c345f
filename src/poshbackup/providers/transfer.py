# providers/transfer.py
from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..model import TargetDefinition
from ..retention import PIN_SUFFIX, sidecar_files
from ..ui.console import Console


@dataclass(frozen=True)
class TransferResult:
    success: bool
    error_message: Optional[str] = None
    remote_path: Optional[str] = None


class TransferAgent(Protocol):
    def upload(self, local_path: Path, target: TargetDefinition, job_name: str) -> TransferResult: ...


class LocalDirectoryTransferAgent:
    """
    Copies an archive (plus any sidecar files next to it) into
    <target.settings["path"]>/<job_name>/.

    Useful for NAS shares and mounted drives.
    """

    type_name = "local"

    def __init__(self, console: Console):
        self.console = console

    def upload(self, local_path: Path, target: TargetDefinition, job_name: str) -> TransferResult:
        root = target.settings.get("path")
        if not root:
            return TransferResult(
                success=False,
                error_message=f"Target '{target.name}' has no 'path' setting",
            )

        dest_dir = Path(root).expanduser() / job_name
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            dest = dest_dir / local_path.name
            tmp = dest.with_name(dest.name + ".tmp")
            shutil.copy2(local_path, tmp)
            tmp.replace(dest)

            for sidecar in sidecar_files(local_path):
                if sidecar.suffix != PIN_SUFFIX:
                    shutil.copy2(sidecar, dest_dir / sidecar.name)
        except OSError as e:
            return TransferResult(success=False, error_message=f"Copy to '{dest_dir}' failed: {e}")

        self.console.debug_msg(f"[{job_name}] copied {local_path.name} -> {dest}")
        return TransferResult(success=True, remote_path=str(dest))
