# retention.py
from __future__ import annotations

import hashlib
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .config import EffectiveJobConfig
from .ui.console import Console

# ---------------------------------------------------------------------
# Archive sidecars
# ---------------------------------------------------------------------
# Next to every archive we may keep:
#   <archive>.<algo>          checksum ("<hex> *<filename>", sha256sum compatible)
#   <archive>.manifest.json   what was archived, for explainability
#   <archive>.pinned          marker: never delete via retention
# ---------------------------------------------------------------------

PIN_SUFFIX = ".pinned"
MANIFEST_SUFFIX = ".manifest.json"


def sidecar_files(archive: Path) -> List[Path]:
    prefix = archive.name + "."
    if not archive.parent.exists():
        return []
    return sorted(
        p for p in archive.parent.iterdir()
        if p.is_file() and p.name.startswith(prefix)
    )


def file_checksum(path: Path, algorithm: str = "sha256") -> str:
    h = hashlib.new(algorithm)
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def write_checksum_file(archive: Path, algorithm: str = "sha256") -> tuple[str, Path]:
    digest = file_checksum(archive, algorithm)
    out = archive.with_name(f"{archive.name}.{algorithm}")
    out.write_text(f"{digest} *{archive.name}\n", encoding="utf-8")
    return digest, out


def write_manifest(
    archive: Path,
    config: EffectiveJobConfig,
    sources: List[str],
    checksum: Optional[str] = None,
) -> Path:
    manifest: Dict = {
        "v": 1,
        "job": config.name,
        "archive": archive.name,
        "size_bytes": archive.stat().st_size,
        "sources": list(sources),
        "checksum_algorithm": config.checksum_algorithm if checksum else None,
        "checksum": checksum,
        "password_protected": config.password_in_use_for_7zip,
        "generated_at_unix": int(time.time()),
    }
    out = archive.with_name(archive.name + MANIFEST_SUFFIX)
    out.write_text(json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
    return out


def pin_archive(archive: Path, reason: str = "") -> Path:
    marker = archive.with_name(archive.name + PIN_SUFFIX)
    marker.write_text(reason or f"pinned at {datetime.now().isoformat()}\n", encoding="utf-8")
    return marker


def is_pinned(archive: Path) -> bool:
    return archive.with_name(archive.name + PIN_SUFFIX).exists()


# ---------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------

def archive_name(base_name: str, extension: str, date_format: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"{base_name}_{when.strftime(date_format)}{extension}"


def find_archives(destination: Path, base_name: str, extension: str, date_format: str) -> List[Path]:
    """
    Archives produced for `base_name`: <base>_<timestamp><ext> where the
    timestamp parses with `date_format`. Jobs sharing a prefix don't match.
    """
    if not destination.exists():
        return []
    prefix = f"{base_name}_"
    found: List[Path] = []
    for p in destination.iterdir():
        if not p.is_file() or not p.name.startswith(prefix) or not p.name.endswith(extension):
            continue
        stamp = p.name[len(prefix):len(p.name) - len(extension)]
        try:
            datetime.strptime(stamp, date_format)
        except ValueError:
            continue
        found.append(p)
    return found


def apply_retention(
    destination: Path,
    base_name: str,
    extension: str,
    keep: int,
    *,
    console: Console,
    job_name: str,
    date_format: str = "%Y%m%d-%H%M%S",
    simulate: bool = False,
    confirm: Optional[Callable[[str], bool]] = None,
    exclude: Iterable[Path] = (),
) -> List[Path]:
    """
    Keep only the newest `keep` unpinned archives (by mtime); delete the rest
    together with their sidecars.

    Archives in `exclude` are neither counted toward `keep` nor deleted.

    Returns the archives deleted (or that would be deleted when simulating).
    """
    skip = {p.resolve() for p in exclude}
    archives = [
        p for p in find_archives(destination, base_name, extension, date_format)
        if not is_pinned(p) and p.resolve() not in skip
    ]
    archives.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    doomed = archives[keep:]

    if not doomed:
        console.debug_msg(f"[{job_name}] retention: {len(archives)} archive(s), keep {keep}, nothing to delete")
        return []

    if simulate:
        for p in doomed:
            console.simulate(f"[{job_name}] retention would delete {p.name}")
        return doomed

    if confirm is not None and not confirm(
        f"Delete {len(doomed)} old archive(s) for job '{job_name}' in {destination}?"
    ):
        console.warning(f"[{job_name}] retention: deletion declined, keeping {len(doomed)} old archive(s)")
        return []

    deleted: List[Path] = []
    for p in doomed:
        for extra in sidecar_files(p):
            extra.unlink(missing_ok=True)
        p.unlink(missing_ok=True)
        deleted.append(p)
        console.info(f"[{job_name}] retention: deleted {p.name}")
    return deleted
