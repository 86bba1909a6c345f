# providers/archive.py
from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from ..config import EffectiveJobConfig
from ..errors import FailJob
from ..ui.console import Console

SEVEN_ZIP_HINT = "Install 7-Zip (7z / 7za) or set seven_zip_path to its full path."

# 7-Zip exit codes: 0 ok, 1 warning (e.g. locked files), 2 fatal, 7 bad command line,
# 8 out of memory, 255 user stopped.
SEVEN_ZIP_SUCCESS = 0
SEVEN_ZIP_WARNING = 1

_ARCHIVE_TYPES = {
    ".7z": "7z",
    ".zip": "zip",
    ".tar": "tar",
    ".gz": "gzip",
    ".bz2": "bzip2",
    ".xz": "xz",
    ".wim": "wim",
}


@dataclass(frozen=True)
class ArchiveResult:
    exit_code: int
    attempts_made: int = 1
    output: str = ""


class ArchiveEngine(Protocol):
    def create_archive(
        self,
        sources: Sequence[str],
        archive_path: Path,
        config: EffectiveJobConfig,
        password: Optional[str] = None,
    ) -> ArchiveResult: ...

    def test_archive(
        self,
        archive_path: Path,
        config: EffectiveJobConfig,
        password: Optional[str] = None,
    ) -> ArchiveResult: ...


# ---------------------------------------------------------------------
# 7-Zip
# ---------------------------------------------------------------------

def archive_type_for(extension: str) -> str:
    return _ARCHIVE_TYPES.get(extension.lower(), "7z")


def build_create_command(
    sources: Sequence[str],
    archive_path: Path,
    config: EffectiveJobConfig,
    password: Optional[str] = None,
) -> List[str]:
    cmd = [
        config.seven_zip_path,
        "a",
        f"-t{archive_type_for(config.archive_extension)}",
        f"-mx={config.compression_level}",
        "-y",
        "-bb0",
    ]
    if password:
        cmd.append(f"-p{password}")
        if archive_type_for(config.archive_extension) == "7z":
            cmd.append("-mhe=on")  # encrypt headers (file names) too
    cmd.extend(config.additional_7zip_args)
    cmd.append(str(archive_path))
    cmd.extend(str(s) for s in sources)
    return cmd


def build_test_command(
    archive_path: Path,
    config: EffectiveJobConfig,
    password: Optional[str] = None,
) -> List[str]:
    cmd = [config.seven_zip_path, "t", str(archive_path), "-y"]
    if password:
        cmd.append(f"-p{password}")
    return cmd


def _redact(cmd: List[str]) -> str:
    return " ".join("-p********" if c.startswith("-p") else c for c in cmd)


class SevenZipArchiveEngine:
    """Runs 7-Zip as a child process; retries failed (exit code > 1) attempts if enabled."""

    def __init__(self, console: Console, sleep: Callable[[float], None] = time.sleep):
        self.console = console
        self.sleep = sleep

    def _run(self, cmd: List[str], job_name: str, stage: str) -> subprocess.CompletedProcess:
        self.console.debug_msg(f"[{job_name}] {_redact(cmd)}")
        try:
            return subprocess.run(
                cmd,
                shell=False,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError:
            raise FailJob(
                kind="tool_unavailable",
                job=job_name,
                stage=stage,
                message=f"7-Zip executable not found: {cmd[0]}",
                details={"hint": SEVEN_ZIP_HINT},
            )

    def create_archive(
        self,
        sources: Sequence[str],
        archive_path: Path,
        config: EffectiveJobConfig,
        password: Optional[str] = None,
    ) -> ArchiveResult:
        cmd = build_create_command(sources, archive_path, config, password)
        max_attempts = config.max_retry_attempts if config.enable_retries else 1

        attempt = 0
        proc = None
        while attempt < max_attempts:
            attempt += 1
            proc = self._run(cmd, config.name, "archive")
            if proc.returncode in (SEVEN_ZIP_SUCCESS, SEVEN_ZIP_WARNING):
                break
            # 7-Zip cannot add to its own partial output; start every attempt clean
            archive_path.unlink(missing_ok=True)
            if attempt < max_attempts:
                self.console.warning(
                    f"[{config.name}] 7-Zip exited with code {proc.returncode} "
                    f"(attempt {attempt}/{max_attempts}), retrying in {config.retry_delay_seconds}s"
                )
                self.sleep(config.retry_delay_seconds)

        output = ((proc.stdout or "") + (proc.stderr or ""))[-4000:]
        return ArchiveResult(exit_code=proc.returncode, attempts_made=attempt, output=output)

    def test_archive(
        self,
        archive_path: Path,
        config: EffectiveJobConfig,
        password: Optional[str] = None,
    ) -> ArchiveResult:
        proc = self._run(build_test_command(archive_path, config, password), config.name, "test")
        output = ((proc.stdout or "") + (proc.stderr or ""))[-4000:]
        return ArchiveResult(exit_code=proc.returncode, attempts_made=1, output=output)
