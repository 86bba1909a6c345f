# checks.py
from __future__ import annotations

import glob
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List

from .config import EffectiveJobConfig
from .errors import FailJob, SkipJob
from .model import JobStatus, RunState
from .ui.console import Console


def source_exists(path: str) -> bool:
    """True if the path exists; wildcard paths exist if they match anything."""
    expanded = os.path.expanduser(path)
    if any(c in expanded for c in "*?["):
        return bool(glob.glob(expanded))
    return Path(expanded).exists()


# ----------------------------------------------------------------------
# Pre-execution check
# ----------------------------------------------------------------------

class CheckOutcome(str, Enum):
    PROCEED = "proceed"
    SKIP = "skip"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckResult:
    outcome: CheckOutcome
    reason: str = ""

    @property
    def proceed(self) -> bool:
        return self.outcome is CheckOutcome.PROCEED


class PreExecutionChecker:
    """
    Decides whether a job may start, given what has already happened in this run.

    Checks short-circuit in order: enabled, source paths configured,
    run_only_if_path_exists, then every prerequisite's recorded state.
    Prerequisites count as done only when they finished with success or warnings.
    """

    def __init__(self, console: Console):
        self.console = console

    def check(self, config: EffectiveJobConfig, run_state: RunState) -> CheckResult:
        name = config.name

        if not config.enabled:
            self.console.info(f"[{name}] job is disabled, skipping")
            return CheckResult(CheckOutcome.SKIP, "job is disabled")

        if not config.source_paths:
            self.console.error(f"[{name}] no source_paths configured")
            return CheckResult(CheckOutcome.FAIL, "no source paths configured")

        if config.run_only_if_path_exists:
            primary = config.source_paths[0]
            if not source_exists(primary):
                self.console.warning(
                    f"[{name}] run_only_if_path_exists is set and '{primary}' was not found, skipping"
                )
                return CheckResult(CheckOutcome.SKIP, f"source path not found: {primary}")

        for dep in config.depends_on:
            state = run_state.get(dep)
            if state is None:
                self.console.error(
                    f"[{name}] prerequisite '{dep}' was not processed in this run, skipping"
                )
                return CheckResult(CheckOutcome.SKIP, f"prerequisite '{dep}' not processed")
            if state.status in (JobStatus.FAILED, JobStatus.SKIPPED):
                text = f"[{name}] prerequisite '{dep}' finished with status {state.status.value}, skipping"
                # a skipped prerequisite never produced output, same as not processed
                if state.status is JobStatus.SKIPPED:
                    self.console.error(text)
                else:
                    self.console.warning(text)
                return CheckResult(
                    CheckOutcome.SKIP,
                    f"prerequisite '{dep}' {state.status.value}",
                )

        return CheckResult(CheckOutcome.PROCEED)


# ----------------------------------------------------------------------
# Path validation (first pipeline stage)
# ----------------------------------------------------------------------

@dataclass
class PathCheckResult:
    sources: List[str]
    warnings: List[str] = field(default_factory=list)


def _is_within(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def validate_job_paths(
    config: EffectiveJobConfig,
    console: Console,
    simulate: bool = False,
) -> PathCheckResult:
    """
    Check sources and destination before anything is written.

    Raises:
      SkipJob: sources missing and on_source_path_not_found == "SkipJob"
      FailJob: sources missing (FailJob policy, or nothing left to archive),
               destination unusable, or destination nested inside a source
    """
    name = config.name
    missing = [s for s in config.source_paths if not source_exists(s)]
    sources = [s for s in config.source_paths if s not in missing]
    warnings: List[str] = []

    if missing:
        policy = config.on_source_path_not_found
        text = f"source path(s) not found: {missing}"
        if policy == "SkipJob":
            raise SkipJob(kind="source_missing", job=name, stage="paths", message=text)
        if policy == "FailJob":
            raise FailJob(kind="source_missing", job=name, stage="paths", message=text)
        if not sources:
            raise FailJob(
                kind="source_missing",
                job=name,
                stage="paths",
                message=f"none of the source paths exist: {missing}",
            )
        console.warning(f"[{name}] {text}; continuing with {len(sources)} remaining source(s)")
        warnings.append(text)

    if not config.destination_dir:
        raise FailJob(kind="destination", job=name, stage="paths", message="no destination_dir configured")

    dest = Path(config.destination_dir).expanduser().resolve()

    for s in sources:
        if any(c in s for c in "*?["):
            src_root = Path(os.path.expanduser(s)).parent.resolve()
        else:
            src_root = Path(os.path.expanduser(s)).resolve()
        if _is_within(dest, src_root):
            raise FailJob(
                kind="recursive_destination",
                job=name,
                stage="paths",
                message=f"destination '{dest}' is inside source '{src_root}'; the archive would include itself",
            )

    if not dest.exists():
        if simulate:
            console.simulate(f"[{name}] would create destination directory {dest}")
        else:
            try:
                dest.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FailJob(
                    kind="destination",
                    job=name,
                    stage="paths",
                    message=f"could not create destination '{dest}': {e}",
                )
            console.info(f"[{name}] created destination directory {dest}")

    if dest.exists():
        if not dest.is_dir():
            raise FailJob(kind="destination", job=name, stage="paths", message=f"destination '{dest}' is not a directory")
        if not os.access(dest, os.W_OK):
            raise FailJob(kind="destination", job=name, stage="paths", message=f"destination '{dest}' is not writable")

    return PathCheckResult(sources=sources, warnings=warnings)
