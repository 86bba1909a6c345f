# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

# job name -> ordered prerequisite job names
DependencyMap = Dict[str, List[str]]


@dataclass
class JobDefinition:
    """
    A backup job as defined in configuration.

    `depends_on` lists jobs that must complete successfully BEFORE this job.
    `settings` is passed through to config resolution untouched by the graph logic.
    """
    name: str
    enabled: bool = True
    depends_on: List[str] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BackupSet:
    """A named, ordered group of jobs selectable as a unit."""
    name: str
    job_names: List[str] = field(default_factory=list)
    on_error_in_job: str = "StopSet"  # StopSet | ContinueSet


@dataclass
class TargetDefinition:
    """A named remote destination handed to a transfer agent of matching `type`."""
    name: str
    type: str
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BackupConfig:
    jobs: Dict[str, JobDefinition] = field(default_factory=dict)
    sets: Dict[str, BackupSet] = field(default_factory=dict)
    targets: Dict[str, TargetDefinition] = field(default_factory=dict)
    global_settings: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None  # path the config was loaded from


# ----------------------------------------------------------------------
# Validation / planning results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationMessage:
    kind: str  # "error" | "warning"
    text: str
    advice: str = ""


@dataclass(frozen=True)
class PlanResult:
    success: bool
    ordered_jobs: List[str] = field(default_factory=list)
    error_message: Optional[str] = None


# ----------------------------------------------------------------------
# Run state
# ----------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    FAILED = "failed"
    SUCCESS = "success"
    WARNINGS = "warnings"

    @property
    def severity(self) -> int:
        return _SEVERITY.get(self, 0)

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PENDING


_SEVERITY = {
    JobStatus.SUCCESS: 1,
    JobStatus.WARNINGS: 2,
    JobStatus.FAILED: 3,
}


class ExitCode(IntEnum):
    SUCCESS = 0
    SUCCESS_WITH_WARNINGS = 1
    OPERATIONAL_FAILURE = 2
    CONFIGURATION_ERROR = 3


@dataclass
class JobRunState:
    """
    Outcome record for one job in one run.

    Status starts as PENDING and only ever gets worse while the pipeline runs
    (success < warnings < failed). SKIPPED is set directly, never by escalation.
    """
    job_name: str
    status: JobStatus = JobStatus.PENDING
    reason: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    archive_path: Optional[str] = None
    attempts_made: int = 0
    warnings: List[str] = field(default_factory=list)

    def escalate(self, status: JobStatus, reason: str = "") -> None:
        if self.status is JobStatus.SKIPPED:
            return
        if status is JobStatus.WARNINGS and reason:
            self.warnings.append(reason)
        if status.severity > self.status.severity:
            self.status = status
            if reason:
                self.reason = reason

    def finish(self, status: Optional[JobStatus] = None, reason: str = "") -> None:
        if status is not None:
            self.status = status
            if reason:
                self.reason = reason
        elif self.status is JobStatus.PENDING:
            self.status = JobStatus.SUCCESS
        self.finished_at = datetime.now()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "status": self.status.value,
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "archive_path": self.archive_path,
            "attempts_made": self.attempts_made,
            "warnings": list(self.warnings),
        }


@dataclass
class RunState:
    """
    Per-run table of job outcomes.

    Owned by the run orchestrator and passed to every pre-execution check,
    so a dependent only ever sees states recorded earlier in the same run.
    """
    jobs: Dict[str, JobRunState] = field(default_factory=dict)

    def record(self, state: JobRunState) -> None:
        self.jobs[state.job_name] = state

    def get(self, job_name: str) -> Optional[JobRunState]:
        return self.jobs.get(job_name)

    def overall_status(self) -> JobStatus:
        statuses = [s.status for s in self.jobs.values()]
        if any(s is JobStatus.FAILED for s in statuses):
            return JobStatus.FAILED
        if any(s is JobStatus.WARNINGS for s in statuses):
            return JobStatus.WARNINGS
        return JobStatus.SUCCESS

    def exit_code(self) -> ExitCode:
        overall = self.overall_status()
        if overall is JobStatus.FAILED:
            return ExitCode.OPERATIONAL_FAILURE
        if overall is JobStatus.WARNINGS:
            return ExitCode.SUCCESS_WITH_WARNINGS
        return ExitCode.SUCCESS
