# runner.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .checks import CheckOutcome, PreExecutionChecker
from .config import resolve_effective_config
from .dag import build_dependency_map, get_execution_order, has_errors, validate_dependency_map
from .errors import ConfigurationError, DependencyValidationError
from .model import (
    BackupConfig,
    BackupSet,
    ExitCode,
    JobRunState,
    JobStatus,
    PlanResult,
    RunState,
    ValidationMessage,
)
from .pipeline import JobPipeline
from .providers.archive import ArchiveEngine, SevenZipArchiveEngine
from .providers.reporting import (
    JsonReportGenerator,
    NotificationDispatcher,
    ReportGenerator,
    WebhookNotificationDispatcher,
)
from .providers.snapshot import SnapshotProvider
from .providers.transfer import LocalDirectoryTransferAgent, TransferAgent
from .ui.console import Console

# config ---> dependency map ---> validate ---> plan ---> pre-check ---> pipeline (one job at a time)


@dataclass
class RunSummary:
    plan: PlanResult
    messages: List[ValidationMessage] = field(default_factory=list)
    run_state: RunState = field(default_factory=RunState)

    @property
    def exit_code(self) -> ExitCode:
        return self.run_state.exit_code()


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def select_jobs(
    config: BackupConfig,
    job_names: Optional[Iterable[str]] = None,
    set_name: Optional[str] = None,
) -> Tuple[List[str], Optional[BackupSet]]:
    """
    Turn a job/set selection into the ordered list of requested job names.

    No selection means every enabled job, in configuration order.
    """
    requested: List[str] = []
    backup_set: Optional[BackupSet] = None

    if set_name:
        backup_set = config.sets.get(set_name)
        if backup_set is None:
            raise ConfigurationError(
                f"Backup set '{set_name}' is not defined. Known sets: {sorted(config.sets)}"
            )
        requested.extend(backup_set.job_names)

    for name in job_names or []:
        if name not in config.jobs:
            raise ConfigurationError(
                f"Job '{name}' is not defined. Known jobs: {sorted(config.jobs)}"
            )
        requested.append(name)

    if not set_name and not job_names:
        requested = [name for name, job in config.jobs.items() if job.enabled]

    # keep first occurrence
    return list(dict.fromkeys(requested)), backup_set


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def plan_run(
    config: BackupConfig,
    requested: Iterable[str],
    console: Console,
) -> Tuple[PlanResult, List[ValidationMessage]]:
    """
    Build, validate and order. Fails closed: raises before any job can run.

    Raises:
      DependencyValidationError: the graph has error-level messages
      ConfigurationError: the plan could not be ordered
    """
    dep_map = build_dependency_map(config.jobs)
    messages = validate_dependency_map(config.jobs, dep_map)

    if has_errors(messages):
        raise DependencyValidationError(messages)

    for m in messages:
        console.warning(m.text)
        if m.advice:
            console.advice(m.advice)

    plan = get_execution_order(list(requested), dep_map)
    if not plan.success:
        raise ConfigurationError(plan.error_message or "Could not determine job execution order")

    return plan, messages


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def default_pipeline(
    console: Console,
    config: BackupConfig,
    *,
    simulate: bool = False,
    archive_engine: Optional[ArchiveEngine] = None,
    snapshot_provider: Optional[SnapshotProvider] = None,
    transfer_agents: Optional[Dict[str, TransferAgent]] = None,
    report_generators: Optional[List[ReportGenerator]] = None,
    notifiers: Optional[List[NotificationDispatcher]] = None,
    confirm: Optional[Callable[[str], bool]] = None,
) -> JobPipeline:
    if transfer_agents is None:
        transfer_agents = {LocalDirectoryTransferAgent.type_name: LocalDirectoryTransferAgent(console)}
    if report_generators is None:
        report_generators = [JsonReportGenerator(console)]
    if notifiers is None:
        notifiers = [WebhookNotificationDispatcher(console)]

    return JobPipeline(
        console,
        archive_engine or SevenZipArchiveEngine(console),
        snapshot_provider=snapshot_provider,
        transfer_agents=transfer_agents,
        targets=config.targets,
        report_generators=report_generators,
        notifiers=notifiers,
        simulate=simulate,
        confirm=confirm,
    )


def run_backup(
    config: BackupConfig,
    requested: Iterable[str],
    *,
    console: Console,
    simulate: bool = False,
    set_name: Optional[str] = None,
    pipeline: Optional[JobPipeline] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
) -> RunSummary:
    """
    Run the requested jobs (and their prerequisites) one at a time, in dependency order.

    One job's failure never stops independent jobs, except inside a set whose
    on_error_in_job is "StopSet".
    """
    plan, messages = plan_run(config, requested, console)
    backup_set = config.sets.get(set_name) if set_name else None
    pipeline = pipeline or default_pipeline(console, config, simulate=simulate)

    run_state = RunState()
    summary = RunSummary(plan=plan, messages=messages, run_state=run_state)
    checker = PreExecutionChecker(console)
    stopped_by: Optional[str] = None

    for name in plan.ordered_jobs:
        if stopped_by is not None:
            state = JobRunState(job_name=name)
            state.finish(JobStatus.SKIPPED, f"set '{set_name}' stopped after '{stopped_by}' failed")
            console.print_job_skipped(name, state.reason)
            run_state.record(state)
            continue

        state = _run_one(name, config, run_state, checker, pipeline, console, cli_overrides)
        run_state.record(state)

        if (
            state.status is JobStatus.FAILED
            and backup_set is not None
            and backup_set.on_error_in_job == "StopSet"
        ):
            console.error(f"Set '{backup_set.name}' is configured to stop on error; remaining jobs will not run")
            stopped_by = name

    return summary


def _run_one(
    name: str,
    config: BackupConfig,
    run_state: RunState,
    checker: PreExecutionChecker,
    pipeline: JobPipeline,
    console: Console,
    cli_overrides: Optional[Mapping[str, Any]],
) -> JobRunState:
    try:
        effective = resolve_effective_config(config.jobs[name], config, cli_overrides)
    except ConfigurationError as e:
        console.print_job_start(name)
        console.error(str(e))
        state = JobRunState(job_name=name)
        state.finish(JobStatus.FAILED, "invalid job configuration")
        return state

    check = checker.check(effective, run_state)
    if check.outcome is CheckOutcome.SKIP:
        console.print_job_skipped(name, check.reason)
        state = JobRunState(job_name=name)
        state.finish(JobStatus.SKIPPED, check.reason)
        return state
    if check.outcome is CheckOutcome.FAIL:
        console.print_job_start(name)
        state = JobRunState(job_name=name)
        state.finish(JobStatus.FAILED, check.reason)
        return state

    console.print_job_start(name)
    return pipeline.run(effective)
