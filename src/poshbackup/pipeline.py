# pipeline.py
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .checks import validate_job_paths
from .config import EffectiveJobConfig
from .errors import BackupError, FailJob, SkipJob
from .model import JobRunState, JobStatus, TargetDefinition
from .providers.archive import SEVEN_ZIP_SUCCESS, SEVEN_ZIP_WARNING, ArchiveEngine
from .providers.reporting import NotificationDispatcher, ReportGenerator
from .providers.snapshot import SnapshotProvider, map_snapshot_paths
from .providers.transfer import TransferAgent
from .retention import (
    apply_retention,
    archive_name,
    is_pinned,
    pin_archive,
    sidecar_files,
    write_checksum_file,
    write_manifest,
)
from .ui.console import Console

# Stage order for one job (after the pre-execution check said PROCEED):
#
#   paths -> pre-hook -> snapshot -> archive -> post-archive -> transfer
#        \______________ any FailJob / SkipJob stops here ______________/
#   finally: release snapshot -> retention (not after failed/skipped) -> reports / notifications
#
# Stage outcomes only ever escalate the job status: success < warnings < failed.


@dataclass
class _JobContext:
    config: EffectiveJobConfig
    state: JobRunState
    sources: List[str] = field(default_factory=list)
    archive: Optional[Path] = None
    password: Optional[str] = None
    snapshot_session: Any = None
    # set when the archive written in this run failed its integrity test
    archive_suspect: bool = False


# Failures after which the archive on disk is partial or corrupt.
_BAD_ARCHIVE_KINDS = ("archive_failed", "verify_failed")


class JobPipeline:
    """Runs the stages of a single backup job and returns its terminal state."""

    def __init__(
        self,
        console: Console,
        archive_engine: ArchiveEngine,
        *,
        snapshot_provider: Optional[SnapshotProvider] = None,
        transfer_agents: Optional[Dict[str, TransferAgent]] = None,
        targets: Optional[Dict[str, TargetDefinition]] = None,
        report_generators: Iterable[ReportGenerator] = (),
        notifiers: Iterable[NotificationDispatcher] = (),
        simulate: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        self.console = console
        self.archive_engine = archive_engine
        self.snapshot_provider = snapshot_provider
        self.transfer_agents = dict(transfer_agents or {})
        self.targets = dict(targets or {})
        self.report_generators = list(report_generators)
        self.notifiers = list(notifiers)
        self.simulate = simulate
        self.confirm = confirm

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, config: EffectiveJobConfig) -> JobRunState:
        state = JobRunState(job_name=config.name)
        ctx = _JobContext(config=config, state=state, sources=list(config.source_paths))

        try:
            self._stage_paths(ctx)
            self._stage_pre_hook(ctx)
            self._stage_snapshot(ctx)
            self._stage_archive(ctx)
            self._stage_post_archive(ctx)
            self._stage_transfer(ctx)
        except SkipJob as e:
            self.console.warning(f"[{config.name}] skipped: {e.message}")
            state.finish(JobStatus.SKIPPED, e.message)
        except FailJob as e:
            self._log_failure(e)
            state.escalate(JobStatus.FAILED, e.message)
            if e.kind in _BAD_ARCHIVE_KINDS:
                self._discard_archive(ctx)
        except Exception as e:
            self.console.print_exception(e)
            state.escalate(JobStatus.FAILED, f"unexpected error: {e}")
        finally:
            self._release_snapshot(ctx)

        if state.finished_at is None:
            state.finish()

        # failed and skipped runs never prune
        if state.status not in (JobStatus.SKIPPED, JobStatus.FAILED):
            self._stage_retention(ctx)
        self._stage_report(ctx)

        self._log_outcome(state)
        return state

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stage_paths(self, ctx: _JobContext) -> None:
        result = validate_job_paths(ctx.config, self.console, simulate=self.simulate)
        ctx.sources = result.sources
        for w in result.warnings:
            ctx.state.escalate(JobStatus.WARNINGS, w)

    def _stage_pre_hook(self, ctx: _JobContext) -> None:
        cmd = ctx.config.pre_backup_hook
        if not cmd:
            return
        code = self._run_hook(ctx, cmd, "pre-backup")
        if code != 0:
            raise FailJob(
                kind="hook_failed",
                job=ctx.config.name,
                stage="pre-backup",
                message=f"pre-backup hook exited with code {code}",
                details={"hook": cmd},
            )

    def _stage_snapshot(self, ctx: _JobContext) -> None:
        config = ctx.config
        if not config.enable_snapshot:
            return
        if self.snapshot_provider is None:
            raise FailJob(
                kind="snapshot",
                job=config.name,
                stage="snapshot",
                message="enable_snapshot is set but no snapshot provider is available",
            )
        if self.simulate:
            self.console.simulate(f"[{config.name}] would create a snapshot of {ctx.sources}")
            return

        result = self.snapshot_provider.create_snapshot(config.name, ctx.sources, config)
        if not result.success:
            raise FailJob(
                kind="snapshot",
                job=config.name,
                stage="snapshot",
                message=f"snapshot creation failed: {result.error or 'unknown error'}",
            )
        ctx.snapshot_session = result.session
        ctx.sources = map_snapshot_paths(ctx.sources, result)
        self.console.info(f"[{config.name}] snapshot created, archiving from snapshot paths")

    def _stage_archive(self, ctx: _JobContext) -> None:
        config, state = ctx.config, ctx.state
        dest = Path(config.destination_dir).expanduser().resolve()
        ctx.archive = dest / archive_name(config.base_name, config.archive_extension, config.archive_date_format)
        state.archive_path = str(ctx.archive)

        if config.archive_password_env:
            password = os.environ.get(config.archive_password_env)
            if not password:
                raise FailJob(
                    kind="password",
                    job=config.name,
                    stage="archive",
                    message=f"environment variable '{config.archive_password_env}' is not set or empty",
                )
            ctx.password = password
            config.password_in_use_for_7zip = True

        if self.simulate:
            self.console.simulate(f"[{config.name}] would create archive {ctx.archive} from {ctx.sources}")
            return

        self.console.info(f"[{config.name}] creating archive {ctx.archive.name}")
        result = self.archive_engine.create_archive(ctx.sources, ctx.archive, config, ctx.password)
        state.attempts_made = result.attempts_made

        if result.exit_code == SEVEN_ZIP_SUCCESS:
            self.console.success(f"[{config.name}] archive created ({result.attempts_made} attempt(s))")
        elif result.exit_code == SEVEN_ZIP_WARNING:
            if config.treat_7zip_warnings_as_success:
                self.console.info(f"[{config.name}] 7-Zip reported warnings, treated as success")
            else:
                state.escalate(JobStatus.WARNINGS, "7-Zip reported warnings (exit code 1)")
                self.console.warning(f"[{config.name}] 7-Zip reported warnings (exit code 1)")
        else:
            raise FailJob(
                kind="archive_failed",
                job=config.name,
                stage="archive",
                message=f"7-Zip exited with code {result.exit_code} after {result.attempts_made} attempt(s)",
                details={"output": result.output[-500:]} if result.output else {},
            )

    def _stage_post_archive(self, ctx: _JobContext) -> None:
        config, state = ctx.config, ctx.state
        archive = ctx.archive

        if self.simulate:
            if config.test_archive_after_creation or config.verify_local_archive_before_transfer:
                self.console.simulate(f"[{config.name}] would test archive integrity")
            if config.generate_checksum:
                self.console.simulate(f"[{config.name}] would write {config.checksum_algorithm} checksum")
            if config.generate_manifest:
                self.console.simulate(f"[{config.name}] would write manifest")
            if config.post_backup_hook:
                self._run_hook(ctx, config.post_backup_hook, "post-backup")
            if config.pin_on_creation:
                self.console.simulate(f"[{config.name}] would pin archive")
            return

        if config.test_archive_after_creation or config.verify_local_archive_before_transfer:
            result = self.archive_engine.test_archive(archive, config, ctx.password)
            if result.exit_code == SEVEN_ZIP_SUCCESS:
                self.console.success(f"[{config.name}] archive integrity test passed")
            elif config.verify_local_archive_before_transfer and config.target_names:
                raise FailJob(
                    kind="verify_failed",
                    job=config.name,
                    stage="verify",
                    message=f"archive failed integrity test (exit code {result.exit_code}); remote transfers skipped",
                )
            else:
                ctx.archive_suspect = True
                state.escalate(JobStatus.WARNINGS, f"archive integrity test failed (exit code {result.exit_code})")
                self.console.warning(f"[{config.name}] archive integrity test failed (exit code {result.exit_code})")

        checksum: Optional[str] = None
        if config.generate_checksum:
            try:
                checksum, out = write_checksum_file(archive, config.checksum_algorithm)
                self.console.info(f"[{config.name}] checksum written: {out.name}")
            except OSError as e:
                self._stage_warning(ctx, f"could not write checksum file: {e}")

        if config.generate_manifest:
            try:
                write_manifest(archive, config, ctx.sources, checksum)
            except OSError as e:
                self._stage_warning(ctx, f"could not write manifest: {e}")

        if config.post_backup_hook:
            code = self._run_hook(ctx, config.post_backup_hook, "post-backup")
            if code != 0:
                self._stage_warning(ctx, f"post-backup hook exited with code {code}")

        if config.pin_on_creation:
            try:
                pin_archive(archive)
                self.console.info(f"[{config.name}] archive pinned")
            except OSError as e:
                self._stage_warning(ctx, f"could not pin archive: {e}")

    def _stage_transfer(self, ctx: _JobContext) -> None:
        config = ctx.config
        if not config.target_names:
            return

        unknown = [t for t in config.target_names if t not in self.targets]
        if unknown:
            raise FailJob(
                kind="unknown_target",
                job=config.name,
                stage="transfer",
                message=f"undefined remote target(s): {unknown}",
            )

        all_ok = True
        for tname in config.target_names:
            target = self.targets[tname]
            agent = self.transfer_agents.get(target.type)
            if agent is None:
                self._stage_warning(ctx, f"no transfer agent for target type '{target.type}' ({tname})")
                all_ok = False
                continue
            if self.simulate:
                self.console.simulate(f"[{config.name}] would transfer archive to target '{tname}' ({target.type})")
                continue

            result = agent.upload(ctx.archive, target, config.name)
            if result.success:
                self.console.success(f"[{config.name}] transferred to '{tname}': {result.remote_path}")
            else:
                self._stage_warning(ctx, f"transfer to '{tname}' failed: {result.error_message}")
                all_ok = False

        if all_ok and config.delete_local_archive_after_successful_transfer and not self.simulate:
            if is_pinned(ctx.archive):
                self.console.info(f"[{config.name}] local archive is pinned, keeping it")
                return
            for extra in sidecar_files(ctx.archive):
                extra.unlink(missing_ok=True)
            ctx.archive.unlink(missing_ok=True)
            self.console.info(f"[{config.name}] local archive deleted after successful transfer")

    # ------------------------------------------------------------------
    # Finalisation (best-effort)
    # ------------------------------------------------------------------

    def _release_snapshot(self, ctx: _JobContext) -> None:
        if ctx.snapshot_session is None or self.snapshot_provider is None:
            return
        try:
            self.snapshot_provider.remove_snapshot(ctx.snapshot_session)
        except Exception as e:
            self._stage_warning(ctx, f"could not remove snapshot: {e}")
        finally:
            ctx.snapshot_session = None

    def _discard_archive(self, ctx: _JobContext) -> None:
        archive = ctx.archive
        if self.simulate or archive is None or not archive.exists():
            return
        try:
            for extra in sidecar_files(archive):
                extra.unlink(missing_ok=True)
            archive.unlink(missing_ok=True)
        except OSError as e:
            self.console.warning(f"[{ctx.config.name}] could not remove failed archive {archive.name}: {e}")
            return
        self.console.info(f"[{ctx.config.name}] removed failed archive {archive.name}")

    def _stage_retention(self, ctx: _JobContext) -> None:
        config = ctx.config
        if not config.destination_dir:
            return
        try:
            apply_retention(
                Path(config.destination_dir).expanduser().resolve(),
                config.base_name,
                config.archive_extension,
                config.local_retention_count,
                console=self.console,
                job_name=config.name,
                date_format=config.archive_date_format,
                simulate=self.simulate,
                confirm=self.confirm if config.retention_confirm_delete else None,
                exclude=[ctx.archive] if ctx.archive_suspect and ctx.archive else (),
            )
        except OSError as e:
            self._stage_warning(ctx, f"retention failed: {e}")

    def _stage_report(self, ctx: _JobContext) -> None:
        for gen in self.report_generators:
            try:
                gen.generate(ctx.state, ctx.config, self.simulate)
            except Exception as e:
                self.console.warning(f"[{ctx.config.name}] report generation failed: {e}")
        for notifier in self.notifiers:
            try:
                notifier.notify(ctx.state, ctx.config, self.simulate)
            except Exception as e:
                self.console.warning(f"[{ctx.config.name}] notification failed: {e}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stage_warning(self, ctx: _JobContext, message: str) -> None:
        self.console.warning(f"[{ctx.config.name}] {message}")
        ctx.state.escalate(JobStatus.WARNINGS, message)

    def _run_hook(self, ctx: _JobContext, cmd: str, stage: str) -> int:
        config = ctx.config
        if self.simulate:
            self.console.simulate(f"[{config.name}] would run {stage} hook: {cmd}")
            return 0

        env = os.environ.copy()
        env.update({
            "POSHBACKUP_JOB_NAME": config.name,
            "POSHBACKUP_STATUS": ctx.state.status.value,
            "POSHBACKUP_ARCHIVE_PATH": str(ctx.archive) if ctx.archive else "",
            "POSHBACKUP_SIMULATE": "0",
        })

        self.console.info(f"[{config.name}] running {stage} hook")
        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                env=env,
                text=True,
                capture_output=True,
            )
        except OSError as e:
            self.console.error(f"[{config.name}] {stage} hook could not start: {e}")
            return -1

        if proc.stdout:
            self.console.debug_msg(proc.stdout[-4000:])
        if proc.returncode != 0 and proc.stderr:
            self.console.error(proc.stderr[-4000:].rstrip())
        return proc.returncode

    def _log_failure(self, e: BackupError) -> None:
        self.console.error(f"[{e.job}] failed at stage '{e.stage}': {e.message}")
        hint = e.details.get("hint")
        if hint:
            self.console.advice(hint)
        self.console.debug_msg(str(e))

    def _log_outcome(self, state: JobRunState) -> None:
        text = f"[{state.job_name}] finished: {state.status.value.upper()}"
        if state.status is JobStatus.SUCCESS:
            self.console.success(text)
        elif state.status is JobStatus.FAILED:
            self.console.error(f"{text} ({state.reason})")
        else:
            self.console.warning(f"{text} ({state.reason})" if state.reason else text)
