from .dsl import backup_job, backup_set, target, backup_config, JobBuilder, build
from .runner import run_backup, select_jobs
from .model import BackupConfig, JobDefinition, JobStatus, ExitCode

__all__ = [
    "backup_job",
    "backup_set",
    "target",
    "backup_config",
    "JobBuilder",
    "build",
    "run_backup",
    "select_jobs",
    "BackupConfig",
    "JobDefinition",
    "JobStatus",
    "ExitCode",
]
