# config.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .model import BackupConfig, BackupSet, JobDefinition, TargetDefinition

DEFAULT_CONFIG_FILES = ("poshbackup_config.py", "poshbackup_config.json")


# ----------------------------------------------------------------------
# Effective (resolved) job configuration
# ----------------------------------------------------------------------

class EffectiveJobConfig(BaseModel):
    """
    Fully resolved settings for one job run: global defaults < job settings < CLI.

    Consumed read-only by the pipeline, except for a few derived facts a stage
    passes downstream (e.g. `password_in_use_for_7zip`).
    """
    model_config = ConfigDict(extra="forbid")

    name: str
    enabled: bool = True
    depends_on: List[str] = Field(default_factory=list)

    # paths
    source_paths: List[str] = Field(default_factory=list)
    destination_dir: str = ""
    run_only_if_path_exists: bool = False
    on_source_path_not_found: Literal["FailJob", "WarnAndContinue", "SkipJob"] = "FailJob"

    # archive
    archive_base_name: Optional[str] = None
    archive_extension: str = ".7z"
    archive_date_format: str = "%Y%m%d-%H%M%S"
    seven_zip_path: str = "7z"
    compression_level: int = Field(default=5, ge=0, le=9)
    additional_7zip_args: List[str] = Field(default_factory=list)
    archive_password_env: Optional[str] = None
    password_in_use_for_7zip: bool = False
    treat_7zip_warnings_as_success: bool = False
    enable_retries: bool = True
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=60, ge=0)

    # snapshot
    enable_snapshot: bool = False

    # post-archive
    test_archive_after_creation: bool = False
    generate_checksum: bool = False
    checksum_algorithm: Literal["sha256", "sha1", "sha512", "md5"] = "sha256"
    generate_manifest: bool = False
    pin_on_creation: bool = False
    pre_backup_hook: Optional[str] = None
    post_backup_hook: Optional[str] = None

    # retention
    local_retention_count: int = Field(default=3, ge=1)
    retention_confirm_delete: bool = False

    # remote targets
    target_names: List[str] = Field(default_factory=list)
    verify_local_archive_before_transfer: bool = False
    delete_local_archive_after_successful_transfer: bool = False

    # reporting / notification
    report_dir: Optional[str] = None
    notification_webhook_url: Optional[str] = None

    @field_validator("source_paths", "target_names", "depends_on", "additional_7zip_args", mode="before")
    @classmethod
    def _str_to_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("archive_extension")
    @classmethod
    def _dotted_extension(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("archive_extension must not be empty")
        return v if v.startswith(".") else f".{v}"

    @property
    def base_name(self) -> str:
        return self.archive_base_name or self.name


def resolve_effective_config(
    job: JobDefinition,
    config: BackupConfig,
    cli_overrides: Optional[Mapping[str, Any]] = None,
) -> EffectiveJobConfig:
    """
    Merge settings for one job.

    Precedence (lowest -> highest):
      - global settings (only keys that are job fields)
      - job settings
      - CLI overrides whose value is not None
    """
    fields = EffectiveJobConfig.model_fields
    merged: Dict[str, Any] = {
        k: v for k, v in config.global_settings.items() if k in fields
    }
    merged.update(job.settings)
    for k, v in (cli_overrides or {}).items():
        if v is not None:
            merged[k] = v

    merged["name"] = job.name
    merged["enabled"] = job.enabled
    merged["depends_on"] = [d.strip() for d in job.depends_on if d and d.strip()]

    try:
        return EffectiveJobConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings for job '{job.name}':\n{e}") from e


# ----------------------------------------------------------------------
# JSON config file schema
# ----------------------------------------------------------------------

class JobEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    depends_on: List[str] = Field(default_factory=list)

    @field_validator("depends_on", mode="before")
    @classmethod
    def _split_depends_on(cls, v: Any) -> Any:
        # "A, B" is accepted as shorthand for ["A", "B"]
        if isinstance(v, str):
            return v.split(",")
        return v


class SetEntry(BaseModel):
    jobs: List[str]
    on_error_in_job: Literal["StopSet", "ContinueSet"] = "StopSet"


class TargetEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str


class ConfigFile(BaseModel):
    settings: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobEntry]
    sets: Dict[str, SetEntry] = Field(default_factory=dict)
    targets: Dict[str, TargetEntry] = Field(default_factory=dict)

    def to_config(self, source: Optional[str] = None) -> BackupConfig:
        return BackupConfig(
            jobs={
                name: JobDefinition(
                    name=name,
                    enabled=entry.enabled,
                    depends_on=list(entry.depends_on),
                    settings=dict(entry.model_extra or {}),
                )
                for name, entry in self.jobs.items()
            },
            sets={
                name: BackupSet(name=name, job_names=list(s.jobs), on_error_in_job=s.on_error_in_job)
                for name, s in self.sets.items()
            },
            targets={
                name: TargetDefinition(name=name, type=t.type, settings=dict(t.model_extra or {}))
                for name, t in self.targets.items()
            },
            global_settings=dict(self.settings),
            source=source,
        )


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def _load_python_config(path: Path) -> BackupConfig:
    module_name = f"poshbackup_config_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    if "config" in globals_dict and callable(globals_dict["config"]):
        cfg = globals_dict["config"]()
        if not isinstance(cfg, BackupConfig):
            raise ConfigurationError(
                f"config() in {path.name} must return a BackupConfig "
                "(use `backup_config(...)` from poshbackup)."
            )
        cfg.source = str(path)
        return cfg

    if "JOBS" in globals_dict:
        from .dsl import backup_config

        jobs = globals_dict["JOBS"]
        if not isinstance(jobs, list) or not all(isinstance(j, JobDefinition) for j in jobs):
            raise ConfigurationError("JOBS must be a list of JobDefinition (use `backup_job(...)`).")
        items: List[Any] = list(jobs)
        items.extend(globals_dict.get("SETS", []))
        items.extend(globals_dict.get("TARGETS", []))
        cfg = backup_config(*items, settings=globals_dict.get("SETTINGS"))
        cfg.source = str(path)
        return cfg

    raise ConfigurationError(
        f"{path.name} must define config() -> BackupConfig or JOBS = [backup_job(...), ...]."
    )


def _load_json_config(path: Path) -> BackupConfig:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Could not parse {path.name}: {e}") from e
    try:
        parsed = ConfigFile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path.name}:\n{e}") from e
    return parsed.to_config(source=str(path))


def load_config(path: str | Path) -> BackupConfig:
    """
    Load backup configuration from a .py or .json file.

    A .py file must define either:
      - config() -> BackupConfig
      - JOBS = [JobDefinition, ...] (optionally SETS, TARGETS, SETTINGS)
    """
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    if cfg_path.suffix == ".py":
        return _load_python_config(cfg_path)
    if cfg_path.suffix == ".json":
        return _load_json_config(cfg_path)
    raise ConfigurationError(f"Config must be a .py or .json file, got: {cfg_path.name}")


def find_config_files(directory: str | Path = ".") -> List[Path]:
    d = Path(directory)
    return [d / name for name in DEFAULT_CONFIG_FILES if (d / name).exists()]
