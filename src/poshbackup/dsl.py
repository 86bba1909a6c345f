# src/poshbackup/dsl.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from .model import BackupConfig, BackupSet, JobDefinition, TargetDefinition


# ---------------------------------------------------------------------
# Functional helpers
# ---------------------------------------------------------------------

def backup_job(
    name: str,
    *sources: str,  # allow: backup_job("docs", "~/Documents", "~/Desktop", ...)
    destination: Optional[str] = None,
    depends_on: Optional[List[str]] = None,
    enabled: bool = True,
    targets: Optional[List[str]] = None,
    **settings: Any,
) -> JobDefinition:
    """Define a backup job. Extra keyword arguments become job settings."""
    if not name or not name.strip():
        raise ValueError("backup_job() needs a non-empty name")

    job_settings: Dict[str, Any] = dict(settings)
    if sources:
        job_settings["source_paths"] = list(sources)
    if destination is not None:
        job_settings["destination_dir"] = destination
    if targets:
        job_settings["target_names"] = list(targets)

    return JobDefinition(
        name=name.strip(),
        enabled=enabled,
        depends_on=list(depends_on or []),
        settings=job_settings,
    )


def backup_set(name: str, *job_names: str, on_error_in_job: str = "StopSet") -> BackupSet:
    if on_error_in_job not in ("StopSet", "ContinueSet"):
        raise ValueError(f"backup_set({name!r}): on_error_in_job must be 'StopSet' or 'ContinueSet'")
    return BackupSet(name=name, job_names=list(job_names), on_error_in_job=on_error_in_job)


def target(name: str, type: str, **settings: Any) -> TargetDefinition:
    return TargetDefinition(name=name, type=type, settings=dict(settings))


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._enabled = True
        self._depends_on: list[str] = []
        self._sources: list[str] = []
        self._destination: Optional[str] = None
        self._settings: dict[str, Any] = {}

    def depends_on(self, *job_names: str):
        self._depends_on.extend(job_names)
        return self

    def source(self, *paths: str):
        self._sources.extend(paths)
        return self

    def destination(self, path: str):
        self._destination = path
        return self

    def setting(self, **settings: Any):
        self._settings.update(settings)
        return self

    def disable(self):
        self._enabled = False
        return self

    def build(self) -> JobDefinition:
        return backup_job(
            self.name,
            *self._sources,
            destination=self._destination,
            depends_on=self._depends_on,
            enabled=self._enabled,
            **self._settings,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('docs').source('~/Documents').destination('D:/Backups').build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Config helper (single-file story)
# ---------------------------------------------------------------------

ConfigItem = Union[JobDefinition, BackupSet, TargetDefinition]


def backup_config(*items: ConfigItem, settings: Optional[Dict[str, Any]] = None) -> BackupConfig:
    """
    Collect jobs, sets and targets into a BackupConfig.

    Users can write:
        from poshbackup import backup_config, backup_job, backup_set

        def config():
            return backup_config(
                backup_job("docs", "~/Documents", destination="D:/Backups"),
                backup_job("photos", "~/Pictures", destination="D:/Backups", depends_on=["docs"]),
                backup_set("nightly", "docs", "photos"),
                settings={"local_retention_count": 5},
            )
    """
    cfg = BackupConfig(global_settings=dict(settings or {}))
    for item in items:
        if isinstance(item, JobDefinition):
            bucket: Dict[str, Any] = cfg.jobs
        elif isinstance(item, BackupSet):
            bucket = cfg.sets
        elif isinstance(item, TargetDefinition):
            bucket = cfg.targets
        else:
            raise TypeError(f"backup_config() got an unsupported item: {item!r}")
        if item.name in bucket:
            raise ValueError(f"Duplicate {type(item).__name__} name: {item.name}")
        bucket[item.name] = item
    return cfg
