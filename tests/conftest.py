# conftest.py
# Shared fixtures and fake collaborators.

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from poshbackup.config import EffectiveJobConfig
from poshbackup.model import JobRunState, TargetDefinition
from poshbackup.pipeline import JobPipeline
from poshbackup.providers.archive import ArchiveResult
from poshbackup.providers.snapshot import SnapshotResult
from poshbackup.providers.transfer import TransferResult
from poshbackup.ui.console import Console

# =============================================================================
# Fake collaborators
# =============================================================================


class FakeArchiveEngine:
    """Writes a small file in place of a real archive and returns scripted exit codes."""

    def __init__(self, exit_code: int = 0, test_exit_code: int = 0, attempts: int = 1):
        self.exit_code = exit_code
        self.test_exit_code = test_exit_code
        self.attempts = attempts
        self.created: List[Dict[str, Any]] = []
        self.tested: List[Path] = []

    def create_archive(self, sources: Sequence[str], archive_path: Path, config, password=None) -> ArchiveResult:
        self.created.append({"sources": list(sources), "archive": archive_path, "password": password})
        if self.exit_code in (0, 1):
            archive_path.write_bytes(b"fake archive for " + config.name.encode())
        return ArchiveResult(exit_code=self.exit_code, attempts_made=self.attempts, output="7-Zip output")

    def test_archive(self, archive_path: Path, config, password=None) -> ArchiveResult:
        self.tested.append(archive_path)
        return ArchiveResult(exit_code=self.test_exit_code)


class FakeSnapshotProvider:
    def __init__(self, success: bool = True, mapped: Optional[Dict[str, str]] = None, fail_remove: bool = False):
        self.success = success
        self.mapped = mapped or {}
        self.fail_remove = fail_remove
        self.created: List[str] = []
        self.removed: List[Any] = []

    def create_snapshot(self, job_name: str, paths: Sequence[str], config) -> SnapshotResult:
        self.created.append(job_name)
        if not self.success:
            return SnapshotResult(success=False, error="shadow storage full")
        return SnapshotResult(success=True, mapped_paths=dict(self.mapped), session=f"session-{job_name}")

    def remove_snapshot(self, session: Any) -> None:
        if self.fail_remove:
            raise RuntimeError("snapshot is busy")
        self.removed.append(session)


class FakeTransferAgent:
    def __init__(self, success: bool = True):
        self.success = success
        self.uploads: List[tuple] = []

    def upload(self, local_path: Path, target: TargetDefinition, job_name: str) -> TransferResult:
        self.uploads.append((local_path, target.name, job_name))
        if self.success:
            return TransferResult(success=True, remote_path=f"remote://{target.name}/{local_path.name}")
        return TransferResult(success=False, error_message="connection refused")


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.seen: List[JobRunState] = []

    def notify(self, state: JobRunState, config, simulate: bool = False) -> None:
        self.seen.append(state)
        if self.fail:
            raise RuntimeError("smtp down")

    # same shape as a ReportGenerator
    def generate(self, state: JobRunState, config, simulate: bool = False):
        self.notify(state, config, simulate)
        return None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(output: io.StringIO) -> Console:
    return Console(debug=True, stream=output)


@pytest.fixture
def engine() -> FakeArchiveEngine:
    return FakeArchiveEngine()


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    (d / "file.txt").write_text("hello", encoding="utf-8")
    return d


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def make_config(source_dir: Path, dest_dir: Path):
    """Build an EffectiveJobConfig with working paths; keyword args override."""

    def _make(name: str = "docs", **overrides: Any) -> EffectiveJobConfig:
        data: Dict[str, Any] = {
            "name": name,
            "source_paths": [str(source_dir)],
            "destination_dir": str(dest_dir),
        }
        data.update(overrides)
        return EffectiveJobConfig.model_validate(data)

    return _make


@pytest.fixture
def make_pipeline(console: Console, engine: FakeArchiveEngine):
    def _make(**kwargs: Any) -> JobPipeline:
        kwargs.setdefault("report_generators", ())
        kwargs.setdefault("notifiers", ())
        return JobPipeline(console, kwargs.pop("archive_engine", engine), **kwargs)

    return _make
