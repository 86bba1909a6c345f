# test_pipeline.py

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from conftest import FakeArchiveEngine, FakeSnapshotProvider, FakeTransferAgent, RecordingNotifier
from poshbackup.model import JobStatus, TargetDefinition

NAS = {"nas": TargetDefinition(name="nas", type="fake", settings={})}


def archives_in(dest: Path) -> list[Path]:
    return sorted(p for p in dest.iterdir() if p.suffix == ".7z")


class TestArchiveStage:
    def test_clean_run_is_success(self, make_pipeline, make_config, engine, dest_dir, source_dir) -> None:
        state = make_pipeline().run(make_config())

        assert state.status is JobStatus.SUCCESS
        assert state.finished_at is not None
        assert engine.created[0]["sources"] == [str(source_dir)]
        archive = Path(state.archive_path)
        assert archive.parent == dest_dir.resolve()
        assert archive.name.startswith("docs_") and archive.name.endswith(".7z")
        assert archive.exists()

    def test_archive_base_name_is_used(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(archive_base_name="my-docs", archive_extension="zip"))

        name = Path(state.archive_path).name
        assert name.startswith("my-docs_") and name.endswith(".zip")

    def test_seven_zip_warning_gives_warnings(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(archive_engine=FakeArchiveEngine(exit_code=1))

        state = pipeline.run(make_config())

        assert state.status is JobStatus.WARNINGS

    def test_seven_zip_warning_can_be_treated_as_success(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(archive_engine=FakeArchiveEngine(exit_code=1))

        state = pipeline.run(make_config(treat_7zip_warnings_as_success=True))

        assert state.status is JobStatus.SUCCESS

    def test_seven_zip_error_fails_job(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(archive_engine=FakeArchiveEngine(exit_code=2, attempts=3))

        state = pipeline.run(make_config())

        assert state.status is JobStatus.FAILED
        assert "code 2" in state.reason
        assert state.attempts_made == 3

    def test_unexpected_exception_fails_job(self, make_pipeline, make_config, output) -> None:
        class Exploding(FakeArchiveEngine):
            def create_archive(self, *args, **kwargs):
                raise RuntimeError("disk on fire")

        state = make_pipeline(archive_engine=Exploding()).run(make_config())

        assert state.status is JobStatus.FAILED
        assert "disk on fire" in state.reason

    def test_missing_password_variable_fails(self, make_pipeline, make_config, engine, monkeypatch) -> None:
        monkeypatch.delenv("PB_TEST_PASSWORD", raising=False)

        state = make_pipeline().run(make_config(archive_password_env="PB_TEST_PASSWORD"))

        assert state.status is JobStatus.FAILED
        assert "PB_TEST_PASSWORD" in state.reason
        assert engine.created == []

    def test_password_is_passed_to_engine(self, make_pipeline, make_config, engine, monkeypatch) -> None:
        monkeypatch.setenv("PB_TEST_PASSWORD", "s3cret")
        config = make_config(archive_password_env="PB_TEST_PASSWORD")

        make_pipeline().run(config)

        assert engine.created[0]["password"] == "s3cret"
        assert config.password_in_use_for_7zip is True


class TestPathAndHookStages:
    def test_skip_policy_marks_job_skipped(self, make_pipeline, make_config, engine, tmp_path) -> None:
        config = make_config(source_paths=[str(tmp_path / "nope")], on_source_path_not_found="SkipJob")

        state = make_pipeline().run(config)

        assert state.status is JobStatus.SKIPPED
        assert engine.created == []

    def test_warn_and_continue_archives_remaining_sources(self, make_pipeline, make_config, engine, source_dir, tmp_path) -> None:
        config = make_config(
            source_paths=[str(source_dir), str(tmp_path / "nope")],
            on_source_path_not_found="WarnAndContinue",
        )

        state = make_pipeline().run(config)

        assert state.status is JobStatus.WARNINGS
        assert engine.created[0]["sources"] == [str(source_dir)]

    def test_recursive_destination_fails_before_archiving(self, make_pipeline, make_config, engine, source_dir) -> None:
        state = make_pipeline().run(make_config(destination_dir=str(source_dir / "out")))

        assert state.status is JobStatus.FAILED
        assert engine.created == []

    def test_failing_pre_hook_stops_job(self, make_pipeline, make_config, engine) -> None:
        state = make_pipeline().run(make_config(pre_backup_hook="exit 3"))

        assert state.status is JobStatus.FAILED
        assert state.reason == "pre-backup hook exited with code 3"
        assert engine.created == []

    def test_pre_hook_sees_job_name(self, make_pipeline, make_config, tmp_path) -> None:
        marker = tmp_path / "hook.txt"

        make_pipeline().run(make_config(pre_backup_hook=f'echo "$POSHBACKUP_JOB_NAME" > "{marker}"'))

        assert marker.read_text(encoding="utf-8").strip() == "docs"

    def test_failing_post_hook_is_warning(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(post_backup_hook="exit 1"))

        assert state.status is JobStatus.WARNINGS


class TestSnapshotStage:
    def test_snapshot_paths_are_archived_and_released(self, make_pipeline, make_config, engine, source_dir) -> None:
        provider = FakeSnapshotProvider(mapped={str(source_dir): "/snapshots/1/data"})

        state = make_pipeline(snapshot_provider=provider).run(make_config(enable_snapshot=True))

        assert state.status is JobStatus.SUCCESS
        assert engine.created[0]["sources"] == ["/snapshots/1/data"]
        assert provider.removed == ["session-docs"]

    def test_snapshot_released_when_archiving_fails(self, make_pipeline, make_config) -> None:
        provider = FakeSnapshotProvider()
        pipeline = make_pipeline(snapshot_provider=provider, archive_engine=FakeArchiveEngine(exit_code=2))

        state = pipeline.run(make_config(enable_snapshot=True))

        assert state.status is JobStatus.FAILED
        assert provider.removed == ["session-docs"]

    def test_snapshot_failure_fails_job(self, make_pipeline, make_config, engine) -> None:
        provider = FakeSnapshotProvider(success=False)

        state = make_pipeline(snapshot_provider=provider).run(make_config(enable_snapshot=True))

        assert state.status is JobStatus.FAILED
        assert "shadow storage full" in state.reason
        assert engine.created == []

    def test_snapshot_without_provider_fails(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(enable_snapshot=True))

        assert state.status is JobStatus.FAILED

    def test_snapshot_removal_failure_is_warning(self, make_pipeline, make_config) -> None:
        provider = FakeSnapshotProvider(fail_remove=True)

        state = make_pipeline(snapshot_provider=provider).run(make_config(enable_snapshot=True))

        assert state.status is JobStatus.WARNINGS


class TestPostArchiveStage:
    def test_checksum_file_written(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(generate_checksum=True))

        archive = Path(state.archive_path)
        sidecar = archive.with_name(archive.name + ".sha256")
        expected = hashlib.sha256(archive.read_bytes()).hexdigest()
        assert sidecar.read_text(encoding="utf-8") == f"{expected} *{archive.name}\n"

    def test_manifest_and_pin(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(generate_manifest=True, pin_on_creation=True))

        archive = Path(state.archive_path)
        assert archive.with_name(archive.name + ".manifest.json").exists()
        assert archive.with_name(archive.name + ".pinned").exists()

    def test_failed_integrity_test_is_warning_without_targets(self, make_pipeline, make_config) -> None:
        engine = FakeArchiveEngine(test_exit_code=2)

        state = make_pipeline(archive_engine=engine).run(make_config(test_archive_after_creation=True))

        assert state.status is JobStatus.WARNINGS
        assert len(engine.tested) == 1

    def test_failed_verification_blocks_transfer(self, make_pipeline, make_config) -> None:
        agent = FakeTransferAgent()
        pipeline = make_pipeline(
            archive_engine=FakeArchiveEngine(test_exit_code=2),
            transfer_agents={"fake": agent},
            targets=NAS,
        )

        state = pipeline.run(make_config(target_names=["nas"], verify_local_archive_before_transfer=True))

        assert state.status is JobStatus.FAILED
        assert agent.uploads == []


class TestTransferStage:
    def test_successful_transfer(self, make_pipeline, make_config) -> None:
        agent = FakeTransferAgent()
        pipeline = make_pipeline(transfer_agents={"fake": agent}, targets=NAS)

        state = pipeline.run(make_config(target_names=["nas"]))

        assert state.status is JobStatus.SUCCESS
        assert agent.uploads[0][1:] == ("nas", "docs")
        assert Path(state.archive_path).exists()

    def test_failed_transfer_is_warning(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(transfer_agents={"fake": FakeTransferAgent(success=False)}, targets=NAS)

        state = pipeline.run(make_config(target_names=["nas"]))

        assert state.status is JobStatus.WARNINGS
        assert "connection refused" in state.reason

    def test_unknown_target_fails(self, make_pipeline, make_config) -> None:
        state = make_pipeline().run(make_config(target_names=["cloud"]))

        assert state.status is JobStatus.FAILED
        assert "cloud" in state.reason

    def test_target_without_agent_is_warning(self, make_pipeline, make_config) -> None:
        state = make_pipeline(targets=NAS).run(make_config(target_names=["nas"]))

        assert state.status is JobStatus.WARNINGS

    def test_local_copy_deleted_after_transfer(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(transfer_agents={"fake": FakeTransferAgent()}, targets=NAS)
        config = make_config(
            target_names=["nas"],
            generate_checksum=True,
            delete_local_archive_after_successful_transfer=True,
        )

        state = pipeline.run(config)

        archive = Path(state.archive_path)
        assert state.status is JobStatus.SUCCESS
        assert not archive.exists()
        assert not archive.with_name(archive.name + ".sha256").exists()

    def test_local_copy_kept_after_failed_transfer(self, make_pipeline, make_config) -> None:
        pipeline = make_pipeline(transfer_agents={"fake": FakeTransferAgent(success=False)}, targets=NAS)

        state = pipeline.run(make_config(target_names=["nas"], delete_local_archive_after_successful_transfer=True))

        assert Path(state.archive_path).exists()


class PartialArchiveEngine(FakeArchiveEngine):
    """7-Zip dying mid-write: leaves a truncated file behind and exits 2."""

    def create_archive(self, sources, archive_path, config, password=None):
        archive_path.write_bytes(b"7z\xbc\xaf truncated")
        return super().create_archive(sources, archive_path, config, password)


def seed_good_archive(dest_dir: Path) -> Path:
    dest_dir.mkdir(exist_ok=True)
    good = dest_dir / "docs_20200101-000000.7z"
    good.write_bytes(b"known good")
    os.utime(good, (1_600_000_000, 1_600_000_000))
    return good


class TestRetentionStage:
    def test_failed_verification_keeps_last_good_archive(self, make_pipeline, make_config, dest_dir) -> None:
        good = seed_good_archive(dest_dir)
        pipeline = make_pipeline(
            archive_engine=FakeArchiveEngine(test_exit_code=2),
            transfer_agents={"fake": FakeTransferAgent()},
            targets=NAS,
        )
        config = make_config(
            target_names=["nas"],
            verify_local_archive_before_transfer=True,
            generate_checksum=True,
            local_retention_count=1,
        )

        state = pipeline.run(config)

        assert state.status is JobStatus.FAILED
        assert good.exists()
        assert archives_in(dest_dir) == [good]
        assert sorted(p.name for p in dest_dir.iterdir()) == [good.name]

    def test_fatal_archive_exit_removes_partial_file(self, make_pipeline, make_config, dest_dir) -> None:
        good = seed_good_archive(dest_dir)

        state = make_pipeline(archive_engine=PartialArchiveEngine(exit_code=2)).run(
            make_config(local_retention_count=1)
        )

        assert state.status is JobStatus.FAILED
        assert not Path(state.archive_path).exists()
        assert archives_in(dest_dir) == [good]

    def test_failure_after_good_archive_keeps_it_but_does_not_prune(self, make_pipeline, make_config, dest_dir) -> None:
        good = seed_good_archive(dest_dir)

        # archive is fine; the job fails later on an unknown target
        state = make_pipeline().run(make_config(target_names=["cloud"], local_retention_count=1))

        assert state.status is JobStatus.FAILED
        assert good.exists()
        assert Path(state.archive_path).exists()

    def test_untested_archive_does_not_displace_good_one(self, make_pipeline, make_config, dest_dir) -> None:
        good = seed_good_archive(dest_dir)
        pipeline = make_pipeline(archive_engine=FakeArchiveEngine(test_exit_code=2))

        state = pipeline.run(make_config(test_archive_after_creation=True, local_retention_count=1))

        assert state.status is JobStatus.WARNINGS
        assert good.exists()
        assert Path(state.archive_path).exists()


class TestRetentionAndReporting:
    def test_retention_runs_after_archive(self, make_pipeline, make_config, dest_dir) -> None:
        dest_dir.mkdir()
        for i, stamp in enumerate(["20200101-000000", "20200102-000000", "20200103-000000"]):
            old = dest_dir / f"docs_{stamp}.7z"
            old.write_bytes(b"old")
            os.utime(old, (1_600_000_000 + i, 1_600_000_000 + i))

        state = make_pipeline().run(make_config(local_retention_count=2))

        remaining = [p.name for p in archives_in(dest_dir)]
        assert Path(state.archive_path).name in remaining
        assert "docs_20200103-000000.7z" in remaining
        assert len(remaining) == 2

    def test_skipped_job_does_not_touch_retention(self, make_pipeline, make_config, dest_dir, tmp_path) -> None:
        dest_dir.mkdir()
        for stamp in ["20200101-000000", "20200102-000000"]:
            (dest_dir / f"docs_{stamp}.7z").write_bytes(b"old")
        config = make_config(
            source_paths=[str(tmp_path / "nope")],
            on_source_path_not_found="SkipJob",
            local_retention_count=1,
        )

        make_pipeline().run(config)

        assert len(archives_in(dest_dir)) == 2

    def test_simulate_writes_nothing(self, make_pipeline, make_config, engine, output, dest_dir) -> None:
        state = make_pipeline(simulate=True).run(make_config(generate_checksum=True, pin_on_creation=True))

        assert state.status is JobStatus.SUCCESS
        assert engine.created == []
        assert not dest_dir.exists()
        assert "[SIMULATE]" in output.getvalue()

    def test_notifiers_and_reports_see_final_state(self, make_pipeline, make_config) -> None:
        notifier = RecordingNotifier()
        report = RecordingNotifier()

        state = make_pipeline(notifiers=[notifier], report_generators=[report]).run(make_config())

        assert notifier.seen == [state]
        assert report.seen == [state]
        assert notifier.seen[0].status is JobStatus.SUCCESS

    def test_notifier_failure_does_not_change_status(self, make_pipeline, make_config, output) -> None:
        state = make_pipeline(notifiers=[RecordingNotifier(fail=True)]).run(make_config())

        assert state.status is JobStatus.SUCCESS
        assert "notification failed" in output.getvalue()
