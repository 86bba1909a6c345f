# poshbackup_config.py
# Example configuration: nightly documents + database dump, photos after documents.
from __future__ import annotations
from poshbackup import backup_config, backup_job, backup_set, target


def config():
    return backup_config(
        # Database dump written by the pre-backup hook, then archived
        backup_job(
            "database",
            "/var/backups/db-dump",
            destination="/mnt/backup/local",
            pre_backup_hook="pg_dumpall -f /var/backups/db-dump/all.sql",
            generate_checksum=True,
            test_archive_after_creation=True,
            local_retention_count=7,
        ),

        # Documents - only once the database dump is safely archived
        backup_job(
            "documents",
            "/home/alice/Documents",
            "/home/alice/Desktop",
            destination="/mnt/backup/local",
            depends_on=["database"],
            on_source_path_not_found="WarnAndContinue",
            generate_manifest=True,
            targets=["nas"],
            verify_local_archive_before_transfer=True,
        ),

        # Photos - large, archived without compression
        backup_job(
            "photos",
            "/home/alice/Pictures",
            destination="/mnt/backup/local",
            depends_on=["documents"],
            compression_level=0,
            run_only_if_path_exists=True,
        ),

        # Disabled until the external drive is back
        backup_job(
            "archive-drive",
            "/media/archive",
            destination="/mnt/backup/local",
            enabled=False,
        ),

        target("nas", "local", path="/mnt/nas/backups"),

        backup_set("nightly", "database", "documents", "photos", on_error_in_job="ContinueSet"),

        settings={
            "report_dir": "/var/log/posh-backup/reports",
            "treat_7zip_warnings_as_success": False,
            "retry_delay_seconds": 30,
        },
    )
