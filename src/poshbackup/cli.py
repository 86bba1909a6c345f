# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from poshbackup.config import DEFAULT_CONFIG_FILES, find_config_files, load_config
from poshbackup.errors import ConfigurationError, DependencyValidationError
from poshbackup.model import BackupConfig, ExitCode
from poshbackup.runner import default_pipeline, plan_run, run_backup, select_jobs
from poshbackup.ui.console import Console


def discover_config(config_arg: str | None, console: Console) -> Path:
    """
    Find the config file from the argument or the current directory.

    Raises:
        SystemExit: If no config (or more than one default config) is found
    """
    if config_arg:
        config_path = Path(config_arg)
        if not config_path.exists():
            console.print_error(
                "Config file not found",
                f"Could not find config file: {config_arg}",
                suggestion="Specify an existing file:\n  posh-backup run --config poshbackup_config.py",
            )
            sys.exit(int(ExitCode.CONFIGURATION_ERROR))
        return config_path

    found = find_config_files(".")
    if not found:
        console.print_error(
            "No config file found",
            "Could not find a backup configuration.",
            details=["Looked for:"] + [f"  {name}" for name in DEFAULT_CONFIG_FILES],
            suggestion="Create poshbackup_config.py, or pass one explicitly:\n  posh-backup run --config my_config.py",
        )
        sys.exit(int(ExitCode.CONFIGURATION_ERROR))

    if len(found) > 1:
        console.print_error(
            "Multiple config files found",
            "Found more than one default config. Please specify which one to use:",
            details=[f"  {p}" for p in found],
            suggestion="  posh-backup run --config poshbackup_config.py",
        )
        sys.exit(int(ExitCode.CONFIGURATION_ERROR))

    return found[0]


def _load(ctx: click.Context, config_arg: str | None) -> BackupConfig:
    console: Console = ctx.obj["console"]
    config_path = discover_config(config_arg, console)
    try:
        return load_config(config_path)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print_error("Failed to load config", f"Could not load {config_path}", details=[str(e)])
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(int(ExitCode.CONFIGURATION_ERROR))


def _config_failure(console: Console, e: ConfigurationError) -> None:
    if isinstance(e, DependencyValidationError):
        console.print_error(
            "Invalid job dependencies",
            str(e),
            suggestion="Fix the problems above before running any backup.",
        )
        console.print_validation_messages(e.messages)
    else:
        console.print_error("Configuration error", str(e))
    sys.exit(int(ExitCode.CONFIGURATION_ERROR))


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write log lines to this file")
@click.pass_context
def cli(ctx, debug, log_file):
    """posh-backup: dependency-aware backup job runner."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["console"] = Console(debug=debug, log_file=log_file)


@cli.command()
@click.option("--config", "config_arg", default=None, help="Config file (.py or .json)")
@click.option("--job", "jobs", multiple=True, help="Job to run (repeatable); prerequisites are added automatically")
@click.option("--set", "set_name", default=None, help="Backup set to run")
@click.option("--simulate", is_flag=True, default=False, help="Log what would happen without archiving, transferring or deleting")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Answer yes to confirmation prompts")
@click.option("--test-archive", is_flag=True, default=False, help="Test archive integrity after creation for every job")
@click.option("--pin", is_flag=True, default=False, help="Pin every archive created in this run")
@click.pass_context
def run(ctx, config_arg, jobs, set_name, simulate, assume_yes, test_archive, pin):
    """Run backup jobs."""
    console: Console = ctx.obj["console"]
    config = _load(ctx, config_arg)

    try:
        requested, _ = select_jobs(config, jobs, set_name)
        console.print_run_started(
            config=Path(config.source or "").name,
            job_count=len(requested),
            simulate=simulate,
            set_name=set_name,
        )

        confirm = None if assume_yes else (lambda prompt: click.confirm(prompt, default=False))
        pipeline = default_pipeline(console, config, simulate=simulate, confirm=confirm)
        summary = run_backup(
            config,
            requested,
            console=console,
            simulate=simulate,
            set_name=set_name,
            pipeline=pipeline,
            cli_overrides={
                "test_archive_after_creation": True if test_archive else None,
                "pin_on_creation": True if pin else None,
            },
        )
    except ConfigurationError as e:
        _config_failure(console, e)
    except KeyboardInterrupt:
        console.info("\nInterrupted by user")
        sys.exit(130)

    console.print_results(summary.run_state)
    sys.exit(int(summary.exit_code))


@cli.command()
@click.option("--config", "config_arg", default=None, help="Config file (.py or .json)")
@click.option("--job", "jobs", multiple=True, help="Job to include (repeatable)")
@click.option("--set", "set_name", default=None, help="Backup set to include")
@click.pass_context
def plan(ctx, config_arg, jobs, set_name):
    """Validate dependencies and print the execution order without running anything."""
    console: Console = ctx.obj["console"]
    config = _load(ctx, config_arg)

    try:
        requested, _ = select_jobs(config, jobs, set_name)
        result, _messages = plan_run(config, requested, console)
    except ConfigurationError as e:
        _config_failure(console, e)

    console.print_plan(result.ordered_jobs)


@cli.command(name="list")
@click.option("--config", "config_arg", default=None, help="Config file (.py or .json)")
@click.pass_context
def list_jobs(ctx, config_arg):
    """List configured jobs and sets."""
    console: Console = ctx.obj["console"]
    config = _load(ctx, config_arg)

    console.print_header("JOBS")
    for name, job in config.jobs.items():
        state = "enabled" if job.enabled else "disabled"
        deps = f" (depends on: {', '.join(job.depends_on)})" if job.depends_on else ""
        console.info(f"  {name} [{state}]{deps}")

    if config.sets:
        console.print_header("SETS")
        for name, s in config.sets.items():
            console.info(f"  {name}: {', '.join(s.job_names)} [on error: {s.on_error_in_job}]")


if __name__ == "__main__":
    cli()
