"""Console output and log formatting for posh-backup."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, TextIO

if TYPE_CHECKING:
    from ..model import RunState, ValidationMessage

LEVELS = ("DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "SIMULATE", "ADVICE")


class Console:
    """
    Level-tagged output shared by every component of a run.

    One instance is created by the CLI (or the caller) and passed explicitly
    to the checker, pipeline and providers.
    """

    def __init__(
        self,
        debug: bool = False,
        log_file: str | Path | None = None,
        stream: Optional[TextIO] = None,
    ):
        """
        Args:
            debug: If True, show DEBUG lines and full stack traces
            log_file: Optional file that receives every line with a timestamp
            stream: Output stream (defaults to sys.stdout at write time)
        """
        self.debug = debug
        self.log_file = Path(log_file) if log_file else None
        self.stream = stream
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Level-tagged logging
    # ------------------------------------------------------------------

    def log(self, message: str, level: str = "INFO") -> None:
        level = level.upper()
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        if level == "DEBUG" and not self.debug:
            self._to_file(level, message)
            return

        line = message if level == "INFO" else f"[{level}] {message}"
        print(line, file=self._out(err=level == "ERROR"))
        self._to_file(level, message)

    def debug_msg(self, message: str) -> None:
        self.log(message, "DEBUG")

    def info(self, message: str) -> None:
        self.log(message, "INFO")

    def success(self, message: str) -> None:
        self.log(message, "SUCCESS")

    def warning(self, message: str) -> None:
        self.log(message, "WARNING")

    def error(self, message: str) -> None:
        self.log(message, "ERROR")

    def simulate(self, message: str) -> None:
        self.log(message, "SIMULATE")

    def advice(self, message: str) -> None:
        self.log(message, "ADVICE")

    def _out(self, err: bool = False) -> TextIO:
        if self.stream is not None:
            return self.stream
        return sys.stderr if err else sys.stdout

    def _to_file(self, level: str, message: str) -> None:
        if self.log_file is None:
            return
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self.log_file.open("a", encoding="utf-8") as f:
            f.write(f"{stamp} [{level}] {message}\n")

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self.info(f"\n{title}")
        self.info("-" * len(title))

    def print_run_started(
        self,
        config: str,
        job_count: int,
        simulate: bool = False,
        set_name: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        self.info("\nRUN STARTED")
        self.info(f"Config: {config}")
        if set_name:
            self.info(f"Set: {set_name}")
        self.info(f"Jobs: {job_count}")
        if simulate:
            self.simulate("Simulation mode: no archives, transfers or deletions will be made")
        self.info("")

    def print_job_start(self, name: str) -> None:
        self.info(f"\nJOB STARTED: {name}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self.info(f"\nJOB SKIPPED: {name}")
        self.info(f"Reason: {reason}")

    def print_plan(self, ordered_jobs: Iterable[str]) -> None:
        """Print the execution order."""
        self.print_header("EXECUTION PLAN")
        for idx, name in enumerate(ordered_jobs, start=1):
            self.info(f"  {idx}. {name}")

    def print_validation_messages(self, messages: Iterable[ValidationMessage]) -> None:
        for m in messages:
            if m.kind == "error":
                self.error(m.text)
            else:
                self.warning(m.text)
            if m.advice:
                self.advice(m.advice)

    def print_results(self, run_state: RunState) -> None:
        """Print final results summary."""
        self.info("\n" + "=" * 40)
        self.info("RESULTS")
        self.info("=" * 40)
        for name, state in run_state.jobs.items():
            line = f"  {name}: {state.status.value.upper()}"
            if state.reason:
                line += f" ({state.reason})"
            self.info(line)
        self.info(f"Overall: {run_state.overall_status().value.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        out = self._out(err=True)
        print(f"\nERROR: {title}", file=out)
        print(f"{message}", file=out)
        if details:
            for detail in details:
                print(f"  {detail}", file=out)
        if suggestion:
            print(f"\n{suggestion}", file=out)
        self._to_file("ERROR", f"{title}: {message}")

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=self._out(err=True))
        else:
            print(f"Error: {exc}", file=self._out(err=True))
        self._to_file("ERROR", str(exc))
