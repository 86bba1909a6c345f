# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from .model import ValidationMessage


@dataclass
class BackupError(Exception):
    """
    Structured backup error with enough context for:
      - clean CLI output
      - per-job run state reasons
      - debugging without full tracebacks
    """
    kind: str
    job: str
    message: str
    stage: Optional[str] = None
    details: Dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.stage:
            lines.append(f"stage={self.stage}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class FailJob(BackupError):
    """Aborts the remaining stages of a job and records it as failed."""


class SkipJob(BackupError):
    """Aborts the remaining stages of a job and records it as skipped."""


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded, resolved or selected."""


class DependencyValidationError(ConfigurationError):
    """Raised when the dependency graph has at least one error-level message."""

    def __init__(self, messages: List[ValidationMessage]):
        self.messages = list(messages)
        errors = [m for m in self.messages if m.kind == "error"]
        super().__init__(
            f"Job dependency validation failed with {len(errors)} error(s)"
        )
