# providers/snapshot.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence

from ..config import EffectiveJobConfig


@dataclass
class SnapshotResult:
    """
    Outcome of a snapshot request.

    `mapped_paths` maps each original source path to the path inside the
    snapshot that should be archived instead. Paths missing from the mapping
    are archived from the live filesystem.
    """
    success: bool
    mapped_paths: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    session: Any = None


class SnapshotProvider(Protocol):
    def create_snapshot(
        self,
        job_name: str,
        paths: Sequence[str],
        config: EffectiveJobConfig,
    ) -> SnapshotResult: ...

    def remove_snapshot(self, session: Any) -> None: ...


def map_snapshot_paths(sources: Sequence[str], result: SnapshotResult) -> list[str]:
    return [result.mapped_paths.get(s, s) for s in sources]
