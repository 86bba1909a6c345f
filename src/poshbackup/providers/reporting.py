# providers/reporting.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..config import EffectiveJobConfig
from ..model import JobRunState
from ..ui.console import Console


class ReportGenerator(Protocol):
    def generate(self, state: JobRunState, config: EffectiveJobConfig, simulate: bool = False) -> Optional[Path]: ...


class NotificationDispatcher(Protocol):
    def notify(self, state: JobRunState, config: EffectiveJobConfig, simulate: bool = False) -> None: ...


def report_payload(state: JobRunState, config: EffectiveJobConfig, simulate: bool) -> Dict[str, Any]:
    return {
        "job": state.to_dict(),
        "simulate": simulate,
        "config": config.model_dump(
            mode="json",
            include={
                "source_paths",
                "destination_dir",
                "archive_extension",
                "target_names",
                "depends_on",
                "password_in_use_for_7zip",
            },
        ),
    }


class JsonReportGenerator:
    """Writes <report_dir>/<job>_<timestamp>.json. No-op for jobs without report_dir."""

    def __init__(self, console: Console):
        self.console = console

    def generate(self, state: JobRunState, config: EffectiveJobConfig, simulate: bool = False) -> Optional[Path]:
        if not config.report_dir:
            return None
        report_dir = Path(config.report_dir).expanduser()
        report_dir.mkdir(parents=True, exist_ok=True)
        stamp = state.started_at.strftime("%Y%m%d-%H%M%S")
        out = report_dir / f"{config.name}_{stamp}.json"
        out.write_text(
            json.dumps(report_payload(state, config, simulate), sort_keys=True, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        self.console.info(f"[{config.name}] report written: {out}")
        return out


class WebhookNotificationDispatcher:
    """POSTs the job outcome as JSON to `notification_webhook_url`."""

    def __init__(self, console: Console, timeout: float = 30.0):
        self.console = console
        self.timeout = timeout

    def notify(self, state: JobRunState, config: EffectiveJobConfig, simulate: bool = False) -> None:
        url = config.notification_webhook_url
        if not url:
            return
        if simulate:
            self.console.simulate(f"[{config.name}] would POST notification to {url}")
            return

        data = json.dumps(report_payload(state, config, simulate)).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response.read()
        except urllib.error.HTTPError as e:
            raise RuntimeError(f"Notification failed: HTTP {e.code} {e.reason}") from e
        except urllib.error.URLError as e:
            raise RuntimeError(f"Notification failed: could not connect to {url} ({e.reason})") from e
        self.console.info(f"[{config.name}] notification sent")
