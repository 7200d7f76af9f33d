"""JSON report generator for probe runs."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from probe_types import ProbeRunResult, VerificationRecord
from reporters.base import BaseReporter, ReportFormat

REPORT_VERSION = "1.0"


def _latencies(results: List[ProbeRunResult]) -> List[float]:
    return [
        c.measurements["latency_ms"]
        for r in results
        for c in r.checks
        if "latency_ms" in c.measurements
    ]


class JSONReporter(BaseReporter):
    """Generate machine-readable JSON reports."""

    extension = ".json"

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JSON

    def _check_to_dict(self, check: VerificationRecord) -> Dict[str, Any]:
        return {
            "name": check.name,
            "success": check.success,
            "failure_reason": check.failure_reason,
            "measurements": check.measurements,
        }

    def _result_to_dict(self, result: ProbeRunResult) -> Dict[str, Any]:
        """Convert ProbeRunResult to JSON-serializable dict."""
        case = result.case
        return {
            "probe": {
                "id": case.id,
                "url": case.url,
                "ws_filter": case.ws_filter_regex or case.ws_filter,
                "commands": [c.send for c in case.commands],
                "latency_threshold_ms": case.latency_threshold_ms,
                "verify_closure": case.verify_closure,
                "notes": case.notes,
            },
            "result": {
                "success": result.success,
                "reason": result.reason,
                "started_at": result.started_at.isoformat(),
                "finished_at": result.finished_at.isoformat(),
                "duration_seconds": result.duration_seconds,
                "retry_attempt": result.retry_attempt,
                "browser": result.browser_type,
                "ws_url": result.ws_url,
                "sent_frames": result.sent_frames,
                "received_frames": result.received_frames,
                "screenshot": result.screenshot_path,
                "console_errors": result.console_errors,
            },
            "checks": [self._check_to_dict(c) for c in result.checks],
        }

    def _document(self, results: List[ProbeRunResult], summary: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "report_version": REPORT_VERSION,
            "probes": [self._result_to_dict(r) for r in results],
            "summary": summary,
        }

    def _write(self, target: Path, data: Dict[str, Any]) -> Path:
        target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return target

    def generate(self, result: ProbeRunResult, output_dir: Path) -> Path:
        summary = {
            "total": 1,
            "passed": 1 if result.success else 0,
            "failed": 0 if result.success else 1,
            "pass_rate": 100.0 if result.success else 0.0,
        }
        return self._write(self._target(output_dir, result.case.id), self._document([result], summary))

    def generate_suite(self, results: List[ProbeRunResult], output_dir: Path) -> Path:
        passed = sum(1 for r in results if r.success)
        latencies = _latencies(results)
        avg_latency: Optional[float] = round(sum(latencies) / len(latencies), 1) if latencies else None

        summary = {
            "total": len(results),
            "passed": passed,
            "failed": len(results) - passed,
            "pass_rate": round(passed / len(results) * 100, 2) if results else 0.0,
            "total_duration_seconds": round(sum(r.duration_seconds for r in results), 2),
            "avg_latency_ms": avg_latency,
            "max_latency_ms": round(max(latencies), 1) if latencies else None,
        }
        data = self._document(results, summary)
        data["failed_probes"] = [{"id": r.case.id, "reason": r.reason} for r in results if not r.success]
        return self._write(self._target(output_dir, "suite"), data)
