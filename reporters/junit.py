"""JUnit XML report generator for CI integration."""
from __future__ import annotations

import html
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from probe_types import ProbeRunResult
from reporters.base import BaseReporter, ReportFormat


class JUnitReporter(BaseReporter):
    """Generate JUnit XML reports for CI/CD integration."""

    extension = ".xml"

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JUNIT

    def _escape_xml(self, text: str) -> str:
        """Escape special XML characters."""
        return html.escape(str(text), quote=True)

    def _format_timestamp(self, dt: datetime) -> str:
        """Format datetime for JUnit XML."""
        return dt.strftime("%Y-%m-%dT%H:%M:%S")

    def _build_testcase_xml(self, result: ProbeRunResult) -> str:
        """Build XML for a single probe."""
        lines = []

        classname = "wsprobe.terminal"
        name = self._escape_xml(result.case.id)
        time_sec = f"{result.duration_seconds:.3f}"

        lines.append(f'    <testcase classname="{classname}" name="{name}" time="{time_sec}">')

        if not result.success:
            failure_msg = self._escape_xml(result.reason)
            failure_type = "VerificationFailure" if result.failed_checks else "ProbeError"

            lines.append(f'      <failure message="{failure_msg}" type="{failure_type}"><![CDATA[')
            lines.append(f"Probe: {result.case.id}")
            lines.append(f"URL: {result.case.url}")
            lines.append(f"Failure Reason: {result.reason}")
            for check in result.failed_checks:
                lines.append(f"  - {check.name}: {check.failure_reason}")
            lines.append("]]></failure>")

        lines.append("      <system-out><![CDATA[")
        lines.append(f"WebSocket: {result.ws_url or 'N/A'}")
        lines.append(f"Frames: sent={result.sent_frames} received={result.received_frames}")
        for check in result.checks:
            status = "PASS" if check.success else "FAIL"
            lines.append(f"  [{status}] {check.name} {check.measurements}")
        lines.append("]]></system-out>")
        lines.append("    </testcase>")

        return "\n".join(lines)

    def generate(self, result: ProbeRunResult, output_dir: Path) -> Path:
        """Generate JUnit XML report for a single probe result."""
        return self.generate_suite([result], output_dir)

    def generate_suite(self, results: List[ProbeRunResult], output_dir: Path) -> Path:
        """Generate combined JUnit XML report for multiple probe results."""
        now = datetime.now(timezone.utc)
        target = self._target(output_dir, "junit")

        tests = len(results)
        failures = sum(1 for r in results if not r.success)
        total_time = sum(r.duration_seconds for r in results)

        if results:
            timestamp_str = self._format_timestamp(min(r.started_at for r in results))
        else:
            timestamp_str = self._format_timestamp(now)

        lines = ['<?xml version="1.0" encoding="UTF-8"?>']
        lines.append(
            f'<testsuite name="WebSocket Probes" '
            f'tests="{tests}" '
            f'failures="{failures}" '
            f'errors="0" '
            f'skipped="0" '
            f'time="{total_time:.3f}" '
            f'timestamp="{timestamp_str}">'
        )

        lines.append("  <properties>")
        lines.append('    <property name="reporter" value="wsprobe-junit"/>')
        lines.append(f'    <property name="generated_at" value="{now.isoformat()}"/>')
        lines.append("  </properties>")

        for result in results:
            lines.append(self._build_testcase_xml(result))

        lines.append("</testsuite>")

        target.write_text("\n".join(lines), encoding="utf-8")
        return target
