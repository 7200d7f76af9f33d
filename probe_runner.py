"""CLI-friendly orchestrator for running terminal WebSocket probes."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set
from urllib.parse import urljoin

from browser import SimpleBrowser
from config import WSProbeConfig, load_config
from exceptions import (
    BrowserError,
    ProbeExecutionError,
    ProbeLoadError,
    ScreenshotError,
    WebSocketTimeoutError,
    WSProbeError,
)
from probe_loader import discover_probes
from probe_types import ProbeCase, ProbeRunResult, ProbeSuiteResult, TerminalCommand, VerificationRecord
from reporters import JSONReporter, JUnitReporter, ReportFormat
from ws_monitor import WebSocketMonitor
from ws_types import ClosureResult, ConnectivityResult, IntegrityResult, PerformanceResult

BrowserFactory = Callable[[], SimpleBrowser]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def connectivity_record(result: ConnectivityResult) -> VerificationRecord:
    return VerificationRecord(
        name="connectivity",
        success=result.success,
        failure_reason=result.failure_reason,
        measurements={"connection_time_ms": round(result.connection_time, 1), "url": result.url},
    )


def performance_record(command: str, result: PerformanceResult) -> VerificationRecord:
    return VerificationRecord(
        name=f"performance[{command}]",
        success=result.success,
        failure_reason=result.failure_reason,
        measurements={
            "latency_ms": round(result.latency, 1),
            "threshold_ms": result.threshold,
            "new_frames": result.new_frames,
        },
    )


def integrity_record(result: IntegrityResult) -> VerificationRecord:
    return VerificationRecord(
        name="integrity",
        success=result.success,
        failure_reason=result.failure_reason,
        measurements={
            "valid_frames": result.valid_frames,
            "invalid_frames": result.invalid_frames,
            "total_frames": result.total_frames,
        },
    )


def closure_record(result: ClosureResult) -> VerificationRecord:
    return VerificationRecord(
        name="closure",
        success=result.success,
        failure_reason=result.failure_reason,
        measurements={"is_closed": result.is_closed},
    )


class ProbeRunner:
    """High-level runner that manages browser lifecycle per probe."""

    def __init__(
        self,
        config: WSProbeConfig,
        logger: Optional[logging.Logger] = None,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("probe_runner")
        self.browser_factory = browser_factory or self._default_browser

    def _default_browser(self) -> SimpleBrowser:
        cfg = self.config.browser
        return SimpleBrowser(
            browser_type=cfg.browser,
            headless=cfg.headless,
            viewport_width=cfg.viewport_width,
            viewport_height=cfg.viewport_height,
            slow_mo=cfg.slow_mo,
            navigation_timeout_ms=cfg.navigation_timeout_ms,
            action_timeout_ms=cfg.action_timeout_ms,
            cloudflare_wait_ms=cfg.cloudflare_wait_ms,
            logger=self.logger,
        )

    def resolve_url(self, url: str) -> str:
        """Resolve a relative probe URL against the configured base URL."""
        if self.config.base_url and not url.startswith(("http://", "https://")):
            return urljoin(self.config.base_url + "/", url.lstrip("/"))
        return url

    async def _run_command(
        self,
        browser: SimpleBrowser,
        monitor: WebSocketMonitor,
        case: ProbeCase,
        command: TerminalCommand,
        threshold_ms: float,
    ) -> List[VerificationRecord]:
        """Type one command and measure the round trip it causes."""
        initial_count = monitor.frame_count
        initial_received = len(monitor.state.received_frames)
        send_time = monitor.now()
        try:
            await browser.type_in_terminal(case.terminal_selectors, command.send)
        except BrowserError as exc:
            raise ProbeExecutionError(
                f"Could not type {command.send!r} into the terminal: {exc.message}",
                probe_id=case.id,
                step="type",
            ) from exc

        records: List[VerificationRecord] = []
        try:
            response_time = await monitor.wait_for_response(
                initial_count, initial_received_count=initial_received
            )
        except WebSocketTimeoutError as exc:
            records.append(VerificationRecord(
                name=f"performance[{command.send}]",
                success=False,
                failure_reason=exc.message,
            ))
            return records

        result = monitor.verify_performance(initial_count, send_time, response_time, threshold_ms)
        record = performance_record(command.send, result)
        # The response timestamp falls back to older frames when nothing new arrived.
        if len(monitor.state.received_frames) <= initial_received or response_time < send_time:
            no_reply = "No reply frame received after sending the command"
            record.success = False
            record.failure_reason = f"{record.failure_reason}; {no_reply}" if record.failure_reason else no_reply
        records.append(record)

        if command.expect:
            try:
                await monitor.wait_for_output(command.expect, initial_received)
                records.append(VerificationRecord(name=f"output[{command.send}]", success=True))
            except WebSocketTimeoutError as exc:
                records.append(VerificationRecord(
                    name=f"output[{command.send}]",
                    success=False,
                    failure_reason=exc.message,
                ))
        return records

    async def _trigger_closure(self, browser: SimpleBrowser, case: ProbeCase) -> None:
        """Close the terminal through the UI, or leave the page if no control is given."""
        if case.close_selectors:
            try:
                await browser.click(case.close_selectors, timeout_ms=self.config.browser.action_timeout_ms)
            except BrowserError as exc:
                raise ProbeExecutionError(
                    f"Could not trigger terminal closure: {exc.message}",
                    probe_id=case.id,
                    step="close",
                ) from exc
        else:
            await browser.goto("about:blank")

    async def _capture_failure(self, browser: SimpleBrowser, case: ProbeCase) -> Optional[str]:
        if not self.config.reporting.save_screenshots or browser.page is None:
            return None
        stamp = _utcnow().strftime("%Y%m%d-%H%M%S")
        path = self.config.reporting.screenshots_folder / f"{case.id}-{stamp}.png"
        try:
            await browser.screenshot(path)
            return str(path)
        except ScreenshotError as exc:
            self.logger.warning(f"Could not capture failure screenshot: {exc}")
            return None

    async def run_probe(self, case: ProbeCase, retry_attempt: int = 0) -> ProbeRunResult:
        """Run a single probe."""
        browser = self.browser_factory()
        monitor: Optional[WebSocketMonitor] = None
        checks: List[VerificationRecord] = []
        screenshot_path: Optional[str] = None
        console_errors: List[str] = []
        threshold_ms = case.latency_threshold_ms or self.config.monitor.latency_threshold_ms

        start = _utcnow()
        try:
            await browser.start()
            monitor = browser.monitor_websockets(case.url_filter, self.config.monitor)
            await browser.navigate_with_cloudflare_handling(self.resolve_url(case.url))
            await monitor.wait_for_connection()

            for command in case.commands:
                checks.extend(await self._run_command(browser, monitor, case, command, threshold_ms))

            checks.append(connectivity_record(monitor.verify_connectivity()))
            checks.append(integrity_record(monitor.verify_integrity()))

            if case.verify_closure:
                await self._trigger_closure(browser, case)
                try:
                    await monitor.wait_for_closure()
                except WebSocketTimeoutError as exc:
                    self.logger.warning(f"Probe {case.id}: {exc.message}")
                checks.append(closure_record(monitor.verify_closure()))

            failed = [c for c in checks if not c.success]
            success = not failed
            if success:
                reason = f"All {len(checks)} checks passed"
            else:
                reason = "; ".join(f"{c.name}: {c.failure_reason}" for c in failed)
        except WSProbeError as exc:
            self.logger.error(f"Probe {case.id} failed: {exc}")
            success = False
            reason = str(exc)
        except Exception as exc:
            self.logger.error(f"Probe {case.id} crashed: {exc}", exc_info=True)
            success = False
            reason = f"Runner exception: {exc}"

        try:
            if not success:
                screenshot_path = await self._capture_failure(browser, case)
            console_errors = browser.get_console_errors()
        finally:
            await browser.close()

        state = monitor.state if monitor is not None else None
        return ProbeRunResult(
            case=case,
            success=success,
            started_at=start,
            finished_at=_utcnow(),
            reason=reason,
            checks=checks,
            retry_attempt=retry_attempt,
            browser_type=self.config.browser.browser,
            ws_url=state.url if state else None,
            sent_frames=len(state.sent_frames) if state else 0,
            received_frames=len(state.received_frames) if state else 0,
            screenshot_path=screenshot_path,
            console_errors=console_errors,
        )

    async def run_probe_with_retries(self, case: ProbeCase) -> ProbeRunResult:
        """Run a probe with configured retries."""
        result: Optional[ProbeRunResult] = None
        for attempt in range(case.retry_count + 1):
            if attempt > 0:
                self.logger.info(f"Retrying probe {case.id} (attempt {attempt + 1}/{case.retry_count + 1})")
            result = await self.run_probe(case, retry_attempt=attempt)
            if result.success:
                return result
        return result

    def _skipped(self, case: ProbeCase) -> ProbeRunResult:
        self.logger.info(f"Skipping {case.id}: {case.skip_reason or 'marked as skip'}")
        now = _utcnow()
        return ProbeRunResult(
            case=case,
            success=False,
            started_at=now,
            finished_at=now,
            reason=f"Skipped: {case.skip_reason or 'marked as skip'}",
        )

    async def run_sequential(self, cases: Sequence[ProbeCase]) -> List[ProbeRunResult]:
        """Run probes sequentially."""
        results: List[ProbeRunResult] = []
        for i, case in enumerate(cases, 1):
            self.logger.info(f"=== Running probe {case.id} ({i}/{len(cases)}) ===")
            if case.skip:
                results.append(self._skipped(case))
                continue
            result = await self.run_probe_with_retries(case)
            results.append(result)
            self._generate_report(result)
        return results

    async def run_parallel(
        self,
        cases: Sequence[ProbeCase],
        max_workers: int = 4,
    ) -> List[ProbeRunResult]:
        """Run probes in parallel with limited concurrency."""
        semaphore = asyncio.Semaphore(max_workers)

        async def run_with_limit(case: ProbeCase, index: int) -> ProbeRunResult:
            async with semaphore:
                self.logger.info(f"=== Starting probe {case.id} ({index}/{len(cases)}) ===")
                if case.skip:
                    return self._skipped(case)
                result = await self.run_probe_with_retries(case)
                self._generate_report(result)
                return result

        tasks = [run_with_limit(case, i + 1) for i, case in enumerate(cases)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        final_results = []
        for case, result in zip(cases, results):
            if isinstance(result, Exception):
                self.logger.error(f"Probe {case.id} failed with exception: {result}")
                now = _utcnow()
                final_results.append(ProbeRunResult(
                    case=case,
                    success=False,
                    started_at=now,
                    finished_at=now,
                    reason=f"Exception: {result}",
                ))
            else:
                final_results.append(result)
        return final_results

    async def run_all(self, cases: Sequence[ProbeCase]) -> ProbeSuiteResult:
        """Run all probes with configured parallelism."""
        start_time = _utcnow()

        if self.config.parallel_workers > 1:
            self.logger.info(f"Running {len(cases)} probes with {self.config.parallel_workers} parallel workers")
            results = await self.run_parallel(cases, self.config.parallel_workers)
        else:
            results = await self.run_sequential(cases)

        suite_result = ProbeSuiteResult(
            results=results,
            started_at=start_time,
            finished_at=_utcnow(),
        )
        self._generate_suite_reports(suite_result)
        return suite_result

    def _reporters(self):
        output_format = self.config.reporting.output_format
        if output_format in (ReportFormat.JSON, ReportFormat.ALL, "json", "all"):
            yield JSONReporter()
        if output_format in (ReportFormat.JUNIT, ReportFormat.ALL, "junit", "all"):
            yield JUnitReporter()

    def _generate_report(self, result: ProbeRunResult) -> None:
        """Generate reports for a single probe result."""
        for reporter in self._reporters():
            path = reporter.generate(result, self.config.reporting.reports_folder)
            self.logger.info(f"{reporter.format.value.upper()} report: {path}")

    def _generate_suite_reports(self, suite: ProbeSuiteResult) -> None:
        """Generate suite-level reports."""
        for reporter in self._reporters():
            path = reporter.generate_suite(suite.results, self.config.reporting.reports_folder)
            self.logger.info(f"Suite {reporter.format.value.upper()} report: {path}")


async def run_from_cli_args(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Entry point shared by the CLI script."""
    include_tags: Optional[Set[str]] = set(args.tag) if args.tag else None
    exclude_tags: Optional[Set[str]] = set(args.exclude_tag) if args.exclude_tag else None

    try:
        cases = discover_probes(
            Path(args.probes_dir),
            only_ids=args.probe if args.probe else None,
            include_tags=include_tags,
            exclude_tags=exclude_tags,
            include_skipped=args.include_skipped,
            sort_by_priority=args.sort_by_priority,
        )
    except ProbeLoadError as exc:
        logger.error(str(exc))
        return 1

    if not cases:
        logger.warning("No probes found matching filters")
        return 0

    config_path = Path(args.config) if args.config else None
    cli_overrides = {
        "browser": args.browser,
        "headful": args.headful or None,
        "parallel": args.parallel,
        "verbose": args.verbose or None,
        "output_format": args.output_format,
        "reports_dir": args.reports_dir,
        "base_url": args.base_url,
        "latency_threshold": args.latency_threshold,
    }
    cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}

    try:
        config = load_config(config_path, cli_overrides)
    except Exception as exc:
        logger.error(f"Failed to load config: {exc}")
        return 1

    logger.info(f"Loaded {len(cases)} probe(s)")
    if config.verbose:
        logger.info(f"Browser: {config.browser.browser}, Headless: {config.browser.headless}")
        logger.info(f"Latency threshold: {config.monitor.latency_threshold_ms:g}ms")
        logger.info(f"Output format: {config.reporting.output_format}")

    runner = ProbeRunner(config=config, logger=logger)
    suite_result = await runner.run_all(cases)

    print("\n" + "=" * 60)
    print("PROBE SUITE SUMMARY")
    print("=" * 60)
    print(f"Total:  {suite_result.total}")
    print(f"Passed: {suite_result.passed}")
    print(f"Failed: {suite_result.failed}")
    print(f"Pass Rate: {suite_result.pass_rate:.1f}%")
    print(f"Duration: {suite_result.duration_seconds:.1f}s")
    print("=" * 60)

    if suite_result.failed_probes:
        print("\nFailed Probes:")
        for result in suite_result.failed_probes:
            print(f"  - {result.case.id}: {result.reason[:120]}")

    return 1 if suite_result.failed > 0 else 0


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Verify terminal WebSocket connectivity, latency, integrity and closure in a real browser.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Run all probes
  %(prog)s --probe terminal-whoami           # Run a specific probe
  %(prog)s --tag smoke --headful             # Run smoke probes with a visible browser
  %(prog)s --latency-threshold 500           # Relax the latency budget
  %(prog)s --output-format all               # Write JSON and JUnit reports
        """,
    )

    probe_group = parser.add_argument_group("Probe Selection")
    probe_group.add_argument(
        "--probes-dir",
        default="probes",
        help="Directory containing probe YAML/JSON files (default: probes)",
    )
    probe_group.add_argument(
        "--probe",
        action="append",
        help="Specific probe ID to run (can be used multiple times)",
    )
    probe_group.add_argument(
        "--tag",
        action="append",
        help="Only run probes with this tag (can be used multiple times)",
    )
    probe_group.add_argument(
        "--exclude-tag",
        action="append",
        help="Exclude probes with this tag (can be used multiple times)",
    )
    probe_group.add_argument(
        "--include-skipped",
        action="store_true",
        help="Include probes marked as skip=true",
    )
    probe_group.add_argument(
        "--sort-by-priority",
        action="store_true",
        help="Sort probes by priority (1=highest first)",
    )

    browser_group = parser.add_argument_group("Browser Options")
    browser_group.add_argument(
        "--browser",
        choices=["chromium", "firefox", "webkit"],
        help="Browser engine to use (default: chromium)",
    )
    browser_group.add_argument(
        "--headful",
        action="store_true",
        help="Run browser in headful mode (show GUI)",
    )
    browser_group.add_argument(
        "--base-url",
        help="Base URL that relative probe URLs are resolved against",
    )

    exec_group = parser.add_argument_group("Execution Options")
    exec_group.add_argument(
        "--parallel",
        type=int,
        metavar="N",
        help="Number of parallel probe workers (default: 1)",
    )
    exec_group.add_argument(
        "--latency-threshold",
        type=float,
        metavar="MS",
        help="Latency budget in milliseconds (default: WS_LATENCY_THRESHOLD_MS or 300)",
    )
    exec_group.add_argument(
        "--config",
        help="Path to config file (default: wsprobe.json/.yaml if present)",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--reports-dir",
        help="Directory for saving reports (default: reports)",
    )
    output_group.add_argument(
        "--output-format",
        choices=["json", "junit", "all"],
        help="Report output format (default: json)",
    )
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    output_group.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-essential output",
    )

    return parser


def main() -> None:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args()

    if args.quiet:
        log_level = logging.WARNING
    elif args.verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] %(message)s" if not args.verbose else "[%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("probe_runner")

    try:
        exit_code = asyncio.run(run_from_cli_args(args, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130
    except WSProbeError as exc:
        logger.error(f"Error: {exc}")
        exit_code = 1
    except Exception as exc:
        logger.exception(f"Unexpected error: {exc}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
