"""Filesystem-backed loader for terminal WebSocket probe definitions."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from exceptions import ProbeLoadError, ProbeValidationError
from probe_types import ProbeCase, TerminalCommand

DEFAULT_TERMINAL_SELECTORS = [".xterm-helper-textarea", ".xterm", '[data-testid="terminal"]']


def _as_list(value: Any) -> List[str]:
    """Convert value to list of strings."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, str):
        return [value]
    raise ProbeLoadError(f"Expected string or list, got {type(value).__name__}")


def _as_set(value: Any) -> Set[str]:
    """Convert value to set of strings."""
    if value is None:
        return set()
    if isinstance(value, (list, set, tuple)):
        return {str(item) for item in value}
    if isinstance(value, str):
        return {value}
    raise ProbeLoadError(f"Expected string, list, or set, got {type(value).__name__}")


def _parse_command(item: Any, probe_id: str) -> TerminalCommand:
    if isinstance(item, str):
        return TerminalCommand(send=item)
    if isinstance(item, dict) and item.get("send"):
        expect = item.get("expect")
        return TerminalCommand(send=str(item["send"]), expect=str(expect) if expect is not None else None)
    raise ProbeValidationError(
        "Each command must be a string or a mapping with a 'send' key",
        probe_id=probe_id,
        field="commands",
    )


def _parse_probe(data: Dict[str, Any], fallback_id: str) -> ProbeCase:
    """Parse a dictionary into a ProbeCase."""
    if not isinstance(data, dict):
        raise ProbeLoadError("Probe payload must be a mapping")

    probe_id = str(data.get("id") or fallback_id)
    url = data.get("url") or data.get("start_url") or ""
    if not url:
        raise ProbeValidationError("Probe is missing a 'url' field", probe_id=probe_id, field="url")

    raw_commands = data.get("commands")
    if raw_commands is None:
        raw_commands = []
    elif not isinstance(raw_commands, list):
        raw_commands = [raw_commands]
    commands = [_parse_command(item, probe_id) for item in raw_commands]
    if not commands:
        raise ProbeValidationError(
            "Probe must define at least one command",
            probe_id=probe_id,
            field="commands",
        )

    ws_filter_regex = data.get("ws_filter_regex")
    if ws_filter_regex:
        try:
            re.compile(ws_filter_regex)
        except re.error as exc:
            raise ProbeValidationError(
                f"Invalid ws_filter_regex: {exc}",
                probe_id=probe_id,
                field="ws_filter_regex",
            ) from exc

    threshold = data.get("latency_threshold_ms")
    if threshold is not None:
        threshold = float(threshold)
        if threshold <= 0:
            raise ProbeValidationError(
                "latency_threshold_ms must be positive",
                probe_id=probe_id,
                field="latency_threshold_ms",
            )

    retry_count = int(data.get("retry_count", 0))
    if retry_count < 0:
        retry_count = 0

    priority = int(data.get("priority", 5))
    if priority < 1:
        priority = 1
    elif priority > 10:
        priority = 10

    return ProbeCase(
        id=probe_id,
        url=str(url),
        terminal_selectors=_as_list(data.get("terminal_selectors")) or list(DEFAULT_TERMINAL_SELECTORS),
        commands=commands,
        ws_filter=data.get("ws_filter"),
        ws_filter_regex=ws_filter_regex,
        latency_threshold_ms=threshold,
        verify_closure=bool(data.get("verify_closure", False)),
        close_selectors=_as_list(data.get("close_selectors")),
        notes=data.get("notes"),
        tags=_as_set(data.get("tags")),
        skip=bool(data.get("skip", False)),
        skip_reason=data.get("skip_reason"),
        retry_count=retry_count,
        priority=priority,
    )


def load_probe_file(path: Path) -> ProbeCase:
    """Load a single probe file (YAML or JSON)."""
    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yml", ".yaml"}:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
        return _parse_probe(data, fallback_id=path.stem)
    except (ProbeLoadError, ProbeValidationError):
        raise
    except Exception as exc:
        raise ProbeLoadError(f"Failed to load probe file: {exc}", file_path=str(path)) from exc


def discover_probes(
    probes_dir: Path,
    only_ids: Optional[Iterable[str]] = None,
    include_tags: Optional[Set[str]] = None,
    exclude_tags: Optional[Set[str]] = None,
    include_skipped: bool = False,
    sort_by_priority: bool = False,
) -> List[ProbeCase]:
    """
    Discover and load probes from a directory.

    Args:
        probes_dir: Directory containing probe YAML/JSON files
        only_ids: If provided, only load probes with these IDs
        include_tags: If provided, only include probes with at least one of these tags
        exclude_tags: If provided, exclude probes with any of these tags
        include_skipped: If True, include probes marked as skip=true
        sort_by_priority: If True, sort probes by priority (1=highest first)

    Returns:
        List of ProbeCase objects
    """
    probes_dir = probes_dir.expanduser().resolve()

    if not probes_dir.exists():
        raise ProbeLoadError(f"Probes directory does not exist: {probes_dir}")

    id_filter = set(only_ids or [])
    found: List[ProbeCase] = []

    yaml_files = sorted(probes_dir.glob("*.yaml")) + sorted(probes_dir.glob("*.yml"))
    json_files = sorted(probes_dir.glob("*.json"))

    for path in yaml_files + json_files:
        probe = load_probe_file(path)

        if id_filter and probe.id not in id_filter:
            continue
        if probe.skip and not include_skipped:
            continue
        if not probe.matches_filter(include_tags, exclude_tags):
            continue

        found.append(probe)

    if id_filter:
        missing = id_filter - {p.id for p in found}
        if missing:
            raise ProbeLoadError(f"Probes not found: {', '.join(sorted(missing))}")

    if sort_by_priority:
        found.sort(key=lambda p: p.priority)

    return found


def validate_probe(data: Dict[str, Any]) -> List[str]:
    """
    Validate probe data without loading.

    Returns list of validation errors (empty if valid).
    """
    errors = []

    if not isinstance(data, dict):
        return ["Probe must be a dictionary/mapping"]

    if not data.get("url") and not data.get("start_url"):
        errors.append("Missing required field: url")

    commands = data.get("commands")
    if not commands:
        errors.append("Missing required field: commands")
    elif not isinstance(commands, (str, list)):
        errors.append("commands must be a string or list")
    elif isinstance(commands, list):
        for i, item in enumerate(commands):
            if not isinstance(item, str) and not (isinstance(item, dict) and item.get("send")):
                errors.append(f"commands[{i}] must be a string or have a 'send' key")

    selectors = data.get("terminal_selectors")
    if selectors is not None and not isinstance(selectors, (str, list)):
        errors.append("terminal_selectors must be a string or list")

    regex = data.get("ws_filter_regex")
    if regex:
        try:
            re.compile(regex)
        except re.error as exc:
            errors.append(f"ws_filter_regex is not a valid pattern: {exc}")

    threshold = data.get("latency_threshold_ms")
    if threshold is not None:
        try:
            if float(threshold) <= 0:
                errors.append("latency_threshold_ms must be positive")
        except (ValueError, TypeError):
            errors.append("latency_threshold_ms must be a number")

    tags = data.get("tags")
    if tags is not None and not isinstance(tags, (str, list, set)):
        errors.append("tags must be a string or list")

    retry_count = data.get("retry_count")
    if retry_count is not None:
        try:
            if int(retry_count) < 0:
                errors.append("retry_count cannot be negative")
        except (ValueError, TypeError):
            errors.append("retry_count must be an integer")

    priority = data.get("priority")
    if priority is not None:
        try:
            val = int(priority)
            if val < 1 or val > 10:
                errors.append("priority must be between 1 and 10")
        except (ValueError, TypeError):
            errors.append("priority must be an integer")

    return errors
