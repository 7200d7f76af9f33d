"""Unit tests for probe_loader module."""
from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from exceptions import ProbeLoadError, ProbeValidationError
from probe_loader import DEFAULT_TERMINAL_SELECTORS, discover_probes, load_probe_file, validate_probe


def write_probe(directory: Path, name: str, data: dict) -> Path:
    path = directory / name
    path.write_text(json.dumps(data))
    return path


class TestLoadProbeFile:
    """Tests for load_probe_file."""

    def test_loads_yaml(self, temp_dir: Path, sample_probe_yaml: str):
        path = temp_dir / "terminal-smoke.yaml"
        path.write_text(sample_probe_yaml)

        probe = load_probe_file(path)
        assert probe.id == "terminal-smoke"
        assert probe.url == "/s/abc123"
        assert probe.ws_filter == "/ws/terminal"
        assert [c.send for c in probe.commands] == ["whoami", "ls"]
        assert probe.commands[0].expect == "developer"
        assert probe.commands[1].expect is None
        assert probe.latency_threshold_ms == 500
        assert probe.verify_closure is True
        assert probe.close_selectors == ['button[aria-label="Close terminal"]']
        assert probe.tags == {"smoke", "terminal"}
        assert probe.priority == 2

    def test_id_falls_back_to_file_stem(self, temp_dir: Path):
        path = write_probe(temp_dir, "echo.json", {"url": "/s/x", "commands": "echo hi"})
        probe = load_probe_file(path)
        assert probe.id == "echo"
        assert probe.commands[0].send == "echo hi"
        assert probe.terminal_selectors == DEFAULT_TERMINAL_SELECTORS

    def test_regex_filter_compiles(self, temp_dir: Path):
        path = write_probe(
            temp_dir,
            "regex.json",
            {"url": "/s/x", "commands": ["ls"], "ws_filter": "/ws", "ws_filter_regex": r"/ws/terminal/\d+$"},
        )
        probe = load_probe_file(path)
        assert isinstance(probe.url_filter, re.Pattern)

    def test_missing_url(self, temp_dir: Path):
        path = write_probe(temp_dir, "bad.json", {"commands": ["ls"]})
        with pytest.raises(ProbeValidationError) as exc_info:
            load_probe_file(path)
        assert exc_info.value.field == "url"

    def test_missing_commands(self, temp_dir: Path):
        path = write_probe(temp_dir, "bad.json", {"url": "/s/x"})
        with pytest.raises(ProbeValidationError) as exc_info:
            load_probe_file(path)
        assert exc_info.value.field == "commands"

    def test_invalid_regex(self, temp_dir: Path):
        path = write_probe(temp_dir, "bad.json", {"url": "/s/x", "commands": ["ls"], "ws_filter_regex": "("})
        with pytest.raises(ProbeValidationError) as exc_info:
            load_probe_file(path)
        assert exc_info.value.field == "ws_filter_regex"

    def test_non_positive_threshold(self, temp_dir: Path):
        path = write_probe(temp_dir, "bad.json", {"url": "/s/x", "commands": ["ls"], "latency_threshold_ms": 0})
        with pytest.raises(ProbeValidationError):
            load_probe_file(path)

    def test_priority_clamped(self, temp_dir: Path):
        path = write_probe(temp_dir, "p.json", {"url": "/s/x", "commands": ["ls"], "priority": 42})
        assert load_probe_file(path).priority == 10

    def test_malformed_file(self, temp_dir: Path):
        path = temp_dir / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ProbeLoadError) as exc_info:
            load_probe_file(path)
        assert exc_info.value.file_path == str(path)

    def test_non_mapping_payload(self, temp_dir: Path):
        path = temp_dir / "list.yaml"
        path.write_text("- url: /s/x\n")
        with pytest.raises(ProbeLoadError):
            load_probe_file(path)


class TestDiscoverProbes:
    """Tests for discover_probes."""

    @pytest.fixture
    def probes_dir(self, temp_dir: Path) -> Path:
        write_probe(temp_dir, "a.json", {"id": "a", "url": "/s/a", "commands": ["ls"], "tags": ["smoke"], "priority": 5})
        write_probe(temp_dir, "b.json", {"id": "b", "url": "/s/b", "commands": ["ls"], "tags": ["slow"], "priority": 1})
        write_probe(temp_dir, "c.json", {"id": "c", "url": "/s/c", "commands": ["ls"], "skip": True})
        return temp_dir

    def test_discovers_all_non_skipped(self, probes_dir: Path):
        assert [p.id for p in discover_probes(probes_dir)] == ["a", "b"]

    def test_include_skipped(self, probes_dir: Path):
        assert [p.id for p in discover_probes(probes_dir, include_skipped=True)] == ["a", "b", "c"]

    def test_tag_filters(self, probes_dir: Path):
        assert [p.id for p in discover_probes(probes_dir, include_tags={"SMOKE"})] == ["a"]
        assert [p.id for p in discover_probes(probes_dir, exclude_tags={"slow"})] == ["a"]

    def test_sort_by_priority(self, probes_dir: Path):
        assert [p.id for p in discover_probes(probes_dir, sort_by_priority=True)] == ["b", "a"]

    def test_only_ids(self, probes_dir: Path):
        assert [p.id for p in discover_probes(probes_dir, only_ids=["b"])] == ["b"]

    def test_unknown_id(self, probes_dir: Path):
        with pytest.raises(ProbeLoadError, match="Probes not found: zzz"):
            discover_probes(probes_dir, only_ids=["zzz"])

    def test_missing_directory(self, temp_dir: Path):
        with pytest.raises(ProbeLoadError):
            discover_probes(temp_dir / "missing")


class TestValidateProbe:
    """Tests for validate_probe."""

    def test_valid(self):
        assert validate_probe({"url": "/s/x", "commands": ["ls", {"send": "pwd"}]}) == []

    def test_collects_all_errors(self):
        errors = validate_probe({"commands": [{"expect": "x"}], "priority": 11, "ws_filter_regex": "("})
        assert "Missing required field: url" in errors
        assert "commands[0] must be a string or have a 'send' key" in errors
        assert "priority must be between 1 and 10" in errors
        assert any(e.startswith("ws_filter_regex") for e in errors)

    def test_non_mapping(self):
        assert validate_probe(["x"]) == ["Probe must be a dictionary/mapping"]
