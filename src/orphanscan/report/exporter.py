#!/usr/bin/env python3
"""
ORPHANSCAN EXPORTER - Structured Reports
----------------------------------------
Serializes a RunReport as YAML (ruamel, block style, stable key order)
or JSON, and writes it to disk atomically.

Author: OrphanScan Team
Date: 2026-10-19
"""

import io
import json
import os
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from orphanscan.core.errors import ReportWriteError
from orphanscan.core.models import RunReport


class ReportExporter:
    """Renders reports in the order a reader scans them: identity, totals, detail."""

    def __init__(self):
        self.yaml = YAML(typ='rt')
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=4, offset=2)
        self.yaml.width = 4096
        self.preferred_order = [
            "mode", "started_at", "finished_at", "total_orphans", "skipped",
            "namespace", "shard", "reported_count", "actual_count",
            "range_bounded_count", "shard_actual_total", "orphans", "error",
            "namespaces", "per_shard",
        ]

    def _ordered(self, data: Any) -> Any:
        """Recursively rebuilds mappings with keys in the preferred order."""
        if isinstance(data, list):
            return [self._ordered(item) for item in data]
        if not isinstance(data, dict):
            return data

        keys = list(data.keys())

        def sort_logic(key):
            if key in self.preferred_order:
                return self.preferred_order.index(key)
            return len(self.preferred_order) + keys.index(key)

        ordered = CommentedMap()
        for key in sorted(keys, key=sort_logic):
            ordered[key] = self._ordered(data[key])
        return ordered

    def render(self, report: RunReport, fmt: str = "yaml") -> str:
        data = report.to_dict()
        if fmt == "json":
            return json.dumps(data, indent=2, default=str) + "\n"

        stream = io.StringIO()
        self.yaml.dump(self._ordered(data), stream)
        return stream.getvalue()

    def write(self, report: RunReport, path: str, fmt: str = "yaml") -> Path:
        target = Path(path).resolve()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ReportWriteError(f"Cannot create report directory {target.parent}: {e}") from e
        self._atomic_write(target, self.render(report, fmt))
        return target

    def _atomic_write(self, target_path: Path, content: str):
        temp_file = target_path.with_name(target_path.name + ".orphanscan.tmp")
        try:
            temp_file.write_text(content, encoding='utf-8')
            os.replace(temp_file, target_path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise ReportWriteError(f"Atomic write failed: {str(e)}") from e
