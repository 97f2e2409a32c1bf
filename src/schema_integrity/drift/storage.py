"""Baseline and report persistence.

The baseline is one JSON document holding the expected ``DatabaseSchema``.
Reports are written once per run and never overwritten: a second report
within the same second gets a ``-1``, ``-2`` ... suffix.

Usage:
    from schema_integrity.drift.storage import BaselineStore, ReportWriter

    store = BaselineStore(Path("schema/schema.json"))
    baseline = store.load()

    path = ReportWriter(Path("drift-reports")).write(report)
"""

import itertools
import json
import logging
from pathlib import Path

from schema_integrity.drift.models import DriftReport
from schema_integrity.schema.models import DatabaseSchema

logger = logging.getLogger(__name__)


class BaselineStore:
    """Reads and writes the baseline schema file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> DatabaseSchema | None:
        """Load the baseline, or None if no baseline was saved yet.

        Raises:
            pydantic.ValidationError: If the file is not a valid schema document.
        """
        if not self.exists():
            return None
        return DatabaseSchema.model_validate_json(self._path.read_text())

    def save(self, schema: DatabaseSchema) -> Path:
        """Replace the baseline with ``schema``.

        Written to a sibling temp file first so a crash never leaves a
        truncated baseline behind.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.tmp")
        with open(tmp_path, "w") as f:
            json.dump(schema.model_dump(mode="json"), f, indent=2)
        tmp_path.replace(self._path)
        logger.info(f"Saved baseline version {schema.version} to {self._path}")
        return self._path


class ReportWriter:
    """Writes drift reports as timestamped JSON files."""

    PREFIX = "drift-report-"

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def write(self, report: DriftReport) -> Path:
        """Persist ``report`` under a name no earlier report uses.

        Returns:
            Path of the written file.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        stem = f"{self.PREFIX}{report.timestamp.strftime('%Y-%m-%d-%H%M%S')}"
        payload = report.model_dump(mode="json")

        for attempt in itertools.count():
            suffix = f"-{attempt}" if attempt else ""
            path = self._directory / f"{stem}{suffix}.json"
            try:
                with open(path, "x") as f:
                    json.dump(payload, f, indent=2, default=str)
            except FileExistsError:
                continue
            logger.info(f"Wrote drift report to {path}")
            return path

    def list_reports(self) -> list[Path]:
        """All reports in the directory, oldest first."""
        if not self._directory.is_dir():
            return []
        return sorted(
            self._directory.glob(f"{self.PREFIX}*.json"),
            key=lambda p: p.stat().st_mtime,
        )

    def latest(self) -> DriftReport | None:
        reports = self.list_reports()
        if not reports:
            return None
        return DriftReport.model_validate_json(reports[-1].read_text())
