"""Partitioning of PR files into review units.

A review unit is the unit of LLM dispatch. High-risk or large files are
reviewed alone; the rest are batched by directory and language so that
closely related files (a module and its neighbour, a component and its
styles) are seen together.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath
from typing import Any

from loguru import logger

from ...config.settings import GroupingSettings
from .models import PRFile, ReviewUnit

CRITICAL_FINDING_RISK = 300
HIGH_FINDING_RISK = 150

# Path fragments that usually mean security- or money-sensitive code
SENSITIVE_PATH_MARKERS = (
    "auth",
    "security",
    "crypto",
    "password",
    "token",
    "secret",
    "session",
    "permission",
    "payment",
    "billing",
)
INFRA_PATH_MARKERS = ("config", "migration", "schema", "docker", ".github/", "deploy", ".env")
TEST_PATH_MARKERS = ("test", "spec", "__tests__", "fixtures")
LOW_RISK_EXTENSIONS = {".md", ".txt", ".rst", ".lock", ".svg", ".png", ".jpg", ".snap"}

FindingsByFile = Mapping[str, Sequence[Mapping[str, Any]]]


def score_file_by_risk(file: PRFile) -> int:
    """Heuristic risk score from a file's path and change size.

    Static analysis findings are added on top by the grouping strategy.
    """
    path = file.filename.lower()
    extension = PurePosixPath(path).suffix

    if extension in LOW_RISK_EXTENSIONS:
        return min(file.changes, 500) // 20

    score = min(file.changes, 500) // 5
    if any(marker in path for marker in SENSITIVE_PATH_MARKERS):
        score += 150
    if any(marker in path for marker in INFRA_PATH_MARKERS):
        score += 75
    if file.status == "removed":
        score += 25
    if any(marker in path for marker in TEST_PATH_MARKERS):
        score = score // 2
    return score


class FileGroupingStrategy(ABC):
    """Collaborator that turns changed files into review units."""

    @abstractmethod
    def group(
        self, files: Sequence[PRFile], findings_by_file: FindingsByFile | None = None
    ) -> list[ReviewUnit]:
        """Partition ``files`` into review units.

        Every input file must appear in exactly one unit.
        """
        raise NotImplementedError


class RiskBasedGroupingStrategy(FileGroupingStrategy):
    """Solo units for risky or large files, directory/language batches otherwise.

    Example:
        >>> strategy = RiskBasedGroupingStrategy()
        >>> units = strategy.group(pr.files, {"src/auth.py": [{"severity": "critical"}]})
        >>> units[0].type, units[0].primary_file
        ('solo', 'src/auth.py')
    """

    def __init__(self, settings: GroupingSettings | None = None) -> None:
        self.settings = settings or GroupingSettings()

    def group(
        self, files: Sequence[PRFile], findings_by_file: FindingsByFile | None = None
    ) -> list[ReviewUnit]:
        findings_by_file = findings_by_file or {}

        scored: list[tuple[PRFile, int]] = []
        for file in files:
            risk = score_file_by_risk(file)
            for finding in findings_by_file.get(file.filename, ()):
                severity = str(finding.get("severity") or "").lower()
                if severity == "critical":
                    risk += CRITICAL_FINDING_RISK
                elif severity == "high":
                    risk += HIGH_FINDING_RISK
            scored.append((file, risk))
        # Stable: equal-risk files keep PR order
        scored.sort(key=lambda item: item[1], reverse=True)

        units: list[ReviewUnit] = []
        assigned: set[str] = set()

        for file, risk in scored:
            if file.filename in assigned:
                continue
            if (
                risk >= self.settings.solo_risk_threshold
                or file.changes > self.settings.solo_change_threshold
            ):
                units.append(
                    ReviewUnit(
                        type="solo",
                        primary_file=file.filename,
                        files=(file,),
                        total_changes=file.changes,
                        risk_score=risk,
                    )
                )
                assigned.add(file.filename)

        buckets: dict[str, list[tuple[PRFile, int]]] = {}
        for file, risk in scored:
            if file.filename in assigned:
                continue
            directory = str(PurePosixPath(file.filename).parent)
            directory = "/" if directory == "." else directory
            language = (file.language or "unknown").lower()
            buckets.setdefault(f"{directory}::{language}", []).append((file, risk))
            assigned.add(file.filename)

        for bucket in buckets.values():
            batch: list[tuple[PRFile, int]] = []
            batch_changes = 0
            for file, risk in bucket:
                if batch and (
                    len(batch) >= self.settings.max_files_per_group
                    or batch_changes + file.changes > self.settings.max_lines_per_group
                ):
                    units.append(self._group_unit(batch, batch_changes))
                    batch, batch_changes = [], 0
                batch.append((file, risk))
                batch_changes += file.changes
            if batch:
                units.append(self._group_unit(batch, batch_changes))

        logger.debug(
            f"Grouped {len(files)} files into {len(units)} review units "
            f"({sum(1 for u in units if u.type == 'solo')} solo)"
        )
        return units

    @staticmethod
    def _group_unit(batch: list[tuple[PRFile, int]], total_changes: int) -> ReviewUnit:
        return ReviewUnit(
            type="group",
            primary_file=batch[0][0].filename,
            files=tuple(file for file, _ in batch),
            total_changes=total_changes,
            risk_score=max(risk for _, risk in batch),
        )
