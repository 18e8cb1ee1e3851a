"""Data models for multi-pass pull request review.

Input types (PullRequestData, ReviewContext, LLMSettings, ReviewOptions)
describe what the caller hands to the engine. ReviewUnit is the unit of LLM
dispatch produced by a grouping strategy. Per-file results are a tagged
union: ParsedReview when the model returned usable JSON, FallbackReview
when only raw text could be salvaged.

Design Philosophy:
    - Immutable dataclasses for per-file results (never mutated once built)
    - Lenient construction from loosely-typed LLM and collaborator JSON
    - camelCase keys on the wire, snake_case attributes in Python
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from loguru import logger

from .language_profiles import detect_language


class Severity(str, Enum):
    """Severity level of a finding."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class FileVerdict(str, Enum):
    """Per-file recommendation from the reviewing model."""

    APPROVE = "APPROVE"
    NEEDS_CHANGES = "NEEDS_CHANGES"
    DISCUSS = "DISCUSS"


class RiskLevel(str, Enum):
    """Risk of merging a file as-is."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReviewPhase(str, Enum):
    """Phases of a multi-pass review, in order."""

    PREPARING = "preparing"
    GROUPING = "grouping"
    REVIEWING = "reviewing"
    AGGREGATING = "aggregating"
    COMPLETE = "complete"


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value.lower() == value.strip().lower():
                return member
    return default


def _coerce_line(value: Any) -> int | str | None:
    """Line citation as an int when numeric; ranges like ``"10-12"`` stay strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return int(text) if text.isdigit() else text
    return None


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present, non-None value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


# ── PR input ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PRFile:
    """One changed file in a pull request.

    Attributes:
        filename: Path relative to the repository root
        status: "added", "modified", "removed" or "renamed"
        additions: Lines added
        deletions: Lines deleted
        patch: Unified diff hunk text (None when the host omitted it)
        language: Detected or supplied language name
    """

    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    patch: str | None = None
    language: str | None = None

    @property
    def changes(self) -> int:
        return self.additions + self.deletions

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PRFile:
        filename = _pick(data, "filename", "file_path", "filePath", "path", default="")
        return cls(
            filename=filename,
            status=data.get("status") or "modified",
            additions=_as_int(data.get("additions")),
            deletions=_as_int(data.get("deletions")),
            patch=data.get("patch"),
            language=data.get("language") or detect_language(filename),
        )


@dataclass(frozen=True)
class Commit:
    sha: str
    message: str

    @property
    def summary_line(self) -> str:
        """``- abc1234: first line of the message``."""
        first_line = self.message.split("\n", 1)[0] if self.message else ""
        return f"- {self.sha[:7]}: {first_line}"


@dataclass
class PullRequestData:
    """Normalized pull request as supplied by the hosting collaborator.

    Example:
        >>> pr = PullRequestData.from_dict({
        ...     "title": "Add login rate limiting",
        ...     "branches": {"source": "feat/rate-limit", "target": "main"},
        ...     "files": [{"filename": "src/auth.py", "additions": 12}],
        ... })
        >>> pr.files[0].language
        'python'
    """

    title: str = "Unknown"
    description: str | None = None
    author: str | None = None
    state: str = "open"
    is_draft: bool = False
    merged: bool = False
    source_branch: str | None = None
    target_branch: str | None = None
    additions: int = 0
    deletions: int = 0
    changed_files: int | None = None
    files: list[PRFile] = field(default_factory=list)
    commits: list[Commit] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PullRequestData:
        """Build from collaborator JSON, accepting nested or flat layouts.

        Recognized shapes: ``branches: {source, target}``, ``stats:
        {additions, deletions, changedFiles}``, ``author: {login}`` or a plain
        author string, and camelCase or snake_case flags.
        """
        branches = data.get("branches") or {}
        stats = data.get("stats") or {}
        author = data.get("author")
        if isinstance(author, dict):
            author = author.get("login") or author.get("name")

        files = [
            PRFile.from_dict(f) if isinstance(f, dict) else f
            for f in data.get("files") or []
        ]
        commits = [
            Commit(sha=c.get("sha") or "", message=c.get("message") or "")
            if isinstance(c, dict)
            else c
            for c in data.get("commits") or []
        ]

        changed_files = _pick(stats, "changedFiles", "changed_files")
        return cls(
            title=data.get("title") or "Unknown",
            description=data.get("description") or data.get("body"),
            author=author,
            state=data.get("state") or "open",
            is_draft=bool(_pick(data, "isDraft", "is_draft", default=False)),
            merged=bool(data.get("merged", False)),
            source_branch=_pick(branches, "source") or data.get("source_branch"),
            target_branch=_pick(branches, "target") or data.get("target_branch"),
            additions=_as_int(_pick(stats, "additions", default=data.get("additions"))),
            deletions=_as_int(_pick(stats, "deletions", default=data.get("deletions"))),
            changed_files=_as_int(changed_files) if changed_files is not None else None,
            files=files,
            commits=commits,
        )


@dataclass(frozen=True)
class ReviewUnit:
    """A batch of files reviewed together in one LLM call.

    Attributes:
        type: "solo" for a high-risk or large file, "group" otherwise
        primary_file: File the unit is named after (first file of a group)
        files: Files in the unit, highest risk first
        total_changes: Sum of additions and deletions
        risk_score: Highest risk score among the files
    """

    type: Literal["solo", "group"]
    primary_file: str
    files: tuple[PRFile, ...]
    total_changes: int = 0
    risk_score: int = 0

    @property
    def language(self) -> str:
        return (self.files[0].language if self.files else None) or "unknown"


# ── Per-file results ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Finding:
    """A single issue reported by a per-file review."""

    id: str
    file: str
    title: str
    severity: Severity = Severity.MEDIUM
    line: int | str | None = None
    type: str | None = None
    cwe: str | None = None
    description: str = ""
    impact: str = ""
    suggestion: str = ""
    confidence: float = 0.5

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_file: str, index: int) -> Finding:
        """Build from model JSON; unknown or missing severities map to ``medium``."""
        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        return cls(
            id=str(data.get("id") or f"F{index + 1}"),
            file=data.get("file") or default_file,
            title=data.get("title") or "",
            severity=_coerce_enum(Severity, data.get("severity"), Severity.MEDIUM),
            line=_coerce_line(data.get("line")),
            type=data.get("type"),
            cwe=data.get("cwe"),
            description=data.get("description") or "",
            impact=data.get("impact") or "",
            suggestion=data.get("suggestion") or "",
            confidence=max(0.0, min(1.0, confidence)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file": self.file,
            "line": self.line,
            "severity": self.severity.value,
            "type": self.type,
            "cwe": self.cwe,
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "suggestion": self.suggestion,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ParsedReview:
    """Structured per-file review extracted from the model's JSON."""

    file: str
    language: str
    file_verdict: FileVerdict = FileVerdict.DISCUSS
    risk_level: RiskLevel = RiskLevel.MEDIUM
    findings: tuple[Finding, ...] = ()
    positives: tuple[str, ...] = ()
    test_coverage: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], unit: ReviewUnit) -> ParsedReview:
        file = data.get("file") or unit.primary_file
        findings = []
        for index, item in enumerate(data.get("findings") or []):
            if not isinstance(item, dict):
                logger.debug(f"Skipping non-object finding in review of {file}: {item!r}")
                continue
            findings.append(Finding.from_dict(item, file, index))

        coverage = data.get("testCoverage")
        return cls(
            file=file,
            language=data.get("language") or unit.language,
            file_verdict=_coerce_enum(
                FileVerdict, data.get("fileVerdict"), FileVerdict.DISCUSS
            ),
            risk_level=_coerce_enum(RiskLevel, data.get("riskLevel"), RiskLevel.MEDIUM),
            findings=tuple(findings),
            positives=tuple(str(p) for p in data.get("positives") or []),
            test_coverage=coverage if isinstance(coverage, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "language": self.language,
            "fileVerdict": self.file_verdict.value,
            "riskLevel": self.risk_level.value,
            "findings": [f.to_dict() for f in self.findings],
            "positives": list(self.positives),
            "testCoverage": self.test_coverage,
        }


@dataclass(frozen=True)
class FallbackReview:
    """Unstructured per-file review: the raw model text plus why parsing failed.

    ``parse_error`` is set when there was nothing to parse (for example an
    empty response); it is None when the text was present but held no
    usable JSON.
    """

    file: str
    language: str
    raw_analysis: str = ""
    parse_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "language": self.language,
            "fileVerdict": FileVerdict.DISCUSS.value,
            "riskLevel": RiskLevel.MEDIUM.value,
            "findings": [],
            "positives": [],
            "testCoverage": None,
            "rawAnalysis": self.raw_analysis,
            "parseError": self.parse_error,
        }


PerFileReview = ParsedReview | FallbackReview


# ── Engine inputs and outputs ───────────────────────────────────────────


@dataclass
class ReviewContext:
    """Optional extra context for a review.

    Attributes:
        rag_context: Retrieved repository chunks, either a list of
            ``{file_path|filePath|file, content|text}`` dicts or a mapping
            with a ``chunks`` list
        static_findings: Pre-computed static analysis findings, each a dict
            with ``filePath``/``file``, ``severity``, ``line``, ``message``
    """

    rag_context: list[dict[str, Any]] | dict[str, Any] | None = None
    static_findings: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class LLMSettings:
    """Provider selection forwarded verbatim to the chat collaborator."""

    provider: str | None = None
    model: str | None = None
    api_key: str | None = None


@dataclass
class ReviewOptions:
    """Per-call overrides; None falls back to MultiPassSettings."""

    focus_areas: list[str] | None = None
    max_concurrent: int | None = None
    max_files_to_review: int | None = None


@dataclass(frozen=True)
class ReviewProgress:
    """Progress event passed to the ``on_progress`` callback."""

    phase: ReviewPhase
    message: str
    total_units: int | None = None
    completed_units: int | None = None
    percentage: int | None = None


@dataclass
class MultiPassResult:
    """Outcome of one multi-pass review.

    Attributes:
        analysis: Final Markdown review written by the aggregation pass
        per_file_findings: Per-unit results in completion order
        failed_files: Primary file of every unit that failed
        review_units: Number of units dispatched
        processing_time: Wall-clock duration in milliseconds
        is_multi_pass: Always True; distinguishes from single-pass reviews
    """

    analysis: str
    per_file_findings: list[PerFileReview]
    failed_files: list[str]
    review_units: int
    processing_time: float
    is_multi_pass: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis": self.analysis,
            "perFileFindings": [r.to_dict() for r in self.per_file_findings],
            "failedFiles": list(self.failed_files),
            "reviewUnits": self.review_units,
            "processingTime": self.processing_time,
            "isMultiPass": self.is_multi_pass,
        }
