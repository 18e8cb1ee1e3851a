"""Prompts for multi-pass PR review.

Two system prompts drive the two LLM passes: a per-file reviewer that must
answer with a single JSON object, and an aggregator that merges the
per-file results into a Markdown review. The builders below assemble the
user messages; their output is opaque text to the engine.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import orjson

from .language_profiles import LanguageProfile, get_language_rules
from .models import FallbackReview, ParsedReview, PerFileReview, PullRequestData, ReviewUnit

PURPOSE_MAX_CHARS = 300
CONTEXT_FILE_LIMIT = 30
OTHER_FILES_LIMIT = 15
STATIC_FINDINGS_LIMIT = 10
RAG_CHUNKS_LIMIT = 3
RAG_CHUNK_MAX_CHARS = 600
DESCRIPTION_MAX_CHARS = 1000
RAW_ANALYSIS_MAX_CHARS = 4000

PER_FILE_REVIEW_SYSTEM_PROMPT = """You are RepoSpector, a senior engineer reviewing one slice of a pull request. You are shown the diff of one file, or a few closely related files, plus a short summary of the rest of the PR.

## Output Rules
- Reply with a single JSON object and nothing else: no prose and no Markdown around it.
- Tie every finding to a concrete line number taken from the diff.
- Calibrate confidence: 0.9 or above only when you are certain, 0.5 to 0.7 for probable issues, below 0.5 for hunches.
- A clean file gets an empty findings array. Never invent problems.
- Judge the added and changed lines; read the surrounding context only to understand intent.

## What Matters Most (highest first)
1. Exploitable security vulnerabilities
2. Bugs that crash or compute wrong results
3. Silent behaviour changes for existing callers
4. Deprecated APIs that should be replaced
5. Performance regressions
6. Maintainability and code quality

## Checklist for Every Changed Function
- Null handling: can a value be missing where it is dereferenced?
- Bounds: loop limits, indices, inclusive versus exclusive comparisons.
- Concurrency: shared state touched by concurrent callers without protection.
- Failure paths: errors caught, resources released, cleanup performed.
- Edge inputs: empty collections, empty strings, zero, negatives, huge or non-ASCII input.
- Type coercion: comparisons or conversions that silently change meaning.
- Side effects: mutation of arguments or shared state that callers will not expect.
- Leaks: file handles, connections, timers and listeners left open.
- Compatibility: changed signatures or contracts that break existing callers."""

AGGREGATION_SYSTEM_PROMPT = """You are RepoSpector writing the final review of a pull request that was first reviewed file by file. You receive the structured per-file results; some entries may only carry the reviewer's raw notes when its answer could not be parsed.

Your job:
1. Merge duplicates: findings that describe the same root cause become one, keeping the highest severity and confidence.
2. Look across files for what single-file reviews cannot see: changed signatures with stale callers, inconsistent error handling or validation, source changes without matching test changes, configuration changes that alter other files.
3. Re-rate severity with the whole PR in view; an issue repeated in several files may deserve a higher rating.
4. Write the review in exactly the Markdown format requested.

Every finding you report must be actionable."""


@dataclass(frozen=True)
class PRContextSummary:
    """Compact PR description shared by every per-file prompt."""

    title: str
    purpose: str
    source_branch: str
    target_branch: str
    other_files: tuple[str, ...]
    total_additions: int
    total_deletions: int
    is_draft: bool
    commit_count: int


def build_pr_context_summary(pr: PullRequestData) -> PRContextSummary:
    """Summarize a PR without any diffs so per-file prompts stay small."""
    return PRContextSummary(
        title=pr.title or "Unknown",
        purpose=(pr.description or "No description")[:PURPOSE_MAX_CHARS],
        source_branch=pr.source_branch or "unknown",
        target_branch=pr.target_branch or "unknown",
        other_files=tuple(f.filename for f in pr.files[:CONTEXT_FILE_LIMIT]),
        total_additions=pr.additions,
        total_deletions=pr.deletions,
        is_draft=pr.is_draft,
        commit_count=len(pr.commits),
    )


def _format_static_finding(finding: Mapping[str, Any]) -> str:
    severity = str(finding.get("severity") or "info").upper()
    rule = finding.get("ruleId") or finding.get("rule_id") or finding.get("category") or "rule"
    path = finding.get("filePath") or finding.get("file_path") or finding.get("file") or ""
    line = finding.get("line") or "?"
    return f"- **{severity}** [{rule}] {path}:{line}: {finding.get('message', '')}"


def build_per_file_review_prompt(
    unit: ReviewUnit,
    pr_context: PRContextSummary,
    focus_areas: Sequence[str] = (),
    rag_chunks: Sequence[Mapping[str, Any]] = (),
    static_findings: Sequence[Mapping[str, Any]] = (),
    language_rules: LanguageProfile | None = None,
) -> str:
    """Build the user message for one review unit.

    Args:
        unit: Files to review
        pr_context: Summary of the whole PR
        focus_areas: Review focus, e.g. ["security", "bugs"]
        rag_chunks: Related repository code; only the first 3 are used
        static_findings: Pre-detected findings for the unit's files
        language_rules: Rules for the unit's language (defaults to lookup)

    Returns:
        Prompt text ending with the required JSON response schema
    """
    unit_files = {f.filename for f in unit.files}
    other_files = [f for f in pr_context.other_files if f not in unit_files]
    language = unit.language

    sections = [
        "## Per-File Code Review",
        "",
        "### PR Context",
        f"- **Title**: {pr_context.title}",
        f"- **Purpose**: {pr_context.purpose}",
        f"- **Branch**: `{pr_context.source_branch}` -> `{pr_context.target_branch}`",
        f"- **Other files in this PR**: {', '.join(other_files[:OTHER_FILES_LIMIT]) or 'none'}",
        "",
        "---",
        "",
        "## Files Under Review",
        "",
    ]

    for file in unit.files:
        sections.append(f"### File: {file.filename} ({file.status or 'modified'})")
        sections.append(
            f"**Language**: {file.language or 'unknown'} | "
            f"**Changes**: +{file.additions} -{file.deletions}"
        )
        sections.append("")
        sections.append("```diff")
        sections.append(file.patch or "No patch available")
        sections.append("```")
        sections.append("")

    if static_findings:
        sections.extend(["---", "", "## Pre-detected Static Analysis Findings"])
        sections.extend(
            _format_static_finding(f) for f in static_findings[:STATIC_FINDINGS_LIMIT]
        )
        sections.append("")
        sections.append(
            "Confirm or reject these findings and report anything the analyzers missed."
        )
        sections.append("")

    if rag_chunks:
        sections.extend(["---", "", "## Related Repository Code (for context only)"])
        for chunk in rag_chunks[:RAG_CHUNKS_LIMIT]:
            source = (
                chunk.get("file_path") or chunk.get("filePath") or chunk.get("file") or "context"
            )
            content = (chunk.get("content") or chunk.get("text") or "")[:RAG_CHUNK_MAX_CHARS]
            sections.extend(["```", f"// {source}", content, "```", ""])

    rules = language_rules or get_language_rules(language)
    sections.extend(["---", "", f"## Language-Specific Checks ({language})"])
    if rules.deprecated:
        sections.append(f"**Deprecated APIs**: {'; '.join(rules.deprecated[:5])}")
    if rules.security_checks:
        sections.append(f"**Security Patterns**: {'; '.join(rules.security_checks[:5])}")
    if rules.performance_checks:
        sections.append(
            f"**Performance Anti-patterns**: {'; '.join(rules.performance_checks[:4])}"
        )
    if rules.patterns:
        sections.append(f"**Common Bugs**: {'; '.join(rules.patterns[:4])}")

    if focus_areas:
        sections.append("")
        sections.append(f"**Review Focus**: {', '.join(focus_areas)}")

    file_field = (
        '"primary_filename"' if len(unit.files) > 1 else f'"{unit.primary_file}"'
    )
    sections.append("")
    sections.append(_PER_FILE_RESPONSE_FORMAT.format(file=file_field, language=language))
    return "\n".join(sections)


_PER_FILE_RESPONSE_FORMAT = """---

## Required Response Format

Reply with ONLY this JSON object (no code fences, no text outside it):

{{
  "file": {file},
  "language": "{language}",
  "fileVerdict": "APPROVE | NEEDS_CHANGES | DISCUSS",
  "riskLevel": "LOW | MEDIUM | HIGH | CRITICAL",
  "findings": [
    {{
      "id": "F1",
      "file": "file_containing_the_issue",
      "line": 42,
      "severity": "critical | high | medium | low",
      "type": "security | bug | performance | style | deprecated | testing",
      "cwe": "CWE-ID or null",
      "title": "Short issue title (under 100 characters)",
      "description": "What is wrong and why",
      "impact": "What breaks in production",
      "suggestion": "Concrete fix",
      "confidence": 0.85
    }}
  ],
  "positives": ["Good practices seen in this change"],
  "testCoverage": {{
    "hasTests": false,
    "missingTests": ["Concrete scenario, e.g. 'login() with an expired token returns 401'"]
  }},
  "criticalTestCases": ["Test tied to a finding, e.g. 'getUser() query is parameterized (F1)'"]
}}

Report every real issue and cite exact line numbers from the diff."""


def count_findings_by_severity(results: Sequence[PerFileReview]) -> dict[str, int]:
    """Count critical/high/medium/low findings across parsed results."""
    counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    for result in results:
        if not isinstance(result, ParsedReview):
            continue
        for finding in result.findings:
            if finding.severity.value in counts:
                counts[finding.severity.value] += 1
    return counts


def _summarize_result(result: PerFileReview) -> dict[str, Any]:
    if isinstance(result, ParsedReview):
        return {
            "file": result.file,
            "language": result.language,
            "verdict": result.file_verdict.value,
            "risk": result.risk_level.value,
            "findings": [f.to_dict() for f in result.findings],
            "positives": list(result.positives),
            "testCoverage": result.test_coverage,
        }
    if isinstance(result, FallbackReview):
        return {
            "file": result.file,
            "language": result.language,
            "unstructured": True,
            "rawAnalysis": result.raw_analysis[:RAW_ANALYSIS_MAX_CHARS],
        }
    raise TypeError(f"Unsupported per-file result: {type(result).__name__}")


def build_aggregation_prompt(
    results: Sequence[PerFileReview],
    pr: PullRequestData,
    failed_files: Sequence[str] = (),
    commit_messages: str | None = None,
) -> str:
    """Build the user message for the final synthesis pass.

    Args:
        results: Per-file results, structured or fallback
        pr: The pull request under review
        failed_files: Files whose review unit failed
        commit_messages: Preformatted commit list; derived from ``pr`` if None

    Returns:
        Prompt text requesting the final Markdown review
    """
    counts = count_findings_by_severity(results)
    if commit_messages is None:
        commit_messages = "\n".join(c.summary_line for c in pr.commits)

    flags = " ".join(
        flag for flag, on in (("(Draft)", pr.is_draft), ("(Merged)", pr.merged)) if on
    )
    summary_json = orjson.dumps(
        [_summarize_result(r) for r in results], option=orjson.OPT_INDENT_2
    ).decode()

    sections = [
        "## PR Aggregation Review",
        "",
        "### PR Metadata",
        f"- **Title**: {pr.title or 'Unknown'}",
        f"- **Author**: {pr.author or 'Unknown'}",
        f"- **State**: {pr.state or 'open'} {flags}".rstrip(),
        f"- **Branch**: `{pr.source_branch or '?'}` -> `{pr.target_branch or '?'}`",
        f"- **Total Files**: {pr.changed_files if pr.changed_files is not None else len(pr.files)}",
        f"- **Total Changes**: +{pr.additions} -{pr.deletions}",
        "",
        "### Commits",
        commit_messages or "No commits available",
        "",
        "### PR Description",
        (pr.description or "No description provided")[:DESCRIPTION_MAX_CHARS],
        "",
        "---",
        "",
        f"### Finding Summary (from {len(results)} file reviews)",
        f"- Critical: {counts['critical']}",
        f"- High: {counts['high']}",
        f"- Medium: {counts['medium']}",
        f"- Low: {counts['low']}",
    ]
    if failed_files:
        sections.append(f"- **Files not reviewed** (errors): {', '.join(failed_files)}")

    sections.extend(
        [
            "",
            "### Per-File Findings",
            "",
            "```json",
            summary_json,
            "```",
            "",
            _AGGREGATION_INSTRUCTIONS,
        ]
    )
    return "\n".join(sections)


_AGGREGATION_INSTRUCTIONS = """---

### Cross-File Analysis Required
Check the per-file findings for:
1. **Interface breakage**: a signature changed in one file while callers elsewhere still use the old one.
2. **Pattern inconsistency**: the same concern (errors, logging, validation) handled differently across files.
3. **Missing tests**: changed source files without a matching test change in this PR.
4. **Configuration impact**: configuration changes that alter the behaviour of other changed files.
5. **Dependency chain**: files that import each other and changed in incompatible ways.

Entries marked "unstructured" carry the reviewer's raw notes; extract what you can from them.

---

### Required Output Format

```
VERDICT: [APPROVE / REQUEST_CHANGES / COMMENT]
RISK_LEVEL: [LOW / MEDIUM / HIGH / CRITICAL]
CONFIDENCE: [HIGH / MEDIUM / LOW]
BLOCKING_ISSUES: [count]
TOTAL_FINDINGS: [X critical, Y high, Z medium, W low]
```

### Critical Issues (Must Fix Before Merge)
For each issue:
- **File**: [filename(s)]
- **Line**: [line number(s)]
- **Type**: [Security/Bug/Performance]
- **Severity**: Critical or High
- **CWE**: [if applicable]
- **Confidence**: [0.0-1.0]
- **Issue**: [what is wrong]
- **Impact**: [what could go wrong]
- **Fix**: [specific change]

### Warnings (Should Fix)
Same format, severity Medium.

### Suggestions (Nice to Have)
Short list, severity Low.

### Cross-File Issues
Problems that span files and were invisible to the per-file pass.

### Security Checklist
- [ ] No hardcoded secrets or API keys
- [ ] All user input validated
- [ ] Output encoded where needed
- [ ] New endpoints enforce authentication and authorization
- [ ] No sensitive data written to logs
- [ ] SQL queries are parameterized

### Test Coverage Assessment
- Files missing tests: [from the per-file reviews]
- Test quality: [do existing tests exercise the changed behaviour?]

### P0 Test Cases (Must-Have Before Merge)

| # | Test Scenario | File Under Test | What to Assert | Why P0 |
|---|---------------|-----------------|----------------|--------|
| 1 | [e.g. "login() with an expired token"] | [filename] | [e.g. "returns 401 without crashing"] | [finding ID or behaviour change] |

Include one test per critical or high finding, one per behaviour change, and at least one negative or edge case; aim for 5 to 10 rows.

### Positive Observations
Good practices seen across the PR.

### Final Verdict
**Recommendation**: [clear next step]
**Blocking Issues**: [count]
**Total Issues Found**: [count by severity]"""
