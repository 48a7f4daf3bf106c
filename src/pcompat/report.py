"""Plain-text rendering of channel and compatibility results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Sequence

from .runner import ApplyOutcome, CompatibilityReport
from .versions import Channel, MajorSummary, VersionTag

RULE = "-" * 56

_OUTCOME_LABELS = {
    ApplyOutcome.CLEAN: "APPLIES CLEANLY",
    ApplyOutcome.CONFLICT: "CONFLICTS",
    ApplyOutcome.MISSING: "NOT FOUND",
}

_CHANNEL_NOTES = (
    ("Stable", "Recommended for production use"),
    ("Beta", "Preview of upcoming stable release"),
    ("Dev", "Development builds, updated frequently"),
    ("Canary", "Bleeding edge, daily builds"),
)


class Recommendation(str, Enum):
    UPGRADE_AVAILABLE = "upgrade available"
    ON_LATEST_MAJOR = "on latest major"
    AHEAD_OF_STABLE = "ahead of stable"
    NO_STABLE = "no stable release found"


@dataclass(frozen=True, slots=True)
class RecommendationResult:
    kind: Recommendation
    current_major: int
    stable: VersionTag | None

    def render(self) -> str:
        if self.stable is None:
            return "No stable tag found; cannot compare against the current checkout."
        stable_major = self.stable.major
        if self.kind is Recommendation.UPGRADE_AVAILABLE:
            return f"Upgrade available: stable {self.stable} (command: git checkout {self.stable})"
        if self.kind is Recommendation.ON_LATEST_MAJOR:
            return f"On latest major: you are on the stable major version ({stable_major})"
        return f"Ahead of stable: current v{self.current_major}, stable v{stable_major}"


def recommend(current_major: int, stable: VersionTag | None) -> RecommendationResult:
    """Compare the checkout's major against the latest Stable tag."""

    if stable is None:
        kind = Recommendation.NO_STABLE
    elif current_major < stable.major:
        kind = Recommendation.UPGRADE_AVAILABLE
    elif current_major == stable.major:
        kind = Recommendation.ON_LATEST_MAJOR
    else:
        kind = Recommendation.AHEAD_OF_STABLE
    return RecommendationResult(kind=kind, current_major=current_major, stable=stable)


def format_major_overview(overview: Sequence[MajorSummary]) -> str:
    lines = ["Latest versions by major release:", RULE]
    if not overview:
        lines.append("   (no version tags found)")
    for entry in overview:
        lines.append(f"   v{entry.major} -> {entry.latest}  [{entry.channel.value.upper()}]")
    lines.append(RULE)
    return "\n".join(lines)


def format_channel_table(latest: Mapping[Channel, VersionTag]) -> str:
    lines = ["Latest versions by channel:", RULE]
    if not latest:
        lines.append("   (no classified tags)")
    for channel in Channel:
        tag = latest.get(channel)
        if tag is None:
            continue
        label = f"{channel.value.upper()}:"
        lines.append(f"   {label:<9}{tag}")
    lines.append(RULE)
    return "\n".join(lines)


def format_channel_notes() -> str:
    lines = ["Notes:"]
    for name, note in _CHANNEL_NOTES:
        lines.append(f"   - {name.upper()}: {note}")
    return "\n".join(lines)


def format_patch_results(report: CompatibilityReport) -> str:
    """One line per patch, in the order they were tested."""

    lines = ["Summary:", RULE]
    for result in report.results:
        lines.append(f"   {result.name}: {_OUTCOME_LABELS[result.outcome]}")
    lines.append(RULE)
    return "\n".join(lines)


def format_conflict_details(report: CompatibilityReport) -> str:
    blocks: List[str] = []
    for result in report.conflicts:
        blocks.append(f"Conflict details for {result.name}:")
        blocks.append(result.diagnostic or "(no diagnostic output)")
        blocks.append("")
    return "\n".join(blocks).rstrip()


def format_conflict_hints(report: CompatibilityReport, current_version: str | None) -> str:
    """Suggest ``git diff`` invocations for paths that failed to patch."""

    paths: List[str] = []
    for result in report.conflicts:
        for path in result.failed_paths:
            if path not in paths:
                paths.append(path)
    if not paths:
        return ""
    base = current_version or "HEAD"
    lines = ["Review upstream changes with:"]
    for path in paths:
        lines.append(f"   git diff {base}..{report.target_revision} -- {path}")
    return "\n".join(lines)


def format_counts(report: CompatibilityReport) -> str:
    parts = [f"{report.count(outcome)} {outcome.value.lower()}" for outcome in ApplyOutcome]
    return f"{len(report)} patch(es): " + ", ".join(parts)


def format_compatibility_report(report: CompatibilityReport, *, current_version: str | None = None) -> str:
    """Full textual report for a compatibility run."""

    sections = [format_patch_results(report), format_counts(report)]
    details = format_conflict_details(report)
    if details:
        sections.append(details)
    hints = format_conflict_hints(report, current_version)
    if hints:
        sections.append(hints)
    if not report.has_failures:
        sections.append(f"All patches apply cleanly; you can upgrade to {report.target_revision}.")
    sections.append(
        f"The test branch '{report.sandbox_branch}' has been left for inspection.\n"
        f"Delete it when done with: git branch -D {report.sandbox_branch}"
    )
    return "\n\n".join(sections)


def format_versions_report(
    *,
    current_branch: str | None,
    current_version: str | None,
    overview: Sequence[MajorSummary],
    latest: Mapping[Channel, VersionTag],
    recommendation: RecommendationResult,
) -> str:
    """Full textual report for the channel survey."""

    header = "\n".join(
        [
            "Current state:",
            f"   Branch:  {current_branch or 'unknown'}",
            f"   Version: {current_version or 'unknown'}",
        ]
    )
    return "\n\n".join(
        [
            header,
            format_major_overview(overview),
            format_channel_table(latest),
            "Recommendation:\n   " + recommendation.render(),
            format_channel_notes(),
        ]
    )


__all__ = [
    "Recommendation",
    "RecommendationResult",
    "format_channel_notes",
    "format_channel_table",
    "format_compatibility_report",
    "format_conflict_details",
    "format_conflict_hints",
    "format_counts",
    "format_major_overview",
    "format_patch_results",
    "format_versions_report",
    "recommend",
]
