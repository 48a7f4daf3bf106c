"""Sequential patch compatibility checks inside a sandbox branch.

Patches are tested strictly in order and each one that applies cleanly is
applied before the next is checked, so every check sees the stacked result
of the clean patches before it. Conflicting and missing patches are recorded
and skipped; the loop never stops early.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Mapping, Sequence, Tuple

from .patches import MissingArtifact, PatchArtifact, PatchSet
from .sandbox import SandboxSession, SandboxState, open_sandbox
from .telemetry import emit_event
from .tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

DEFAULT_DIAGNOSTIC_LINES = 20
DEFAULT_DIAGNOSTIC_CHARS = 4_000

_PATCH_FAILED_RE = re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")
_PATCH_DOES_NOT_APPLY_RE = re.compile(r"error: (?P<path>.+?): patch does not apply")
_HUNK_FAILED_RE = re.compile(r"error: (?P<path>.+?): hunk #(?P<hunk>\d+) failed at (?P<line>-?\d+)")
_DOES_NOT_EXIST_RE = re.compile(r"error: (?P<path>.+?): does not exist in (?:index|working tree)")


class ApplyOutcome(str, Enum):
    CLEAN = "Clean"
    CONFLICT = "Conflict"
    MISSING = "Missing"


class ConflictError(RuntimeError):
    """Raised when ``git apply --check`` rejects a patch."""

    def __init__(
        self,
        name: str,
        diagnostic: str,
        *,
        failing_hunks: Tuple[Mapping[str, Any], ...] = (),
    ) -> None:
        super().__init__(f"Patch {name!r} does not apply cleanly")
        self.name = name
        self.diagnostic = diagnostic
        self.failing_hunks = failing_hunks


@dataclass(slots=True)
class ApplyResult:
    """Outcome for one patch; ``diagnostic`` is only set for conflicts."""

    name: str
    outcome: ApplyOutcome
    artifact: PatchArtifact | None = None
    diagnostic: str | None = None
    failing_hunks: Tuple[Mapping[str, Any], ...] = ()
    commit: str | None = None

    @property
    def failed_paths(self) -> Tuple[str, ...]:
        seen: List[str] = []
        for hunk in self.failing_hunks:
            path = str(hunk.get("path") or "")
            if path and path not in seen:
                seen.append(path)
        return tuple(seen)


@dataclass(slots=True)
class CompatibilityReport:
    """Per-patch results in input order plus the sandbox branch left behind."""

    sandbox_branch: str
    target_revision: str
    results: List[ApplyResult] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.results)

    def count(self, outcome: ApplyOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def has_failures(self) -> bool:
        return any(result.outcome != ApplyOutcome.CLEAN for result in self.results)

    @property
    def conflicts(self) -> List[ApplyResult]:
        return [result for result in self.results if result.outcome == ApplyOutcome.CONFLICT]


def bound_diagnostic(
    text: str,
    *,
    max_lines: int = DEFAULT_DIAGNOSTIC_LINES,
    max_chars: int = DEFAULT_DIAGNOSTIC_CHARS,
) -> str:
    """Keep the first ``max_lines`` lines and at most ``max_chars`` characters."""

    lines = text.strip().splitlines()
    excerpt = "\n".join(lines[:max_lines]) if max_lines > 0 else ""
    if len(excerpt) > max_chars:
        excerpt = excerpt[:max_chars].rstrip()
    return excerpt


def parse_apply_failures(output: str) -> Tuple[Mapping[str, Any], ...]:
    """Parse git apply stderr for failing hunk metadata."""
    if not output:
        return ()
    entries: list[dict[str, Any]] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _HUNK_FAILED_RE.search(line)
        if match:
            entries.append(
                {
                    "path": match.group("path"),
                    "hunk": int(match.group("hunk")),
                    "line": int(match.group("line")),
                    "reason": "hunk_failed",
                }
            )
            continue
        match = _PATCH_FAILED_RE.search(line)
        if match:
            line_text = match.group("line")
            entries.append(
                {
                    "path": match.group("path"),
                    "line": int(line_text) if line_text is not None else None,
                    "reason": "patch_failed",
                }
            )
            continue
        match = _DOES_NOT_EXIST_RE.search(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "missing_target"})
            continue
        match = _PATCH_DOES_NOT_APPLY_RE.search(line)
        if match:
            entries.append(
                {
                    "path": match.group("path"),
                    "reason": "does_not_apply",
                }
            )
            continue
    return tuple(entries)


class CompatibilityRunner:
    """Fold a :class:`PatchSet` over the sandbox tree, one patch at a time."""

    def __init__(
        self,
        repo: GitRepository,
        patch_set: PatchSet,
        *,
        commit_applied: bool = True,
        diagnostic_lines: int = DEFAULT_DIAGNOSTIC_LINES,
        diagnostic_chars: int = DEFAULT_DIAGNOSTIC_CHARS,
    ) -> None:
        self.repo = repo
        self.patch_set = patch_set
        self.commit_applied = commit_applied
        self.diagnostic_lines = diagnostic_lines
        self.diagnostic_chars = diagnostic_chars

    def check(self, artifact: PatchArtifact) -> None:
        """Dry-run ``artifact`` against the current tree; raise :class:`ConflictError` if it would fail."""

        probe = self.repo.apply_check(artifact.path)
        if probe.returncode == 0:
            return
        combined = "\n".join(part for part in (probe.stderr, probe.stdout) if part)
        raise ConflictError(
            artifact.name,
            bound_diagnostic(
                combined or f"git apply --check exited with {probe.returncode}",
                max_lines=self.diagnostic_lines,
                max_chars=self.diagnostic_chars,
            ),
            failing_hunks=parse_apply_failures(combined),
        )

    def _step(self, name: str) -> ApplyResult:
        try:
            artifact = self.patch_set.load(name)
        except MissingArtifact as missing:
            LOGGER.warning("%s", missing)
            emit_event("patch_missing", patch=name, directory=self.patch_set.directory)
            return ApplyResult(name=name, outcome=ApplyOutcome.MISSING)

        try:
            self.check(artifact)
        except ConflictError as conflict:
            LOGGER.info("Patch %s conflicts", name)
            emit_event(
                "patch_conflict",
                patch=name,
                patch_bytes=len(artifact.content),
                failing_hunks=conflict.failing_hunks,
            )
            return ApplyResult(
                name=name,
                outcome=ApplyOutcome.CONFLICT,
                artifact=artifact,
                diagnostic=conflict.diagnostic,
                failing_hunks=conflict.failing_hunks,
            )

        try:
            self.repo.apply(artifact.path)
        except GitError as error:
            # git apply is atomic, so the tree is as it was before this patch.
            LOGGER.warning("Patch %s passed the dry run but failed to apply: %s", name, error)
            failing_hunks = parse_apply_failures(str(error))
            emit_event(
                "patch_conflict",
                patch=name,
                patch_bytes=len(artifact.content),
                failing_hunks=failing_hunks,
                stage="apply",
            )
            return ApplyResult(
                name=name,
                outcome=ApplyOutcome.CONFLICT,
                artifact=artifact,
                diagnostic=bound_diagnostic(
                    str(error),
                    max_lines=self.diagnostic_lines,
                    max_chars=self.diagnostic_chars,
                ),
                failing_hunks=failing_hunks,
            )

        commit = None
        if self.commit_applied:
            try:
                commit = self.repo.commit_staged(f"Apply {name}")
            except GitError as error:
                # Staged changes still stack under the next patch.
                LOGGER.warning("Could not commit %s on the sandbox branch, leaving it staged: %s", name, error)
        LOGGER.info("Patch %s applies cleanly", name)
        emit_event("patch_applied", patch=name, patch_bytes=len(artifact.content), commit=commit)
        return ApplyResult(name=name, outcome=ApplyOutcome.CLEAN, artifact=artifact, commit=commit)

    def run(self, names: Sequence[str] | None, sandbox: SandboxState) -> CompatibilityReport:
        """Test ``names`` (default: the whole patch set) in order inside ``sandbox``.

        Every name yields exactly one result. A real apply that fails after a
        passing dry run is reported as a conflict; a failed bookkeeping
        commit leaves the patch staged and still counts as clean.
        """

        if sandbox.closed:
            raise ValueError("Sandbox has already been closed.")
        ordered = list(self.patch_set.names if names is None else names)
        report = CompatibilityReport(
            sandbox_branch=sandbox.sandbox_branch,
            target_revision=sandbox.target_revision,
        )
        for name in ordered:
            report.results.append(self._step(name))
        return report


def check_compatibility(
    repo: GitRepository,
    patch_set: PatchSet,
    target_revision: str,
    *,
    names: Sequence[str] | None = None,
    session_factory: Callable[[GitRepository], SandboxSession] | None = None,
    commit_applied: bool = True,
    diagnostic_lines: int = DEFAULT_DIAGNOSTIC_LINES,
    diagnostic_chars: int = DEFAULT_DIAGNOSTIC_CHARS,
) -> CompatibilityReport:
    """Open a sandbox at ``target_revision``, run every patch, and restore the checkout."""

    runner = CompatibilityRunner(
        repo,
        patch_set,
        commit_applied=commit_applied,
        diagnostic_lines=diagnostic_lines,
        diagnostic_chars=diagnostic_chars,
    )
    with open_sandbox(repo, target_revision, session_factory=session_factory) as state:
        try:
            return runner.run(names, state)
        except GitError as error:
            LOGGER.error("Patch run aborted inside sandbox %s: %s", state.sandbox_branch, error)
            raise


__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "CompatibilityReport",
    "CompatibilityRunner",
    "ConflictError",
    "DEFAULT_DIAGNOSTIC_CHARS",
    "DEFAULT_DIAGNOSTIC_LINES",
    "bound_diagnostic",
    "check_compatibility",
    "parse_apply_failures",
]
