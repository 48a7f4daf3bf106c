from __future__ import annotations

import pytest

from pcompat.patches import PatchSet
from pcompat.runner import (
    ApplyOutcome,
    CompatibilityRunner,
    ConflictError,
    bound_diagnostic,
    check_compatibility,
    parse_apply_failures,
)
from pcompat.sandbox import SandboxSession
from pcompat.tools.vcs import GitError

from conftest import PATCH_APPEND_FOUR, PATCH_CONFLICTING, PATCH_UPPER_ONE, UpstreamRepo

TARGET = "142.0.7444.134"


def _stack(upstream: UpstreamRepo) -> PatchSet:
    upstream.write_patch("a.patch", PATCH_UPPER_ONE)
    upstream.write_patch("b.patch", PATCH_CONFLICTING)
    upstream.write_patch("c.patch", PATCH_APPEND_FOUR)
    return PatchSet(upstream.patches_dir, ["a.patch", "b.patch", "c.patch"])


def test_patches_are_checked_cumulatively(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)

    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert [result.name for result in report.results] == ["a.patch", "b.patch", "c.patch"]
    assert [result.outcome for result in report.results] == [
        ApplyOutcome.CLEAN,
        ApplyOutcome.CONFLICT,
        ApplyOutcome.CLEAN,
    ]
    assert report.results[1].diagnostic
    assert report.results[0].diagnostic is None
    assert report.sandbox_branch == f"test-patches-{TARGET}"
    assert report.has_failures

    # c.patch only applies on top of a.patch; b.patch never reached the tree.
    stacked = upstream.git("show", f"{report.sandbox_branch}:feature.txt")
    assert stacked == "ONE\ntwo\nthree\nfour\n"
    assert upstream.repo.current_branch() == "main"


def test_clean_patch_is_applied_before_the_next_check(upstream: UpstreamRepo) -> None:
    upstream.write_patch("c.patch", PATCH_APPEND_FOUR)
    patch_set = PatchSet(upstream.patches_dir, ["c.patch"])

    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert report.results[0].outcome is ApplyOutcome.CONFLICT


def test_missing_patch_does_not_stop_processing(upstream: UpstreamRepo) -> None:
    upstream.write_patch("a.patch", PATCH_UPPER_ONE)
    upstream.write_patch("c.patch", PATCH_APPEND_FOUR)
    patch_set = PatchSet(upstream.patches_dir, ["a.patch", "absent.patch", "c.patch"])

    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert len(report) == 3
    assert [result.outcome for result in report.results] == [
        ApplyOutcome.CLEAN,
        ApplyOutcome.MISSING,
        ApplyOutcome.CLEAN,
    ]
    assert report.results[1].diagnostic is None
    assert report.count(ApplyOutcome.MISSING) == 1


def test_run_preserves_uncommitted_work(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)
    (upstream.root / "feature.txt").write_text("one\ntwo\nthree\nmine\n", encoding="utf-8")
    (upstream.root / "notes.txt").write_text("release notes\nlocal work\nstaged\n", encoding="utf-8")
    upstream.git("add", "notes.txt")
    before = upstream.snapshot()

    check_compatibility(upstream.repo, patch_set, TARGET)

    assert upstream.snapshot() == before


def test_uncommitted_mode_discards_sandbox_changes(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)

    report = check_compatibility(upstream.repo, patch_set, TARGET, commit_applied=False)

    assert report.count(ApplyOutcome.CLEAN) == 2
    assert all(result.commit is None for result in report.results)
    assert not upstream.repo.has_uncommitted_changes()
    assert upstream.git("show", f"{report.sandbox_branch}:feature.txt") == "one\ntwo\nthree\n"


def test_runner_honours_explicit_name_order(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)
    session = SandboxSession(upstream.repo)
    state = session.begin(TARGET)
    try:
        runner = CompatibilityRunner(upstream.repo, patch_set)
        report = runner.run(["c.patch", "a.patch"], state)
    finally:
        session.end(state)

    assert [(result.name, result.outcome) for result in report.results] == [
        ("c.patch", ApplyOutcome.CONFLICT),
        ("a.patch", ApplyOutcome.CLEAN),
    ]


def test_run_rejects_closed_sandbox(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)
    session = SandboxSession(upstream.repo)
    state = session.begin(TARGET)
    session.end(state)

    with pytest.raises(ValueError):
        CompatibilityRunner(upstream.repo, patch_set).run(None, state)


def test_check_raises_conflict_with_hunk_metadata(upstream: UpstreamRepo) -> None:
    patch_set = _stack(upstream)
    runner = CompatibilityRunner(upstream.repo, patch_set)
    upstream.git("checkout", "--quiet", TARGET)

    with pytest.raises(ConflictError) as excinfo:
        runner.check(patch_set.load("b.patch"))

    assert excinfo.value.name == "b.patch"
    assert "feature.txt" in excinfo.value.diagnostic
    assert any(entry["path"] == "feature.txt" for entry in excinfo.value.failing_hunks)


def test_bound_diagnostic_limits_lines_and_characters() -> None:
    text = "\n".join(f"line {index}" for index in range(50))
    assert bound_diagnostic(text, max_lines=20).splitlines()[-1] == "line 19"
    assert len(bound_diagnostic("x" * 10_000, max_chars=100)) == 100


def test_parse_apply_failures_extracts_paths() -> None:
    output = "\n".join(
        [
            "error: patch failed: chrome/browser/ui/views/omnibox/omnibox_view_views.cc:120",
            "error: chrome/browser/ui/views/omnibox/omnibox_view_views.cc: patch does not apply",
            "error: chrome/gone.cc: does not exist in index",
        ]
    )
    entries = parse_apply_failures(output)

    assert entries[0] == {
        "path": "chrome/browser/ui/views/omnibox/omnibox_view_views.cc",
        "line": 120,
        "reason": "patch_failed",
    }
    assert entries[1]["reason"] == "does_not_apply"
    assert entries[2] == {"path": "chrome/gone.cc", "reason": "missing_target"}


def test_signing_config_does_not_break_sandbox_commits(upstream: UpstreamRepo) -> None:
    upstream.git("config", "commit.gpgsign", "true")
    upstream.git("config", "gpg.program", "false")
    upstream.write_patch("a.patch", PATCH_UPPER_ONE)
    upstream.write_patch("c.patch", PATCH_APPEND_FOUR)
    patch_set = PatchSet(upstream.patches_dir, ["a.patch", "absent.patch", "c.patch"])

    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert [result.outcome for result in report.results] == [
        ApplyOutcome.CLEAN,
        ApplyOutcome.MISSING,
        ApplyOutcome.CLEAN,
    ]
    assert report.results[0].commit is not None
    assert upstream.git("show", f"{report.sandbox_branch}:feature.txt") == "ONE\ntwo\nthree\nfour\n"
    assert upstream.repo.current_branch() == "main"


def test_failed_commit_keeps_patch_staged_and_run_going(
    upstream: UpstreamRepo, monkeypatch: pytest.MonkeyPatch
) -> None:
    patch_set = _stack(upstream)
    before = upstream.snapshot()

    def refuse_commit(message: str) -> str:
        raise GitError(f"git commit -m {message} failed: hook exploded")

    monkeypatch.setattr(upstream.repo, "commit_staged", refuse_commit)
    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert [(result.outcome, result.commit) for result in report.results] == [
        (ApplyOutcome.CLEAN, None),
        (ApplyOutcome.CONFLICT, None),
        (ApplyOutcome.CLEAN, None),
    ]
    assert upstream.snapshot() == before


def test_apply_failure_after_dry_run_is_reported_as_conflict(
    upstream: UpstreamRepo, monkeypatch: pytest.MonkeyPatch
) -> None:
    upstream.write_patch("a.patch", PATCH_UPPER_ONE)
    upstream.write_patch("c.patch", PATCH_APPEND_FOUR)
    patch_set = PatchSet(upstream.patches_dir, ["a.patch", "absent.patch", "c.patch"])

    def broken_apply(patch_path: object) -> None:
        raise GitError("git apply --index a.patch failed: error: patch failed: feature.txt:1")

    monkeypatch.setattr(upstream.repo, "apply", broken_apply)
    report = check_compatibility(upstream.repo, patch_set, TARGET)

    assert len(report) == 3
    first = report.results[0]
    assert first.outcome is ApplyOutcome.CONFLICT
    assert first.diagnostic and "feature.txt" in first.diagnostic
    assert first.failed_paths == ("feature.txt",)
    assert report.results[1].outcome is ApplyOutcome.MISSING
    # a.patch never landed, so c.patch has nothing to stack on.
    assert report.results[2].outcome is ApplyOutcome.CONFLICT
    assert upstream.repo.current_branch() == "main"
