from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pcompat.tools.vcs import GitRepository  # noqa: E402

BASE_CONTENT = "one\ntwo\nthree\n"

PATCH_UPPER_ONE = textwrap.dedent(
    """\
    diff --git a/feature.txt b/feature.txt
    --- a/feature.txt
    +++ b/feature.txt
    @@ -1,3 +1,3 @@
    -one
    +ONE
     two
     three
    """
)

# Context line "nope" never exists upstream.
PATCH_CONFLICTING = textwrap.dedent(
    """\
    diff --git a/feature.txt b/feature.txt
    --- a/feature.txt
    +++ b/feature.txt
    @@ -1,3 +1,3 @@
     nope
    -two
    +TWO
     three
    """
)

# Only applies on top of PATCH_UPPER_ONE.
PATCH_APPEND_FOUR = textwrap.dedent(
    """\
    diff --git a/feature.txt b/feature.txt
    --- a/feature.txt
    +++ b/feature.txt
    @@ -1,3 +1,4 @@
     ONE
     two
     three
    +four
    """
)


def run_git(root: Path, *cmd: str) -> str:
    result = subprocess.run(
        ["git", *cmd],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@dataclass(slots=True)
class UpstreamRepo:
    """Fixture payload: a tagged repository plus a patch directory."""

    root: Path
    patches_dir: Path
    repo: GitRepository
    work_branch: str = "main"

    def git(self, *cmd: str) -> str:
        return run_git(self.root, *cmd)

    def write_patch(self, name: str, content: str) -> Path:
        path = self.patches_dir / name
        path.write_text(content, encoding="utf-8")
        return path

    def snapshot(self) -> dict[str, str]:
        """Everything a sandbox run must leave untouched."""

        return {
            "branch": self.git("rev-parse", "--abbrev-ref", "HEAD").strip(),
            "head": self.git("rev-parse", "HEAD").strip(),
            "status": self.git("status", "--porcelain"),
            "unstaged": self.git("diff"),
            "staged": self.git("diff", "--cached"),
            "stashes": self.git("stash", "list"),
            "feature": (self.root / "feature.txt").read_text(encoding="utf-8"),
            "notes": (self.root / "notes.txt").read_text(encoding="utf-8"),
        }


@pytest.fixture()
def upstream(tmp_path: Path) -> UpstreamRepo:
    """Create a small repository with version tags and a work branch ahead of them."""

    repo_root = tmp_path / "upstream"
    repo_root.mkdir()
    run_git(repo_root, "init", "--quiet")
    run_git(repo_root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo_root, "config", "user.email", "dev@example.com")
    run_git(repo_root, "config", "user.name", "Patch Maintainer")

    (repo_root / "feature.txt").write_text(BASE_CONTENT, encoding="utf-8")
    (repo_root / "notes.txt").write_text("release notes\n", encoding="utf-8")
    run_git(repo_root, "add", ".")
    run_git(repo_root, "commit", "--quiet", "-m", "Upstream base")
    for tag in ("139.0.7258.128", "142.0.7444.28", "142.0.7444.99", "142.0.7444.134", "143.0.7468.1"):
        run_git(repo_root, "tag", tag)
    run_git(repo_root, "tag", "branch-heads-7444")

    (repo_root / "notes.txt").write_text("release notes\nlocal work\n", encoding="utf-8")
    run_git(repo_root, "commit", "--quiet", "-am", "Local work")

    patches_dir = tmp_path / "patches"
    patches_dir.mkdir()
    return UpstreamRepo(root=repo_root, patches_dir=patches_dir, repo=GitRepository(repo_root))
