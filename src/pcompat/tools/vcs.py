"""Minimal git helpers
The helpers below give the compatibility harness just enough access to an
upstream checkout: enumerate tags, move between refs, park uncommitted edits
in the stash and probe or apply diffs.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser().resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).expanduser().resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        process = subprocess.run(
            command,
            cwd=self.root,
            capture_output=True,
            text=False,
            check=False,
        )
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    # -------------------------------------------------------------------- tags
    def list_tags(self) -> List[str]:
        """Return every tag name known to the repository."""

        result = self._run_git(["tag", "--list"], check=True)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def describe(self) -> str | None:
        """Return ``git describe --tags`` for ``HEAD`` or ``None`` when no tag is reachable."""

        result = self._run_git(["describe", "--tags"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def head_commit(self) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def current_ref(self) -> str:
        """Return the checked out branch, or the commit SHA when ``HEAD`` is detached."""

        branch = self.current_branch()
        if branch:
            return branch
        head = self.head_commit()
        if head is None:
            raise GitError(f"Repository at {self.root} has no commits.")
        return head

    def branch_exists(self, name: str) -> bool:
        result = self._run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        return result.returncode == 0

    def checkout(self, ref: str) -> None:
        """Check out ``ref`` (branch, tag or commit)."""

        self._run_git(["checkout", ref], check=True)

    def create_branch(self, name: str, start: str, *, checkout: bool = True) -> None:
        """Create ``name`` rooted at ``start`` and optionally switch to it."""

        if checkout:
            self._run_git(["checkout", "-b", name, start], check=True)
        else:
            self._run_git(["branch", name, start], check=True)

    def delete_branch(self, name: str, *, force: bool = True, missing_ok: bool = True) -> bool:
        """Delete the local branch ``name``; returns ``True`` when a branch was removed."""

        if missing_ok and not self.branch_exists(name):
            return False
        self._run_git(["branch", "-D" if force else "-d", name], check=True)
        return True

    # ------------------------------------------------------------- repo status
    def has_uncommitted_changes(self, *, include_untracked: bool = False) -> bool:
        """Return ``True`` when tracked files differ from ``HEAD`` in the worktree or index."""

        unstaged = self._run_git(["diff", "--quiet"], check=False)
        staged = self._run_git(["diff", "--cached", "--quiet"], check=False)
        for probe in (unstaged, staged):
            if probe.returncode not in (0, 1):
                message = probe.stderr.strip() or "unable to inspect working tree"
                raise GitError(f"git diff failed: {message}")
        if unstaged.returncode == 1 or staged.returncode == 1:
            return True
        if include_untracked:
            untracked = self._run_git(["ls-files", "--others", "--exclude-standard"], check=True)
            return bool(untracked.stdout.strip())
        return False

    # ------------------------------------------------------------------- stash
    def stash_push(
        self,
        *,
        message: str | None = None,
        include_untracked: bool = False,
    ) -> str | None:
        """Stash pending changes and return the stash commit SHA."""

        args: List[str] = ["stash", "push"]
        if include_untracked:
            args.append("-u")
        if message:
            args.extend(["-m", message])
        result = self._run_git(args, check=False)
        combined = f"{result.stdout}\n{result.stderr}".strip()
        if result.returncode != 0:
            message_text = combined or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message_text}")
        if "No local changes to save" in combined:
            return None
        sha = self._run_git(["rev-parse", "--verify", "stash@{0}"], check=True)
        return sha.stdout.strip()

    def stash_entries(self) -> List[str]:
        """Return stash commit SHAs, newest first."""

        result = self._run_git(["stash", "list", "--format=%H"], check=True)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def stash_restore(self, token: str) -> None:
        """Pop the stash entry whose commit is ``token``, restoring index and worktree."""

        entries = self.stash_entries()
        try:
            index = entries.index(token)
        except ValueError:
            raise GitError(f"Stash entry {token} is no longer present.") from None
        ref = f"stash@{{{index}}}"
        result = self._run_git(["stash", "pop", "--index", ref], check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git stash pop --index {ref} failed: {message}")

    # ------------------------------------------------------------ diff helpers
    def apply_check(self, patch_path: Path | str) -> subprocess.CompletedProcess[str]:
        """Run ``git apply --check`` for ``patch_path`` without touching the tree."""

        return self._run_git(["apply", "--check", "--index", str(patch_path)], check=False)

    def apply(self, patch_path: Path | str) -> None:
        """Apply ``patch_path`` to the worktree and index."""

        self._run_git(["apply", "--index", str(patch_path)], check=True)

    def reset_hard(self) -> None:
        self._run_git(["reset", "--hard", "--quiet"], check=True)

    def has_identity(self) -> bool:
        probe = self._run_git(["config", "--get", "user.email"], check=False)
        return probe.returncode == 0 and bool(probe.stdout.strip())

    def commit_staged(
        self,
        message: str,
        *,
        author_name: str = "patch-compat",
        author_email: str = "patch-compat@localhost",
    ) -> str:
        """Commit the index and return the new commit SHA.

        When the repository has no configured identity the supplied author is
        used for this commit only. Sandbox commits are never signed, so a
        configured ``commit.gpgsign`` cannot fail the run.
        """

        args: List[str] = []
        if not self.has_identity():
            args.extend(["-c", f"user.name={author_name}", "-c", f"user.email={author_email}"])
        args.extend(["commit", "--no-verify", "--no-gpg-sign", "--quiet", "-m", message])
        self._run_git(args, check=True)
        rev = self._run_git(["rev-parse", "HEAD"], check=True)
        return rev.stdout.strip()


__all__ = ["GitError", "GitRepository"]
