"""Tool integrations used by the harness."""

from .vcs import GitError, GitRepository

__all__ = [
    "GitError",
    "GitRepository",
]
