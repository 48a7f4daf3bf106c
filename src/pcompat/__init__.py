"""Patch compatibility harness and release channel classifier for upstream checkouts."""

from .patches import MissingArtifact, PatchArtifact, PatchSet
from .runner import (
    ApplyOutcome,
    ApplyResult,
    CompatibilityReport,
    CompatibilityRunner,
    ConflictError,
    check_compatibility,
)
from .sandbox import SandboxError, SandboxSession, SandboxState, open_sandbox
from .tools.vcs import GitError, GitRepository
from .versions import (
    Channel,
    ClassifiedVersion,
    ParseError,
    ShapeHeuristicPolicy,
    VersionTag,
    classify,
    classify_tags,
    latest_per_channel,
    latest_per_major,
    parse,
)

__version__ = "0.1.0"

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "Channel",
    "ClassifiedVersion",
    "CompatibilityReport",
    "CompatibilityRunner",
    "ConflictError",
    "GitError",
    "GitRepository",
    "MissingArtifact",
    "ParseError",
    "PatchArtifact",
    "PatchSet",
    "SandboxError",
    "SandboxSession",
    "SandboxState",
    "ShapeHeuristicPolicy",
    "VersionTag",
    "check_compatibility",
    "classify",
    "classify_tags",
    "latest_per_channel",
    "latest_per_major",
    "open_sandbox",
    "parse",
]
